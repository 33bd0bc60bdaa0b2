"""Command line interface for cohort link administration."""
