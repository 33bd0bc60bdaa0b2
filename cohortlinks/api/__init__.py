"""HTTP API for the cohort link service."""
