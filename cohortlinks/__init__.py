"""Cross-cohort learning module link coordinator."""

__version__ = "1.0.0"
