"""API routers for the cohort link service."""

from cohortlinks.api.routers import cohort_links_router

__all__ = [
    "cohort_links_router",
]
