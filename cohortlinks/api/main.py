"""
FastAPI application for the cohort link service.

Provides REST API for:
- Linking a cohort to another cohort's modules or the global library
- Unlinking (all, by type, or by module)
- Converting a cohort's own modules to global
- Complete untag
- Cohort link state, stats and visible modules
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from cohortlinks import __version__
from cohortlinks.config import get_settings
from cohortlinks.db.database import check_database, init_db
from cohortlinks.log_setup import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging()
    logger.info("Starting cohort link service...")
    init_db()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    logger.info("Shutting down cohort link service...")


app = FastAPI(
    title="Cohort Link Service",
    description="""
    Decides whose learning modules each cohort's students see.

    ## Link model

    ```
    own     -> modules owned by the cohort
    cohort  -> modules of one other cohort (no cycles)
    global  -> the global module library
    ```

    Exactly one source is active per cohort; switching source replaces the
    previous link atomically.
    """,
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for the admin UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": "cohort-links",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, Any]:
    """Health check with an actual database round trip."""
    db_status, db_error = check_database()

    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {"database": db_status},
        "config": get_settings().get_link_config(),
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


# ========================================
# Import and mount routers
# ========================================

from cohortlinks.api.routers import cohort_links_router  # noqa: E402

app.include_router(cohort_links_router.router, prefix="/api/cohorts", tags=["Cohort Links"])
