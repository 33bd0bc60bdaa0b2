"""
Entry point for the cohort link service.

Run with:
    uvicorn cohortlinks.api.main:app --reload --port 8100
    python main.py
"""
import uvicorn

from cohortlinks.api.main import app  # noqa: F401
from cohortlinks.config import get_settings

settings = get_settings()

if __name__ == "__main__":
    uvicorn.run(
        "cohortlinks.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
