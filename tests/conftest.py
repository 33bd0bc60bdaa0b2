"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Every test that touches the database gets its own SQLite file under tmp_path.
"""
from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from cohortlinks.config import get_settings  # noqa: E402
from cohortlinks.db.database import get_session_factory, init_db, reset_engine  # noqa: E402
from cohortlinks.db.models import Cohort, CohortModuleLink, LearningModule  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (API, concurrency)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "smoke" in path:
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    """Point the settings at a fresh SQLite file and create the schema."""
    url = f"sqlite:///{tmp_path / 'cohort_links.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("DB_LOCK_TIMEOUT_SECONDS", "30")
    get_settings.cache_clear()
    reset_engine()
    init_db()

    yield url

    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def session(db_url):
    """
    A session on the test database.

    SQLite transactions start with BEGIN IMMEDIATE, so commit (or roll back)
    before handing control to code that opens its own session.
    """
    session = get_session_factory()()
    yield session
    session.rollback()
    session.close()


class Seeder:
    """Creates cohorts, modules and raw link rows for tests."""

    def __init__(self, session):
        self.session = session

    def cohort(self, name: str, **fields) -> Cohort:
        cohort = Cohort(name=name, **fields)
        self.session.add(cohort)
        self.session.flush()
        return cohort

    def modules(self, owner: Cohort | None, count: int, prefix: str = "Module") -> list[LearningModule]:
        modules = [
            LearningModule(
                title=f"{prefix} {i + 1}",
                week_number=i + 1,
                order_index=i,
                cohort_id=owner.id if owner else None,
                is_global=False,
            )
            for i in range(count)
        ]
        self.session.add_all(modules)
        self.session.flush()
        return modules

    def global_modules(self, count: int, prefix: str = "Global") -> list[LearningModule]:
        modules = [
            LearningModule(title=f"{prefix} {i + 1}", order_index=i, is_global=True)
            for i in range(count)
        ]
        self.session.add_all(modules)
        self.session.flush()
        return modules

    def raw_link(
        self,
        cohort: Cohort,
        module: LearningModule,
        link_type: str,
        source: Cohort | None = None,
        linked_at: datetime | None = None,
    ) -> CohortModuleLink:
        """Insert a link row directly, bypassing the store (for audit tests)."""
        link = CohortModuleLink(
            cohort_id=cohort.id,
            module_id=module.id,
            link_type=link_type,
            source_cohort_id=source.id if source else None,
            linked_at=linked_at or datetime.now(timezone.utc),
        )
        self.session.add(link)
        self.session.flush()
        return link

    def commit(self) -> None:
        self.session.commit()


@pytest.fixture
def seed(session):
    """Provide a Seeder bound to the test session."""
    return Seeder(session)
