"""Tests for storage error translation and settings."""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from cohortlinks.config import Settings
from cohortlinks.db import database
from cohortlinks.links.errors import (
    CohortNotFoundError,
    ConflictError,
    EmptyModuleSetError,
    StorageError,
    UntagStepError,
    storage_errors,
)


class PgError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


class TestStorageErrors:
    def test_integrity_error_is_a_conflict(self):
        with pytest.raises(ConflictError, match="replace_links"):
            with storage_errors("replace_links"):
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    @pytest.mark.parametrize(
        "orig",
        [
            Exception("database is locked"),
            PgError("deadlock detected", "40P01"),
            PgError("could not serialize access", "40001"),
            PgError("canceling statement due to lock timeout", "55P03"),
        ],
    )
    def test_contention_is_a_conflict(self, orig):
        with pytest.raises(ConflictError, match="concurrent writer"):
            with storage_errors("set_link"):
                raise OperationalError("SELECT", {}, orig)

    def test_other_operational_error_is_storage(self):
        with pytest.raises(StorageError):
            with storage_errors("set_link"):
                raise OperationalError("SELECT", {}, Exception("could not connect to server"))

    def test_any_other_database_error_is_storage(self):
        with pytest.raises(StorageError):
            with storage_errors("link_stats"):
                raise ProgrammingError("SELECT", {}, Exception("no such table: cohorts"))

    def test_link_errors_pass_through(self):
        with pytest.raises(EmptyModuleSetError):
            with storage_errors("set_link"):
                raise EmptyModuleSetError()


class TestSessionScopeCommit:
    def test_locked_commit_is_a_conflict(self, monkeypatch):
        session = Mock()
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("database is locked"))
        monkeypatch.setattr(database, "get_session_factory", lambda: Mock(return_value=session))

        with pytest.raises(ConflictError, match="commit"):
            with database.session_scope():
                pass

        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestUntagStepError:
    def test_storage_failures_are_retryable(self):
        error = UntagStepError("convert_to_global", StorageError("down"), unlinked_count=4)
        assert error.retryable is True
        assert "convert_to_global" in str(error)

    def test_missing_cohort_is_not_retryable(self):
        from uuid import uuid4

        assert UntagStepError("unlink_all", CohortNotFoundError(uuid4())).retryable is False


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)

        assert settings.cycle_max_depth == 10
        assert settings.is_sqlite() is False
        assert settings.get_link_config()["cycle_max_depth"] == 10

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///links.db")
        monkeypatch.setenv("CYCLE_MAX_DEPTH", "4")

        settings = Settings(_env_file=None)

        assert settings.is_sqlite() is True
        assert settings.cycle_max_depth == 4

    def test_depth_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("CYCLE_MAX_DEPTH", "0")

        with pytest.raises(ValueError):
            Settings(_env_file=None)
