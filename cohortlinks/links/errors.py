"""
Error taxonomy for link coordination.

ValidationError and CycleDetectedError are business-rule rejections raised
before anything is written. ConflictError means the storage layer refused a
state the coordinator should never have requested (or a concurrent writer
was aborted by the database). StorageError wraps every other database
failure; the surrounding transaction is rolled back in all cases.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

# SQLSTATEs a waiting writer can be aborted with (PostgreSQL)
_CONTENTION_SQLSTATES = {"40001", "40P01", "55P03"}


class CohortLinkError(Exception):
    """Base class for all link coordination errors."""

    code = "cohort_link_error"


class ValidationError(CohortLinkError):
    """Request shape is invalid; rejected before any mutation."""

    code = "validation_error"


class InvalidLinkTypeError(ValidationError):
    code = "invalid_link_type"

    def __init__(self, link_type: object):
        self.link_type = link_type
        super().__init__(f"link_type must be 'cohort' or 'global', got {link_type!r}")


class MissingSourceCohortError(ValidationError):
    code = "missing_source_cohort"

    def __init__(self) -> None:
        super().__init__("source_cohort_id is required for cohort links")


class EmptyModuleSetError(ValidationError):
    code = "empty_module_set"

    def __init__(self) -> None:
        super().__init__("at least one module is required to create a link")


class UnknownModuleError(ValidationError):
    code = "unknown_module"

    def __init__(self, module_ids: Sequence[UUID]):
        self.module_ids = list(module_ids)
        joined = ", ".join(str(m) for m in self.module_ids)
        super().__init__(f"unknown module ids: {joined}")


class ModuleSourceMismatchError(ValidationError):
    """Modules exist but do not belong to the requested source."""

    code = "module_source_mismatch"

    def __init__(self, module_ids: Sequence[UUID], source: str):
        self.module_ids = list(module_ids)
        self.source = source
        joined = ", ".join(str(m) for m in self.module_ids)
        super().__init__(f"modules not provided by {source}: {joined}")


class CohortNotFoundError(CohortLinkError):
    code = "cohort_not_found"

    def __init__(self, cohort_id: UUID):
        self.cohort_id = cohort_id
        super().__init__(f"cohort {cohort_id} not found")


class CycleDetectedError(CohortLinkError):
    """Linking would make a cohort (transitively) consume its own modules."""

    code = "cycle_detected"

    def __init__(self, cohort_id: UUID, source_cohort_id: UUID, path: Sequence[UUID] = ()):
        self.cohort_id = cohort_id
        self.source_cohort_id = source_cohort_id
        self.path = list(path)
        if self.path:
            chain = " -> ".join(str(c) for c in [cohort_id, *self.path])
            message = f"linking {cohort_id} to {source_cohort_id} would create a cycle: {chain}"
        else:
            message = f"linking {cohort_id} to {source_cohort_id} would create a cycle"
        super().__init__(message)


class ConflictError(CohortLinkError):
    """The store refused a write that would break the single-active-link invariant."""

    code = "conflict"


class StorageError(CohortLinkError):
    """Connectivity or transaction failure; no partial effect remains."""

    code = "storage_error"


class UntagStepError(CohortLinkError):
    """
    One step of the untag operation failed.

    Re-running the whole untag is safe: both steps are idempotent.
    """

    code = "untag_step_failed"

    def __init__(
        self,
        step: str,
        cause: BaseException,
        unlinked_count: int | None = None,
        converted_count: int | None = None,
    ):
        self.step = step
        self.cause = cause
        self.unlinked_count = unlinked_count
        self.converted_count = converted_count
        super().__init__(f"untag step '{step}' failed: {cause}")

    @property
    def retryable(self) -> bool:
        return not isinstance(self.cause, (ValidationError, CohortNotFoundError))


def _is_contention(exc: OperationalError) -> bool:
    sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if sqlstate in _CONTENTION_SQLSTATES:
        return True
    return "database is locked" in str(exc.orig)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures raised inside the block into link errors."""
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(f"{operation}: storage constraint violated ({exc.orig})") from exc
    except OperationalError as exc:
        if _is_contention(exc):
            raise ConflictError(f"{operation}: aborted by a concurrent writer ({exc.orig})") from exc
        raise StorageError(f"{operation}: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise StorageError(f"{operation}: {exc}") from exc
