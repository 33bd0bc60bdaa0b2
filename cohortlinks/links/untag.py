"""
Complete Untag: detach a cohort from every link and release its own modules
to the global library.

The two steps touch different entities and commit separately:

1. unlink_all (link records + cohort link fields)
2. convert_to_global (module ownership)

If step 2 fails after step 1 committed, the cohort is left on its own
(now empty-handed) module set with its former modules still owned. Nothing
is rolled back; the caller is told which step failed and can re-run the
whole operation because both steps are no-ops when already applied.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cohortlinks.db.database import session_scope
from cohortlinks.links.catalog import ModuleCatalog
from cohortlinks.links.coordinator import LinkStateCoordinator
from cohortlinks.links.errors import CohortLinkError, UntagStepError
from cohortlinks.links.types import UntagResult, UntagStep

UnitOfWork = Callable[[], AbstractContextManager[Session]]


class UntagOrchestrator:
    """Runs the two-step untag saga, one transaction per step."""

    def __init__(
        self,
        coordinator: LinkStateCoordinator | None = None,
        catalog: ModuleCatalog | None = None,
        unit_of_work: UnitOfWork = session_scope,
    ):
        self.coordinator = coordinator or LinkStateCoordinator()
        self.catalog = catalog or ModuleCatalog()
        self.unit_of_work = unit_of_work

    def complete_untag(self, cohort_id: UUID) -> UntagResult:
        """
        Unlink everything, then promote the cohort's own modules to global.

        Raises:
            UntagStepError: naming the failed step; unlinked_count is set when
                step 1 had already committed
        """
        logger.info(f"Complete untag started for cohort {cohort_id}")

        try:
            with self.unit_of_work() as session:
                unlinked = self.coordinator.unlink_all(session, cohort_id).deleted_count
        except (CohortLinkError, SQLAlchemyError) as exc:
            logger.error(f"Untag of cohort {cohort_id} failed at {UntagStep.UNLINK_ALL.value}: {exc}")
            raise UntagStepError(UntagStep.UNLINK_ALL.value, exc) from exc

        try:
            with self.unit_of_work() as session:
                converted = self.catalog.convert_to_global(session, cohort_id, make_global=True)
        except (CohortLinkError, SQLAlchemyError) as exc:
            logger.error(
                f"Untag of cohort {cohort_id} failed at {UntagStep.CONVERT_TO_GLOBAL.value} "
                f"after unlinking {unlinked} modules: {exc}"
            )
            raise UntagStepError(
                UntagStep.CONVERT_TO_GLOBAL.value, exc, unlinked_count=unlinked
            ) from exc

        logger.info(
            f"Complete untag finished for cohort {cohort_id}: "
            f"unlinked {unlinked}, converted {converted}"
        )
        return UntagResult(unlinked_count=unlinked, converted_count=converted)
