"""
Link State Coordinator.

Validates requested link changes, guards cohort links against cycles and
applies them through the link record store. Every operation runs inside the
caller's session; the caller's transaction is the unit of atomicity and the
coordinator keeps no state between calls.

Concurrency:
- The target cohort row is locked first, so two writers on the same cohort
  serialize: the later one waits, then applies its own full replace.
- The cycle walk takes shared locks on the cohorts it visits (see CycleDetector).
- A writer the database aborts (deadlock, lock timeout) surfaces as
  ConflictError; nothing is retried here.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from cohortlinks.config import get_settings
from cohortlinks.db.models import Cohort, LearningModule
from cohortlinks.links.cycles import CycleDetector
from cohortlinks.links.errors import (
    CohortNotFoundError,
    ConflictError,
    CycleDetectedError,
    EmptyModuleSetError,
    MissingSourceCohortError,
    ModuleSourceMismatchError,
    UnknownModuleError,
    storage_errors,
)
from cohortlinks.links.store import LinkRecordStore
from cohortlinks.links.types import (
    ActiveLinkType,
    CohortLinkState,
    LinkResult,
    LinkType,
    NewLinkRecord,
    UnlinkResult,
    parse_link_type,
)


class LinkStateCoordinator:
    """Orchestrates link changes for a single cohort per call."""

    def __init__(
        self,
        store: LinkRecordStore | None = None,
        cycle_detector: CycleDetector | None = None,
    ):
        self.store = store or LinkRecordStore()
        self.cycle_detector = cycle_detector or CycleDetector(
            max_depth=get_settings().cycle_max_depth
        )

    # ========================================
    # Writes
    # ========================================

    def check_link(
        self,
        session: Session,
        cohort_id: UUID,
        link_type: LinkType | str,
        source_cohort_id: UUID | None,
    ) -> LinkType:
        """
        Validate a link request without touching any link record.

        Locks the target cohort and, for cohort links, confirms the source
        exists and that linking to it would not close a cycle. Callers that
        may end up with nothing to link run this first so a back-link is
        rejected whatever the source currently owns.

        Raises:
            InvalidLinkTypeError, MissingSourceCohortError, CohortNotFoundError,
            CycleDetectedError, ConflictError
        """
        link_type = parse_link_type(link_type)
        if link_type is LinkType.COHORT and source_cohort_id is None:
            raise MissingSourceCohortError()

        with storage_errors("check_link"):
            self.store.lock_cohort(session, cohort_id)
            if link_type is LinkType.COHORT:
                self._check_source(session, cohort_id, source_cohort_id)
        return link_type

    def set_link(
        self,
        session: Session,
        cohort_id: UUID,
        link_type: LinkType | str,
        source_cohort_id: UUID | None,
        module_ids: Sequence[UUID],
        actor: str | None = None,
    ) -> LinkResult:
        """
        Point a cohort at a new module source, replacing any previous link.

        Args:
            session: Request-scoped session (the atomic unit)
            cohort_id: Consuming cohort
            link_type: 'cohort' or 'global'
            source_cohort_id: Required for cohort links, ignored for global links
            module_ids: Modules to make visible (already resolved by the caller)
            actor: Recorded as linked_by

        Returns:
            LinkResult with the number of records inserted and the resulting state

        Raises:
            InvalidLinkTypeError, MissingSourceCohortError, CohortNotFoundError,
            CycleDetectedError, EmptyModuleSetError, UnknownModuleError,
            ModuleSourceMismatchError, ConflictError
        """
        try:
            link_type = self.check_link(session, cohort_id, link_type, source_cohort_id)
            if link_type is LinkType.GLOBAL:
                source_cohort_id = None

            # Preserve request order, drop repeats
            modules = list(dict.fromkeys(module_ids))
            if not modules:
                raise EmptyModuleSetError()

            with storage_errors("set_link"):
                self._check_modules(session, modules, link_type, source_cohort_id)

            records = [
                NewLinkRecord(
                    cohort_id=cohort_id,
                    module_id=module_id,
                    link_type=link_type,
                    source_cohort_id=source_cohort_id,
                    linked_by=actor,
                )
                for module_id in modules
            ]
            outcome = self.store.replace_links(session, cohort_id, records)
        except ConflictError:
            logger.error(f"Unexpected storage conflict linking cohort {cohort_id}")
            raise

        logger.info(
            f"Linked cohort {cohort_id} to {link_type.value}"
            f"{f' cohort {source_cohort_id}' if source_cohort_id else ''}: "
            f"{outcome.inserted_count} modules (replaced {outcome.deleted_count})"
        )
        return LinkResult(
            links_created=outcome.inserted_count,
            active_link_type=outcome.state.active_link_type,
            linked_cohort_id=outcome.state.linked_cohort_id,
            replaced_count=outcome.deleted_count,
        )

    def unlink_all(self, session: Session, cohort_id: UUID) -> UnlinkResult:
        """Remove every link record; the cohort falls back to its own modules."""
        return self._unlink(session, cohort_id)

    def unlink_by_type(
        self, session: Session, cohort_id: UUID, link_type: LinkType | str
    ) -> UnlinkResult:
        """Remove only the link records of one type."""
        return self._unlink(session, cohort_id, link_type=parse_link_type(link_type))

    def unlink_modules(
        self, session: Session, cohort_id: UUID, module_ids: Sequence[UUID]
    ) -> UnlinkResult:
        """Remove the link records of specific modules."""
        return self._unlink(session, cohort_id, module_ids=list(dict.fromkeys(module_ids)))

    def _unlink(
        self,
        session: Session,
        cohort_id: UUID,
        link_type: LinkType | None = None,
        module_ids: list[UUID] | None = None,
    ) -> UnlinkResult:
        try:
            outcome = self.store.delete_links(
                session, cohort_id, link_type=link_type, module_ids=module_ids
            )
        except ConflictError:
            logger.error(f"Unexpected storage conflict unlinking cohort {cohort_id}")
            raise

        if outcome.deleted_count:
            logger.info(
                f"Unlinked {outcome.deleted_count} modules from cohort {cohort_id} "
                f"(now {outcome.state.active_link_type.value})"
            )
        else:
            logger.debug(f"Nothing to unlink for cohort {cohort_id}")
        return UnlinkResult(
            deleted_count=outcome.deleted_count,
            active_link_type=outcome.state.active_link_type,
        )

    # ========================================
    # Reads
    # ========================================

    def get_link_state(self, session: Session, cohort_id: UUID) -> CohortLinkState:
        with storage_errors("get_link_state"):
            cohort = session.get(Cohort, cohort_id, populate_existing=True)
            if cohort is None:
                raise CohortNotFoundError(cohort_id)
            link_count = self.store.count_links(session, cohort_id)

        return CohortLinkState(
            cohort_id=cohort.id,
            name=cohort.name,
            status=cohort.status,
            active_link_type=ActiveLinkType(cohort.active_link_type),
            linked_cohort_id=cohort.linked_cohort_id,
            link_count=link_count,
        )

    # ========================================
    # Validation helpers
    # ========================================

    def _check_source(self, session: Session, cohort_id: UUID, source_cohort_id: UUID) -> None:
        if session.get(Cohort, source_cohort_id) is None:
            raise CohortNotFoundError(source_cohort_id)

        trace = self.cycle_detector.trace(session, cohort_id, source_cohort_id)
        if trace.rejected:
            logger.warning(
                f"Rejected link {cohort_id} -> {source_cohort_id}: "
                f"cycle={trace.closes_cycle} depth_exceeded={trace.depth_exceeded} "
                f"revisits={trace.revisits}"
            )
            raise CycleDetectedError(cohort_id, source_cohort_id, trace.path)

    @staticmethod
    def _check_modules(
        session: Session,
        module_ids: list[UUID],
        link_type: LinkType,
        source_cohort_id: UUID | None,
    ) -> None:
        """Every module must exist and be provided by the requested source."""
        rows = session.execute(
            select(LearningModule.id, LearningModule.cohort_id, LearningModule.is_global).where(
                LearningModule.id.in_(module_ids)
            )
        ).all()
        found = {row[0]: (row[1], row[2]) for row in rows}

        missing = [m for m in module_ids if m not in found]
        if missing:
            raise UnknownModuleError(missing)

        if link_type is LinkType.GLOBAL:
            foreign = [m for m in module_ids if not found[m][1]]
            if foreign:
                raise ModuleSourceMismatchError(foreign, "the global library")
        else:
            foreign = [m for m in module_ids if found[m][0] != source_cohort_id]
            if foreign:
                raise ModuleSourceMismatchError(foreign, f"cohort {source_cohort_id}")
