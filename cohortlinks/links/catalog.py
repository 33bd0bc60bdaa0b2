"""
Module catalog: the module-ownership side of cohort linking.

Resolves which modules a link request refers to, promotes a cohort's own
modules to the global library, and answers what a cohort's students see.
The catalog never touches link records.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cohortlinks.db.models import Cohort, CohortModuleLink, LearningModule
from cohortlinks.links.errors import CohortNotFoundError, MissingSourceCohortError, storage_errors
from cohortlinks.links.types import ActiveLinkType, CohortLinkStats, LinkType, parse_link_type

GLOBAL_LIBRARY_NAME = "Global Library"
OWN_MODULES_NAME = "Own Modules"


class ModuleCatalog:
    """Queries and ownership changes on learning modules."""

    def resolve_source_modules(
        self,
        session: Session,
        link_type: LinkType | str,
        source_cohort_id: UUID | None = None,
        module_ids: Sequence[UUID] | None = None,
    ) -> list[UUID]:
        """
        Resolve the modules a link request makes visible.

        Args:
            link_type: 'global' selects the global library, 'cohort' the
                modules owned by source_cohort_id
            module_ids: Optional subset; None (or empty) means all modules
                of the source at call time

        Returns:
            Module ids ordered by order_index
        """
        link_type = parse_link_type(link_type)
        stmt = select(LearningModule.id)
        if link_type is LinkType.GLOBAL:
            stmt = stmt.where(LearningModule.is_global.is_(True))
        else:
            if source_cohort_id is None:
                raise MissingSourceCohortError()
            stmt = stmt.where(LearningModule.cohort_id == source_cohort_id)

        if module_ids:
            stmt = stmt.where(LearningModule.id.in_(list(module_ids)))

        stmt = stmt.order_by(LearningModule.order_index, LearningModule.created_at, LearningModule.id)
        with storage_errors("resolve_source_modules"):
            if link_type is LinkType.COHORT and session.get(Cohort, source_cohort_id) is None:
                raise CohortNotFoundError(source_cohort_id)
            return list(session.execute(stmt).scalars())

    def convert_to_global(self, session: Session, cohort_id: UUID, make_global: bool = True) -> int:
        """
        Release every non-global module owned by a cohort.

        With make_global the modules join the global library, otherwise they
        are left orphaned. Modules already released are untouched, so running
        this twice converts nothing the second time.

        Returns:
            Number of modules converted
        """
        with storage_errors("convert_to_global"):
            if session.get(Cohort, cohort_id) is None:
                raise CohortNotFoundError(cohort_id)

            converted = session.execute(
                update(LearningModule)
                .where(LearningModule.cohort_id == cohort_id)
                .where(LearningModule.is_global.is_(False))
                .values(cohort_id=None, is_global=make_global)
                .execution_options(synchronize_session=False)
            ).rowcount
            session.flush()

        target = "global" if make_global else "orphaned"
        logger.info(f"Converted {converted} modules of cohort {cohort_id} to {target}")
        return converted

    def visible_modules(self, session: Session, cohort_id: UUID) -> list[LearningModule]:
        """Modules the cohort's students see under its active link."""
        with storage_errors("visible_modules"):
            cohort = session.get(Cohort, cohort_id, populate_existing=True)
            if cohort is None:
                raise CohortNotFoundError(cohort_id)

            if cohort.active_link_type == ActiveLinkType.OWN.value:
                stmt = select(LearningModule).where(LearningModule.cohort_id == cohort_id)
            else:
                stmt = (
                    select(LearningModule)
                    .join(CohortModuleLink, CohortModuleLink.module_id == LearningModule.id)
                    .where(CohortModuleLink.cohort_id == cohort_id)
                )
            stmt = stmt.order_by(LearningModule.order_index, LearningModule.created_at, LearningModule.id)
            return list(session.execute(stmt).scalars())

    def link_stats(self, session: Session, cohort_id: UUID) -> CohortLinkStats:
        """Counts of own, linked-cohort and global modules for a cohort."""
        with storage_errors("link_stats"):
            cohort = session.get(Cohort, cohort_id, populate_existing=True)
            if cohort is None:
                raise CohortNotFoundError(cohort_id)

            own_count = self._count(session, LearningModule.cohort_id == cohort_id)
            global_count = self._count(session, LearningModule.is_global.is_(True))

            linked_count = 0
            linked_name = None
            if cohort.linked_cohort_id is not None:
                linked_count = self._count(
                    session, LearningModule.cohort_id == cohort.linked_cohort_id
                )
                source = session.get(Cohort, cohort.linked_cohort_id)
                linked_name = source.name if source else "Unknown Cohort"

            link_count = session.execute(
                select(func.count())
                .select_from(CohortModuleLink)
                .where(CohortModuleLink.cohort_id == cohort_id)
            ).scalar_one()

        active = ActiveLinkType(cohort.active_link_type)
        if active is ActiveLinkType.GLOBAL:
            visible, source_name = link_count, GLOBAL_LIBRARY_NAME
        elif active is ActiveLinkType.COHORT:
            visible, source_name = link_count, linked_name or "Unknown Cohort"
        else:
            visible, source_name = own_count, OWN_MODULES_NAME

        return CohortLinkStats(
            cohort_id=cohort.id,
            active_source=active,
            active_source_name=source_name,
            visible_modules=visible,
            own_modules=own_count,
            linked_modules=linked_count,
            global_modules=global_count,
            linked_cohort_id=cohort.linked_cohort_id,
            linked_cohort_name=linked_name,
        )

    @staticmethod
    def _count(session: Session, condition) -> int:
        return session.execute(
            select(func.count()).select_from(LearningModule).where(condition)
        ).scalar_one()
