"""
Link state audit and repair.

Finds cohorts whose derived link fields disagree with their link records
(or whose records mix sources) and repairs them by keeping the most
recently linked source and re-deriving the cohort's fields.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, delete, func, not_, select
from sqlalchemy.orm import Session

from cohortlinks.db.database import session_scope
from cohortlinks.db.models import Cohort, CohortModuleLink
from cohortlinks.links.errors import storage_errors
from cohortlinks.links.store import LinkRecordStore
from cohortlinks.links.types import LinkStateMismatch
from cohortlinks.links.untag import UnitOfWork


class LinkStateAuditor:
    def __init__(self, store: LinkRecordStore | None = None, unit_of_work: UnitOfWork = session_scope):
        self.store = store or LinkRecordStore()
        self.unit_of_work = unit_of_work

    def find_inconsistencies(self, session: Session) -> list[LinkStateMismatch]:
        """Scan every cohort and report those violating the link invariant."""
        with storage_errors("find_inconsistencies"):
            cohorts = session.execute(
                select(
                    Cohort.id,
                    Cohort.name,
                    Cohort.active_link_type,
                    Cohort.linked_cohort_id,
                    func.count(CohortModuleLink.id),
                )
                .outerjoin(CohortModuleLink, CohortModuleLink.cohort_id == Cohort.id)
                .group_by(Cohort.id, Cohort.name, Cohort.active_link_type, Cohort.linked_cohort_id)
                .order_by(Cohort.name)
            ).all()
            pair_rows = session.execute(
                select(
                    CohortModuleLink.cohort_id,
                    CohortModuleLink.link_type,
                    CohortModuleLink.source_cohort_id,
                ).distinct()
            ).all()

        pairs: dict[UUID, set[tuple[str, UUID | None]]] = defaultdict(set)
        for cohort_id, link_type, source_cohort_id in pair_rows:
            pairs[cohort_id].add((link_type, source_cohort_id))

        mismatches = []
        for cohort_id, name, active, linked, link_count in cohorts:
            reason = self._mismatch_reason(active, linked, pairs.get(cohort_id, set()))
            if reason:
                cohort_pairs = sorted(pairs.get(cohort_id, set()), key=str)
                mismatches.append(
                    LinkStateMismatch(
                        cohort_id=cohort_id,
                        cohort_name=name,
                        active_link_type=active,
                        linked_cohort_id=linked,
                        link_count=link_count,
                        link_types=[p[0] for p in cohort_pairs],
                        source_cohort_ids=[p[1] for p in cohort_pairs],
                        reason=reason,
                    )
                )
        return mismatches

    def repair(self, cohort_ids: Iterable[UUID] | None = None) -> dict[UUID, int]:
        """
        Repair inconsistent cohorts, one transaction per cohort.

        Args:
            cohort_ids: Restrict the repair to these cohorts (default: every
                cohort found by find_inconsistencies)

        Returns:
            Mapping of repaired cohort id to the number of link records removed
        """
        if cohort_ids is None:
            with self.unit_of_work() as session:
                targets = [m.cohort_id for m in self.find_inconsistencies(session)]
        else:
            targets = list(cohort_ids)

        repaired = {}
        for cohort_id in targets:
            with self.unit_of_work() as session:
                repaired[cohort_id] = self._repair_cohort(session, cohort_id)
        if repaired:
            logger.warning(f"Repaired link state of {len(repaired)} cohorts")
        return repaired

    def _repair_cohort(self, session: Session, cohort_id: UUID) -> int:
        with storage_errors("repair"):
            cohort = self.store.lock_cohort(session, cohort_id)
            latest = session.execute(
                select(CohortModuleLink.link_type, CohortModuleLink.source_cohort_id)
                .where(CohortModuleLink.cohort_id == cohort_id)
                .order_by(CohortModuleLink.linked_at.desc(), CohortModuleLink.id.desc())
                .limit(1)
            ).first()

            removed = 0
            if latest is not None:
                link_type, source_cohort_id = latest
                keep = and_(
                    CohortModuleLink.link_type == link_type,
                    CohortModuleLink.source_cohort_id.is_(None)
                    if source_cohort_id is None
                    else CohortModuleLink.source_cohort_id == source_cohort_id,
                )
                removed = session.execute(
                    delete(CohortModuleLink)
                    .where(CohortModuleLink.cohort_id == cohort_id)
                    .where(not_(keep))
                ).rowcount

            state = self.store.reconciler.reconcile(session, cohort)
            session.flush()

        logger.info(
            f"Cohort {cohort_id}: removed {removed} stale link records, "
            f"state is now {state.active_link_type.value}"
        )
        return removed

    @staticmethod
    def _mismatch_reason(
        active: str, linked: UUID | None, pairs: set[tuple[str, UUID | None]]
    ) -> str:
        if len(pairs) > 1:
            return "link records mix sources"
        if not pairs:
            if active != "own" or linked is not None:
                return f"active_link_type is {active} but no link records exist"
            return ""

        link_type, source = next(iter(pairs))
        if link_type != active:
            return f"active_link_type is {active} but link records are {link_type}"
        if link_type == "cohort" and linked != source:
            return "linked_cohort_id does not match link record source"
        if link_type == "global" and linked is not None:
            return "global link state carries a linked_cohort_id"
        return ""
