"""
Link record store.

Single source of truth for cohort_module_links and for the derived link
fields on cohorts. Every write here locks the owning cohort row, changes the
link rows set-wise (one DELETE, one multi-row INSERT) and re-derives the
cohort's fields before the surrounding transaction commits, so no reader
ever sees the two disagree.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from cohortlinks.db.models import Cohort, CohortModuleLink
from cohortlinks.links.errors import CohortNotFoundError, ConflictError, storage_errors
from cohortlinks.links.types import (
    ActiveLinkType,
    DeleteOutcome,
    LinkState,
    LinkType,
    NewLinkRecord,
    ReplaceOutcome,
)


def derive_link_state(pairs: Iterable[tuple[str, UUID | None]]) -> LinkState:
    """
    Derive a cohort's link fields from the distinct (link_type, source) pairs
    of its link records.

    Raises:
        ConflictError: if the records mix link types or sources
    """
    distinct = set(pairs)
    if not distinct:
        return LinkState(ActiveLinkType.OWN)
    if len(distinct) > 1:
        raise ConflictError(f"link records mix sources: {sorted(str(p) for p in distinct)}")

    link_type, source_cohort_id = distinct.pop()
    if LinkType(link_type) is LinkType.GLOBAL:
        return LinkState(ActiveLinkType.GLOBAL)
    return LinkState(ActiveLinkType.COHORT, source_cohort_id)


def apply_link_state(session: Session, cohort: Cohort, state: LinkState) -> None:
    """
    Write a cohort's derived link fields.

    Always issued as an explicit UPDATE: the delete trigger may already
    have reset the row inside this transaction behind the ORM's back.
    """
    session.execute(
        update(Cohort)
        .where(Cohort.id == cohort.id)
        .values(
            active_link_type=state.active_link_type.value,
            linked_cohort_id=state.linked_cohort_id,
        )
        .execution_options(synchronize_session=False)
    )
    set_committed_value(cohort, "active_link_type", state.active_link_type.value)
    set_committed_value(cohort, "linked_cohort_id", state.linked_cohort_id)


class CascadeReconciler:
    """Re-derives a cohort's link fields after link records were removed."""

    def reconcile(self, session: Session, cohort: Cohort) -> LinkState:
        pairs = session.execute(
            select(CohortModuleLink.link_type, CohortModuleLink.source_cohort_id)
            .where(CohortModuleLink.cohort_id == cohort.id)
            .distinct()
        ).all()
        state = derive_link_state((row[0], row[1]) for row in pairs)

        if state.active_link_type.value != cohort.active_link_type:
            logger.debug(
                f"Cohort {cohort.id} link state {cohort.active_link_type} -> {state.active_link_type.value}"
            )
        apply_link_state(session, cohort, state)
        return state


class LinkRecordStore:
    """Persistence for link records and the cohort link fields derived from them."""

    def __init__(self, reconciler: CascadeReconciler | None = None):
        self.reconciler = reconciler or CascadeReconciler()

    def lock_cohort(self, session: Session, cohort_id: UUID) -> Cohort:
        """Load a cohort row and hold its row lock until the transaction ends."""
        cohort = session.execute(
            select(Cohort)
            .where(Cohort.id == cohort_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if cohort is None:
            raise CohortNotFoundError(cohort_id)
        return cohort

    def count_links(self, session: Session, cohort_id: UUID) -> int:
        return session.execute(
            select(func.count())
            .select_from(CohortModuleLink)
            .where(CohortModuleLink.cohort_id == cohort_id)
        ).scalar_one()

    def list_links(self, session: Session, cohort_id: UUID) -> list[CohortModuleLink]:
        return list(
            session.execute(
                select(CohortModuleLink)
                .where(CohortModuleLink.cohort_id == cohort_id)
                .order_by(CohortModuleLink.linked_at, CohortModuleLink.id)
            ).scalars()
        )

    def replace_links(
        self, session: Session, cohort_id: UUID, records: Sequence[NewLinkRecord]
    ) -> ReplaceOutcome:
        """
        Replace every link record of a cohort with a new record set.

        Args:
            session: Open session; the caller's transaction is the atomic unit
            cohort_id: Consuming cohort
            records: Non-empty records sharing one (link_type, source_cohort_id)

        Raises:
            ConflictError: if the record set would break the single-active-link
                invariant or a storage constraint rejects it
            CohortNotFoundError: if the cohort does not exist
        """
        state = self._check_record_set(cohort_id, records)
        linked_at = datetime.now(timezone.utc)

        with storage_errors("replace_links"):
            cohort = self.lock_cohort(session, cohort_id)

            deleted = session.execute(
                delete(CohortModuleLink).where(CohortModuleLink.cohort_id == cohort_id)
            ).rowcount
            session.execute(
                insert(CohortModuleLink),
                [
                    {
                        "cohort_id": r.cohort_id,
                        "module_id": r.module_id,
                        "source_cohort_id": r.source_cohort_id,
                        "link_type": LinkType(r.link_type).value,
                        "linked_by": r.linked_by,
                        "linked_at": r.linked_at or linked_at,
                    }
                    for r in records
                ],
            )
            apply_link_state(session, cohort, state)
            session.flush()

        logger.debug(f"Replaced links for cohort {cohort_id}: -{deleted} +{len(records)}")
        return ReplaceOutcome(deleted_count=deleted, inserted_count=len(records), state=state)

    def delete_links(
        self,
        session: Session,
        cohort_id: UUID,
        link_type: LinkType | str | None = None,
        module_ids: Sequence[UUID] | None = None,
    ) -> DeleteOutcome:
        """
        Delete all (or a filtered subset of) a cohort's link records and
        reconcile the cohort's link fields in the same unit of work.
        """
        with storage_errors("delete_links"):
            cohort = self.lock_cohort(session, cohort_id)

            stmt = delete(CohortModuleLink).where(CohortModuleLink.cohort_id == cohort_id)
            if link_type is not None:
                stmt = stmt.where(CohortModuleLink.link_type == LinkType(link_type).value)
            if module_ids is not None:
                stmt = stmt.where(CohortModuleLink.module_id.in_(list(module_ids)))

            deleted = session.execute(stmt).rowcount
            state = self.reconciler.reconcile(session, cohort)
            session.flush()

        return DeleteOutcome(deleted_count=deleted, state=state)

    @staticmethod
    def _check_record_set(cohort_id: UUID, records: Sequence[NewLinkRecord]) -> LinkState:
        if not records:
            raise ConflictError("replace requires at least one record; delete links to clear a cohort")
        if any(r.cohort_id != cohort_id for r in records):
            raise ConflictError(f"record set contains records for cohorts other than {cohort_id}")

        state = derive_link_state(
            (LinkType(r.link_type).value, r.source_cohort_id) for r in records
        )
        if state.active_link_type is ActiveLinkType.COHORT:
            if state.linked_cohort_id is None:
                raise ConflictError("cohort link records require a source cohort")
            if state.linked_cohort_id == cohort_id:
                raise ConflictError(f"cohort {cohort_id} cannot link to itself")
        elif any(r.source_cohort_id is not None for r in records):
            raise ConflictError("global link records cannot carry a source cohort")
        return state
