"""
Cycle detection for cohort-to-cohort links.

A cohort links to a source cohort; the source may itself be linked to
another cohort, and so on. Adding target -> source is rejected when the
chain starting at source reaches target. The walk runs inside the caller's
transaction and takes a shared lock on every cohort row it reads. Writers on
different cohorts that merely share a source do not block each other, but a
concurrent writer changing a visited cohort's link must wait (or is aborted
as a deadlock), so two links cannot both pass the check and jointly close a
loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cohortlinks.db.models import Cohort

DEFAULT_MAX_DEPTH = 10


@dataclass
class CycleTrace:
    """Outcome of walking the link chain from a proposed source."""

    path: list[UUID] = field(default_factory=list)
    closes_cycle: bool = False
    depth_exceeded: bool = False
    revisits: UUID | None = None

    @property
    def rejected(self) -> bool:
        # Fail closed on anything other than a chain that ends cleanly
        return self.closes_cycle or self.depth_exceeded or self.revisits is not None


class CycleDetector:
    """Walks linked_cohort_id chains with a bounded number of hops."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, lock_rows: bool = True):
        self.max_depth = max_depth
        self.lock_rows = lock_rows

    def trace(self, session: Session, target_cohort_id: UUID, source_cohort_id: UUID) -> CycleTrace:
        """
        Follow linked_cohort_id from source_cohort_id.

        The trace's path lists the cohorts visited, starting with the source.
        """
        trace = CycleTrace()
        current: UUID | None = source_cohort_id

        for _ in range(self.max_depth + 1):
            if current == target_cohort_id:
                trace.path.append(current)
                trace.closes_cycle = True
                return trace
            if current in trace.path:
                trace.revisits = current
                return trace

            trace.path.append(current)
            current = self._next_hop(session, current)
            if current is None:
                return trace

        trace.depth_exceeded = True
        return trace

    def would_create_cycle(
        self, session: Session, target_cohort_id: UUID, source_cohort_id: UUID
    ) -> bool:
        return self.trace(session, target_cohort_id, source_cohort_id).rejected

    def _next_hop(self, session: Session, cohort_id: UUID) -> UUID | None:
        stmt = select(Cohort.linked_cohort_id).where(Cohort.id == cohort_id)
        if self.lock_rows:
            stmt = stmt.with_for_update(read=True)
        return session.execute(stmt).scalar_one_or_none()
