"""
Tests for cohort link cycle detection.

Chains are written straight onto the cohort rows so the detector can be
exercised without going through the coordinator.
"""

from uuid import uuid4

import pytest

from cohortlinks.links.cycles import CycleDetector, CycleTrace


def _point(session, cohort, source):
    cohort.active_link_type = "cohort"
    cohort.linked_cohort_id = source.id
    session.flush()


def _chain(seed, session, length, prefix="C"):
    cohorts = [seed.cohort(f"{prefix}{i}") for i in range(length)]
    for current, nxt in zip(cohorts, cohorts[1:]):
        _point(session, current, nxt)
    return cohorts


class TestCycleTrace:
    def test_clean_trace_is_not_rejected(self):
        assert CycleTrace(path=[uuid4()]).rejected is False

    @pytest.mark.parametrize(
        "trace",
        [
            CycleTrace(closes_cycle=True),
            CycleTrace(depth_exceeded=True),
            CycleTrace(revisits=uuid4()),
        ],
    )
    def test_any_anomaly_is_rejected(self, trace):
        assert trace.rejected is True


class TestCycleDetector:
    """Walks linked_cohort_id chains from the proposed source."""

    def test_self_link_closes_cycle(self, session, seed):
        cohort = seed.cohort("Spring25")

        trace = CycleDetector().trace(session, cohort.id, cohort.id)

        assert trace.closes_cycle is True
        assert trace.path == [cohort.id]

    def test_unlinked_source_is_accepted(self, session, seed):
        target = seed.cohort("Spring25")
        source = seed.cohort("Fall24")

        trace = CycleDetector().trace(session, target.id, source.id)

        assert trace.rejected is False
        assert trace.path == [source.id]

    def test_direct_back_link_is_detected(self, session, seed):
        spring = seed.cohort("Spring25")
        fall = seed.cohort("Fall24")
        _point(session, fall, spring)

        assert CycleDetector().would_create_cycle(session, spring.id, fall.id) is True

    def test_transitive_back_link_is_detected(self, session, seed):
        a, b, c = _chain(seed, session, 3)

        trace = CycleDetector().trace(session, c.id, a.id)

        assert trace.closes_cycle is True
        assert trace.path == [a.id, b.id, c.id]

    def test_chain_not_reaching_target_is_accepted(self, session, seed):
        chain = _chain(seed, session, 4)
        target = seed.cohort("Target")

        trace = CycleDetector().trace(session, target.id, chain[0].id)

        assert trace.rejected is False
        assert trace.path == [c.id for c in chain]

    def test_chain_at_depth_limit_is_accepted(self, session, seed):
        chain = _chain(seed, session, 4)
        target = seed.cohort("Target")

        assert CycleDetector(max_depth=3).would_create_cycle(session, target.id, chain[0].id) is False

    def test_chain_beyond_depth_limit_fails_closed(self, session, seed):
        chain = _chain(seed, session, 5)
        target = seed.cohort("Target")

        trace = CycleDetector(max_depth=3).trace(session, target.id, chain[0].id)

        assert trace.depth_exceeded is True
        assert trace.closes_cycle is False
        assert trace.rejected is True

    def test_existing_loop_elsewhere_fails_closed(self, session, seed):
        a = seed.cohort("A")
        b = seed.cohort("B")
        _point(session, a, b)
        _point(session, b, a)
        target = seed.cohort("Target")

        trace = CycleDetector().trace(session, target.id, a.id)

        assert trace.revisits == a.id
        assert trace.rejected is True

    def test_lock_free_walk_gives_same_answer(self, session, seed):
        a, b, c = _chain(seed, session, 3)

        assert CycleDetector(lock_rows=False).would_create_cycle(session, c.id, a.id) is True
        assert CycleDetector(lock_rows=False).would_create_cycle(session, seed.cohort("X").id, a.id) is False
