"""Tests for LinkStateAuditor (finding and repairing drifted cohorts)."""

from datetime import datetime, timedelta, timezone

import pytest

from cohortlinks.db.database import session_scope
from cohortlinks.links import ActiveLinkType, LinkStateCoordinator
from cohortlinks.links.audit import LinkStateAuditor


@pytest.fixture
def auditor(db_url):
    return LinkStateAuditor()


@pytest.fixture
def drifted(session, seed):
    """
    Three cohorts:
    - Consistent: linked to the global library through the coordinator
    - Stale: says 'global' but has no link records
    - Mixed: global records plus a newer cohort record
    """
    globals_ = seed.global_modules(2)
    source = seed.cohort("Source")
    source_modules = seed.modules(source, 2)

    consistent = seed.cohort("Consistent")
    LinkStateCoordinator().set_link(session, consistent.id, "global", None, [m.id for m in globals_])

    stale = seed.cohort("Stale", active_link_type="global")

    mixed = seed.cohort("Mixed", active_link_type="global")
    earlier = datetime.now(timezone.utc) - timedelta(days=1)
    seed.raw_link(mixed, globals_[0], "global", linked_at=earlier)
    seed.raw_link(mixed, globals_[1], "global", linked_at=earlier)
    seed.raw_link(mixed, source_modules[0], "cohort", source=source)

    seed.commit()
    return {"consistent": consistent, "stale": stale, "mixed": mixed, "source": source}


class TestFindInconsistencies:
    def test_clean_database(self, session, seed, auditor):
        seed.cohort("Spring25")

        assert auditor.find_inconsistencies(session) == []

    def test_reports_drifted_cohorts(self, session, drifted, auditor):
        mismatches = {m.cohort_name: m for m in auditor.find_inconsistencies(session)}

        assert set(mismatches) == {"Mixed", "Stale"}
        assert mismatches["Stale"].link_count == 0
        assert "no link records" in mismatches["Stale"].reason
        assert mismatches["Mixed"].link_count == 3
        assert mismatches["Mixed"].reason == "link records mix sources"
        assert sorted(mismatches["Mixed"].link_types) == ["cohort", "global"]


class TestRepair:
    def test_repair_keeps_most_recent_source(self, session, drifted, auditor):
        session.rollback()

        repaired = auditor.repair()

        assert repaired == {drifted["mixed"].id: 2, drifted["stale"].id: 0}
        with session_scope() as check:
            assert auditor.find_inconsistencies(check) == []
            coordinator = LinkStateCoordinator()
            mixed = coordinator.get_link_state(check, drifted["mixed"].id)
            stale = coordinator.get_link_state(check, drifted["stale"].id)
            consistent = coordinator.get_link_state(check, drifted["consistent"].id)

        assert mixed.active_link_type is ActiveLinkType.COHORT
        assert mixed.linked_cohort_id == drifted["source"].id
        assert mixed.link_count == 1
        assert stale.active_link_type is ActiveLinkType.OWN
        assert consistent.active_link_type is ActiveLinkType.GLOBAL
        assert consistent.link_count == 2

    def test_repair_selected_cohorts_only(self, session, drifted, auditor):
        session.rollback()

        repaired = auditor.repair([drifted["stale"].id])

        assert list(repaired) == [drifted["stale"].id]
        with session_scope() as check:
            remaining = [m.cohort_name for m in auditor.find_inconsistencies(check)]
        assert remaining == ["Mixed"]
