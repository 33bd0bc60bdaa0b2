"""
Tests for the two-step complete untag.

Each step commits on its own, so these tests seed and commit first and read
back through fresh session scopes.
"""

from unittest.mock import Mock
from uuid import uuid4

import pytest

from cohortlinks.db.database import session_scope
from cohortlinks.db.models import LearningModule
from cohortlinks.links import (
    ActiveLinkType,
    LinkStateCoordinator,
    ModuleCatalog,
    StorageError,
    UntagOrchestrator,
    UntagStep,
    UntagStepError,
)


@pytest.fixture
def linked_cohort(session, seed, db_url):
    """Spring25 owns two modules and consumes the global library."""
    spring = seed.cohort("Spring25")
    seed.modules(spring, 2, prefix="Spring")
    globals_ = seed.global_modules(3)
    LinkStateCoordinator().set_link(session, spring.id, "global", None, [m.id for m in globals_])
    seed.commit()
    return spring


def _state(cohort_id):
    with session_scope() as session:
        return LinkStateCoordinator().get_link_state(session, cohort_id)


def _owned(cohort_id):
    with session_scope() as session:
        return session.query(LearningModule).filter(LearningModule.cohort_id == cohort_id).count()


class TestCompleteUntag:
    def test_unlinks_then_converts(self, linked_cohort):
        result = UntagOrchestrator().complete_untag(linked_cohort.id)

        assert result.unlinked_count == 3
        assert result.converted_count == 2
        state = _state(linked_cohort.id)
        assert state.active_link_type is ActiveLinkType.OWN
        assert state.link_count == 0
        assert _owned(linked_cohort.id) == 0

    def test_rerun_is_a_noop(self, linked_cohort):
        UntagOrchestrator().complete_untag(linked_cohort.id)

        result = UntagOrchestrator().complete_untag(linked_cohort.id)

        assert result.unlinked_count == 0
        assert result.converted_count == 0

    def test_unknown_cohort_fails_first_step(self, db_url):
        with pytest.raises(UntagStepError) as exc_info:
            UntagOrchestrator().complete_untag(uuid4())

        error = exc_info.value
        assert error.step == UntagStep.UNLINK_ALL.value
        assert error.unlinked_count is None
        assert error.retryable is False

    def test_second_step_failure_keeps_first_step(self, linked_cohort):
        catalog = Mock(spec=ModuleCatalog)
        catalog.convert_to_global.side_effect = StorageError("convert_to_global: disk I/O error")

        with pytest.raises(UntagStepError) as exc_info:
            UntagOrchestrator(catalog=catalog).complete_untag(linked_cohort.id)

        error = exc_info.value
        assert error.step == UntagStep.CONVERT_TO_GLOBAL.value
        assert error.unlinked_count == 3
        assert error.retryable is True
        assert isinstance(error.cause, StorageError)

        # Step 1 stays committed; modules are still owned
        assert _state(linked_cohort.id).active_link_type is ActiveLinkType.OWN
        assert _owned(linked_cohort.id) == 2

        retry = UntagOrchestrator().complete_untag(linked_cohort.id)
        assert retry.unlinked_count == 0
        assert retry.converted_count == 2

    def test_each_step_gets_its_own_unit_of_work(self, linked_cohort):
        opened = []

        def counting_scope():
            opened.append(1)
            return session_scope()

        UntagOrchestrator(unit_of_work=counting_scope).complete_untag(linked_cohort.id)

        assert len(opened) == 2
