"""Tests for sequential unlocking between phases and steps."""

import pytest

from sitetrack.domain.dependencies import (
    compute_lock_states,
    is_phase_locked,
    is_step_locked,
    phase_predecessor,
)
from sitetrack.domain.models import Phase, PhaseCategory
from tests.conftest import make_phase

pytestmark = pytest.mark.unit


def _mixed_phases(a_progress: int = 40) -> list[Phase]:
    return [
        make_phase("a", category="gros_oeuvre", progress=a_progress),
        make_phase("b", category="second_oeuvre", progress=0),
        make_phase("c", category="gros_oeuvre", progress=0),
    ]


class TestPhaseLocks:
    def test_first_structural_phase_is_unlocked(self):
        assert not is_phase_locked(_mixed_phases(), 0)

    def test_non_structural_phase_is_never_locked(self):
        assert not is_phase_locked(_mixed_phases(), 1)

    def test_structural_phase_locked_by_previous_structural(self):
        phases = _mixed_phases()
        assert phase_predecessor(phases, 2).id == "a"
        assert is_phase_locked(phases, 2)

    def test_unlocks_when_predecessor_completes(self):
        assert not is_phase_locked(_mixed_phases(a_progress=100), 2)

    def test_main_phases_never_locked(self):
        phases = [make_phase("x", progress=0), make_phase("y", progress=0)]
        assert not is_phase_locked(phases, 1)

    def test_missing_category_reads_as_main(self):
        phase = Phase.model_validate({"id": "p", "name": "P", "category": None})
        assert phase.category == PhaseCategory.MAIN


class TestStepLocks:
    def test_first_step_unlocked(self):
        phase = make_phase("p", steps=[0, 0])
        assert not is_step_locked(phase.steps, 0)

    def test_next_step_locked_until_previous_is_complete(self):
        phase = make_phase("p", steps=[99, 0])
        assert is_step_locked(phase.steps, 1)

    def test_next_step_unlocked_after_previous_complete(self):
        phase = make_phase("p", steps=[100, 0, 0])
        assert not is_step_locked(phase.steps, 1)
        assert is_step_locked(phase.steps, 2)


class TestComputeLockStates:
    def test_reports_blocker(self):
        states = compute_lock_states(_mixed_phases())
        assert states["c"].locked is True
        assert states["c"].blocked_by == "a"
        assert states["b"].locked is False
        assert states["b"].blocked_by is None

    def test_steps_of_locked_phase_are_locked(self):
        phases = [
            make_phase("a", category="gros_oeuvre", progress=10),
            make_phase("c", category="gros_oeuvre", steps=[0, 0]),
        ]
        states = compute_lock_states(phases)
        assert states["c"].steps == {"s1": True, "s2": True}

    def test_step_flags_of_unlocked_phase(self):
        states = compute_lock_states([make_phase("p", steps=[100, 20, 0])])
        assert states["p"].steps == {"s1": False, "s2": False, "s3": True}
