"""Sequential unlocking rules between phases and between steps.

Pure domain functions, no I/O. A locked phase or step must reject progress
edits; lock state is never persisted, it is recomputed from current data.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from sitetrack.domain.models import Phase, PhaseCategory, Step
from sitetrack.domain.progress import MAX_PROGRESS

# Phases of these categories must complete in order relative to each other.
DEPENDENCY_BEARING_CATEGORIES: frozenset[PhaseCategory] = frozenset({PhaseCategory.GROS_OEUVRE})


@dataclass
class PhaseLockState:
    """Locked flags for one phase and each of its steps."""

    phase_id: str
    locked: bool
    blocked_by: str | None = None
    steps: dict[str, bool] = field(default_factory=dict)


def step_predecessor(steps: Sequence[Step], index: int) -> Step | None:
    """Return the step that must reach 100% before steps[index] unlocks."""
    if index <= 0:
        return None
    return steps[index - 1]


def is_step_locked(steps: Sequence[Step], index: int) -> bool:
    """Steps are strictly sequential: step i > 0 is locked until step i-1 is at 100%."""
    predecessor = step_predecessor(steps, index)
    return predecessor is not None and predecessor.progress < MAX_PROGRESS


def phase_predecessor(phases: Sequence[Phase], index: int) -> Phase | None:
    """Return the nearest preceding phase of the same dependency-bearing category.

    Returns None for phases outside DEPENDENCY_BEARING_CATEGORIES and for the
    first phase of their category, whatever their position among other
    categories.
    """
    category = phases[index].category
    if category not in DEPENDENCY_BEARING_CATEGORIES:
        return None

    for candidate in reversed(phases[:index]):
        if candidate.category == category:
            return candidate
    return None


def is_phase_locked(phases: Sequence[Phase], index: int) -> bool:
    """Check whether phases[index] is locked by its category predecessor.

    Non dependency-bearing phases are never locked; siblings may be worked
    in any order or in parallel.
    """
    predecessor = phase_predecessor(phases, index)
    return predecessor is not None and predecessor.progress < MAX_PROGRESS


def compute_lock_states(phases: Sequence[Phase]) -> dict[str, PhaseLockState]:
    """Compute the locked flags for every phase and step of a site.

    Steps of a locked phase are reported locked as well.
    """
    states: dict[str, PhaseLockState] = {}

    for index, phase in enumerate(phases):
        predecessor = phase_predecessor(phases, index)
        phase_locked = predecessor is not None and predecessor.progress < MAX_PROGRESS

        states[phase.id] = PhaseLockState(
            phase_id=phase.id,
            locked=phase_locked,
            blocked_by=predecessor.id if phase_locked else None,
            steps={
                step.id: phase_locked or is_step_locked(phase.steps, step_index)
                for step_index, step in enumerate(phase.steps)
            },
        )

    return states
