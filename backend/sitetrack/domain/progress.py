"""Deterministic progress computation functions.

Pure functions, no I/O. Phase progress is the rounded
mean of its steps, site progress is the rounded mean of its phases.
"""

import math
from collections.abc import Sequence
from typing import TYPE_CHECKING

from sitetrack.core.exceptions import InvalidTargetError

if TYPE_CHECKING:
    from sitetrack.domain.models import Phase

MIN_PROGRESS = 0
MAX_PROGRESS = 100


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (not banker's rounding)."""
    return math.floor(value + 0.5)


def clamp_progress(value: float) -> int:
    """Round a raw progress value and clamp it to 0-100.

    Out-of-range input is clamped, never rejected. Callers rely on this:
    a slider overshoot or a stale client sending 120 lands as 100, and
    infinities land on the nearest bound.

    Raises:
        InvalidTargetError: value is NaN
    """
    if math.isnan(value):
        raise InvalidTargetError(f"Progress must be a number, got {value!r}")
    if value <= MIN_PROGRESS:
        return MIN_PROGRESS
    if value >= MAX_PROGRESS:
        return MAX_PROGRESS
    return round_half_up(value)


def rounded_mean(values: Sequence[int]) -> int:
    """Half-up rounded mean of integers, exact for any length (non-empty)."""
    total = sum(values)
    count = len(values)
    return (2 * total + count) // (2 * count)


def aggregate_phase_progress(phase: "Phase") -> int:
    """Compute phase progress (0-100) from its steps.

    Args:
        phase: Phase with an optional ordered list of steps

    Returns:
        The phase's own progress when it has no steps, otherwise the
        rounded mean of step progress.

    Pure function -- deterministic, no side effects.
    """
    if not phase.steps:
        return phase.progress

    return rounded_mean([clamp_progress(step.progress) for step in phase.steps])


def aggregate_site_progress(phases: Sequence["Phase"]) -> int:
    """Compute site-wide progress from all phases.

    Args:
        phases: Ordered phases of a site

    Returns:
        Integer percentage 0-100, 0 for a site without phases
    """
    if not phases:
        return 0

    return rounded_mean([clamp_progress(phase.progress) for phase in phases])
