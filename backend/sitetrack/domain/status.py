"""Status derivation from numeric progress.

Pure domain logic with no external dependencies.
"""

from collections.abc import Sequence
from datetime import datetime

from sitetrack.domain.models import Phase, SiteStatus, WorkStatus
from sitetrack.domain.progress import MAX_PROGRESS, MIN_PROGRESS, aggregate_site_progress


def work_status(progress: int) -> WorkStatus:
    """Map a phase or step progress to its status.

    0 is pending, 100 is completed, anything in between is in progress.
    "Locked" is not a status; it is computed separately by the dependency rules.
    """
    if progress <= MIN_PROGRESS:
        return WorkStatus.PENDING
    if progress >= MAX_PROGRESS:
        return WorkStatus.COMPLETED
    return WorkStatus.IN_PROGRESS


def site_status(phases: Sequence[Phase], planned_end_date: datetime, now: datetime) -> SiteStatus:
    """Derive the site status from its phases and planned end date.

    Rules (checked in order):
        - global progress 100 -> COMPLETED, even past the deadline
        - global progress 0 -> AWAITING
        - now after planned end -> OVERDUE
        - otherwise ACTIVE
    """
    global_progress = aggregate_site_progress(phases)

    if global_progress == MAX_PROGRESS:
        return SiteStatus.COMPLETED
    if global_progress == MIN_PROGRESS:
        return SiteStatus.AWAITING
    if now > planned_end_date:
        return SiteStatus.OVERDUE
    return SiteStatus.ACTIVE
