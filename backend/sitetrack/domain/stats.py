"""Portfolio statistics for a supervisor's sites.

Pure functions over already-loaded Site documents.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from sitetrack.domain.models import Site, SiteStatus
from sitetrack.domain.progress import rounded_mean


@dataclass
class SupervisorStats:
    total_sites: int
    active_sites: int
    completed_sites: int
    overdue_sites: int
    awaiting_sites: int
    average_progress: int


def compute_supervisor_stats(sites: Sequence[Site]) -> SupervisorStats:
    """Count sites per status and average their global progress.

    Uses the persisted status of each site; average is rounded half-up,
    0 when there are no sites.
    """
    total = len(sites)
    by_status = {status: 0 for status in SiteStatus}
    for site in sites:
        by_status[site.status] += 1

    average = rounded_mean([site.global_progress for site in sites]) if sites else 0

    return SupervisorStats(
        total_sites=total,
        active_sites=by_status[SiteStatus.ACTIVE],
        completed_sites=by_status[SiteStatus.COMPLETED],
        overdue_sites=by_status[SiteStatus.OVERDUE],
        awaiting_sites=by_status[SiteStatus.AWAITING],
        average_progress=average,
    )
