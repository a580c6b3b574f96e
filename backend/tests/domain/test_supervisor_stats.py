"""Tests for supervisor portfolio statistics."""

import pytest

from sitetrack.domain.models import SiteStatus
from sitetrack.domain.stats import compute_supervisor_stats
from tests.conftest import make_site

pytestmark = pytest.mark.unit


def test_empty_portfolio():
    stats = compute_supervisor_stats([])
    assert stats.total_sites == 0
    assert stats.average_progress == 0


def test_counts_by_status_and_averages():
    sites = [
        make_site([], site_id="s1", status=SiteStatus.ACTIVE, global_progress=50),
        make_site([], site_id="s2", status=SiteStatus.COMPLETED, global_progress=100),
        make_site([], site_id="s3", status=SiteStatus.OVERDUE, global_progress=61),
        make_site([], site_id="s4", status=SiteStatus.AWAITING, global_progress=0),
    ]
    stats = compute_supervisor_stats(sites)

    assert stats.total_sites == 4
    assert stats.active_sites == 1
    assert stats.completed_sites == 1
    assert stats.overdue_sites == 1
    assert stats.awaiting_sites == 1
    # 211 / 4 = 52.75
    assert stats.average_progress == 53
