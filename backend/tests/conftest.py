"""Shared test fixtures for all test groups."""

from datetime import UTC, datetime

import fakeredis.aioredis
import pytest
import pytest_asyncio

from sitetrack.domain.models import Phase, Site, Step
from sitetrack.services.site_mutation_service import SiteMutationService
from sitetrack.store.site_store import SiteStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
PLANNED_END = datetime(2026, 6, 30, tzinfo=UTC)


def make_phase(phase_id: str, category: str = "main", progress: int = 0, steps: list[int] | None = None) -> Phase:
    """Phase with optional steps given as a list of progress values (ids s1, s2, ...)."""
    return Phase(
        id=phase_id,
        name=phase_id.title(),
        category=category,
        progress=progress,
        steps=[Step(id=f"s{i + 1}", name=f"Step {i + 1}", progress=p) for i, p in enumerate(steps or [])],
    )


def make_site(phases: list[Phase], site_id: str = "site-1", **overrides) -> Site:
    fields = {
        "id": site_id,
        "client_id": "client-1",
        "supervisor_id": "chef-1",
        "name": "Villa Test",
        "address": "12 rue des Lilas",
        "start_date": datetime(2026, 1, 1, tzinfo=UTC),
        "planned_end_date": PLANNED_END,
        "phases": phases,
        "created_at": datetime(2026, 1, 1, tzinfo=UTC),
        "updated_at": datetime(2026, 1, 1, tzinfo=UTC),
    }
    fields.update(overrides)
    return Site(**fields)


@pytest_asyncio.fixture
async def redis():
    """In-process fake Redis."""
    r = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield r
    await r.aclose()


@pytest.fixture
def store(redis):
    return SiteStore(redis, key_prefix="test")


@pytest.fixture
def service(store):
    return SiteMutationService(store)


@pytest_asyncio.fixture
async def structural_site(store):
    """Persisted site: A(structural, 40), B(non-structural, 0), C(structural, 0)."""
    site = make_site(
        [
            make_phase("a", category="gros_oeuvre", progress=40),
            make_phase("b", category="second_oeuvre", progress=0),
            make_phase("c", category="gros_oeuvre", progress=0),
        ]
    )
    await store.create(site)
    return site


@pytest_asyncio.fixture
async def stepped_site(store):
    """Persisted site with one main phase of three steps at 0%."""
    site = make_site([make_phase("p1", steps=[0, 0, 0])])
    await store.create(site)
    return site
