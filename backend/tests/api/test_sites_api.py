"""API tests for the site routes.

Runs the full application (exception handlers, correlation middleware) with
fakeredis behind get_redis and S3 disabled behind get_media_storage.
"""

import json
from datetime import UTC, datetime
import uuid
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from sitetrack.api.routes.sites import get_media_storage, get_mutation_service, stream_site
from sitetrack.core.exceptions import PersistenceFailureError
from sitetrack.db.redis import get_redis
from sitetrack.domain.templates import STANDARD_PHASES
from sitetrack.main import create_app
from sitetrack.services.media_storage import MediaStorage
from sitetrack.store.site_store import SiteStore
from tests.conftest import make_phase, make_site

pytestmark = pytest.mark.unit


# ──────────────────────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def app(redis):
    app = create_app()

    async def mock_redis():
        return redis

    app.dependency_overrides[get_redis] = mock_redis
    app.dependency_overrides[get_media_storage] = lambda: MediaStorage(bucket="")
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def seeded(redis):
    """Site with A(structural,40), B(finishing,0), C(structural,0) and a stepped phase D."""
    store = SiteStore(redis)
    site = make_site(
        [
            make_phase("a", category="gros_oeuvre", progress=40),
            make_phase("b", category="second_oeuvre"),
            make_phase("c", category="gros_oeuvre"),
            make_phase("d", steps=[100, 0]),
        ],
        planned_end_date=datetime(2099, 12, 31, tzinfo=UTC),
    )
    await store.create(site)
    return site


def assert_error(response, status_code: int, kind: str):
    assert response.status_code == status_code
    body = response.json()
    assert body["error"] == kind
    uuid.UUID(body["debug_id"])


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────


async def test_get_site_returns_camel_case_document(client, seeded):
    response = await client.get("/api/sites/site-1")

    assert response.status_code == 200
    body = response.json()
    assert body["globalProgress"] == 0
    assert body["supervisorId"] == "chef-1"
    assert [p["id"] for p in body["phases"]] == ["a", "b", "c", "d"]


async def test_get_unknown_site_is_404(client):
    response = await client.get("/api/sites/ghost")

    assert_error(response, 404, "not_found")
    assert "ghost" in response.json()["detail"]


async def test_lock_states(client, seeded):
    response = await client.get("/api/sites/site-1/locks")

    assert response.status_code == 200
    phases = {p["phase_id"]: p for p in response.json()["phases"]}
    assert phases["c"]["locked"] is True
    assert phases["c"]["blocked_by"] == "a"
    assert phases["b"]["locked"] is False
    assert phases["d"]["steps"] == [
        {"step_id": "s1", "locked": False},
        {"step_id": "s2", "locked": False},
    ]


async def test_create_site_then_fetch_by_client(client):
    response = await client.post(
        "/api/sites",
        json={
            "client_id": "client-9",
            "supervisor_id": "chef-9",
            "name": "Maison Test",
            "start_date": "2026-04-01T00:00:00Z",
            "planned_end_date": "2099-12-31T00:00:00Z",
        },
    )

    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "awaiting"
    assert created["globalProgress"] == 0
    assert len(created["phases"]) == len(STANDARD_PHASES)

    fetched = await client.get("/api/clients/client-9/site")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]


async def test_create_site_requires_dates(client):
    response = await client.post("/api/sites", json={"client_id": "c", "supervisor_id": "s"})

    assert_error(response, 422, "validation_error")


async def test_client_without_site_is_404(client):
    response = await client.get("/api/clients/nobody/site")

    assert_error(response, 404, "not_found")


# ──────────────────────────────────────────────────────────────────────────────
# Progress writes
# ──────────────────────────────────────────────────────────────────────────────


async def test_set_step_progress(client, seeded):
    response = await client.put(
        "/api/sites/site-1/phases/d/steps/s2/progress",
        json={"progress": 100},
        headers={"X-User-ID": "chef-7"},
    )

    assert response.status_code == 200
    body = response.json()
    phase_d = body["phases"][3]
    assert phase_d["progress"] == 100
    assert phase_d["status"] == "completed"
    assert phase_d["steps"][1]["updatedBy"] == "chef-7"
    # (40 + 0 + 0 + 100) / 4 = 35
    assert body["globalProgress"] == 35
    assert body["status"] == "active"


async def test_locked_phase_is_409(client, seeded):
    response = await client.put("/api/sites/site-1/phases/c/progress", json={"progress": 10})

    assert_error(response, 409, "locked_dependency")


async def test_phase_with_steps_is_422(client, seeded):
    response = await client.put("/api/sites/site-1/phases/d/progress", json={"progress": 10})

    assert_error(response, 422, "invalid_target")


async def test_out_of_range_progress_is_clamped(client, seeded):
    response = await client.put("/api/sites/site-1/phases/b/progress", json={"progress": 250, "notes": "ok"})

    assert response.status_code == 200
    assert response.json()["phases"][1]["progress"] == 100
    assert response.json()["phases"][1]["notes"] == "ok"


@pytest.mark.parametrize("raw", ["Infinity", "-Infinity", "NaN"])
async def test_non_finite_progress_is_422(client, seeded, raw):
    response = await client.put(
        "/api/sites/site-1/phases/b/progress",
        content=f'{{"progress": {raw}}}',
        headers={"Content-Type": "application/json"},
    )

    assert_error(response, 422, "validation_error")
    site = (await client.get("/api/sites/site-1")).json()
    assert site["phases"][1]["progress"] == 0


async def test_persistence_failure_is_503(app, client):
    service = MagicMock()
    service.set_step_progress = AsyncMock(side_effect=PersistenceFailureError("write abandoned"))
    app.dependency_overrides[get_mutation_service] = lambda: service

    response = await client.put("/api/sites/site-1/phases/d/steps/s1/progress", json={"progress": 10})

    assert_error(response, 503, "persistence_failure")


# ──────────────────────────────────────────────────────────────────────────────
# Media, team, activity feed
# ──────────────────────────────────────────────────────────────────────────────


async def test_media_add_and_remove(client, seeded):
    created = await client.post(
        "/api/sites/site-1/media",
        json={"url": "https://cdn.test/a.jpg", "phase_id": "d", "step_id": "s1"},
        headers={"X-User-ID": "chef-1"},
    )
    assert created.status_code == 201
    entry = created.json()
    assert entry["type"] == "image"
    assert entry["uploadedBy"] == "chef-1"

    site = (await client.get("/api/sites/site-1")).json()
    assert site["phases"][3]["photos"] == ["https://cdn.test/a.jpg"]

    deleted = await client.delete(f"/api/sites/site-1/media/{entry['id']}")
    assert deleted.status_code == 204

    site = (await client.get("/api/sites/site-1")).json()
    assert site["gallery"] == []
    assert site["phases"][3]["photos"] == []
    assert site["phases"][3]["steps"][0]["photos"] == []


async def test_media_step_without_phase_is_422(client, seeded):
    response = await client.post("/api/sites/site-1/media", json={"url": "https://cdn.test/a.jpg", "step_id": "s1"})

    assert_error(response, 422, "invalid_target")


async def test_team_member_lifecycle(client, seeded):
    created = await client.post(
        "/api/sites/site-1/team",
        json={"name": "Karim", "role": "Maçon", "phone": "0600000000"},
        headers={"X-User-ID": "chef-1"},
    )
    assert created.status_code == 201
    member = created.json()
    assert member["addedBy"] == "chef-1"

    assert (await client.delete(f"/api/sites/site-1/team/{member['id']}")).status_code == 204
    assert_error(await client.delete(f"/api/sites/site-1/team/{member['id']}"), 404, "not_found")


async def test_progress_update_posted(client, seeded):
    response = await client.post(
        "/api/sites/site-1/updates",
        json={"title": "Dalle coulée", "kind": "milestone", "related_phase_id": "d"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["type"] == "milestone"
    assert body["createdBy"] == "system"


# ──────────────────────────────────────────────────────────────────────────────
# Supervisor stats and health
# ──────────────────────────────────────────────────────────────────────────────


async def test_supervisor_stats(client, seeded):
    response = await client.get("/api/supervisors/chef-1/stats")

    assert response.status_code == 200
    assert response.json() == {
        "supervisor_id": "chef-1",
        "total_sites": 1,
        "active_sites": 0,
        "completed_sites": 0,
        "overdue_sites": 0,
        "awaiting_sites": 1,
        "average_progress": 0,
    }


async def test_health_has_correlation_id(client):
    response = await client.get("/api/health", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.headers["x-request-id"] == "req-123"


# ──────────────────────────────────────────────────────────────────────────────
# SSE stream
# ──────────────────────────────────────────────────────────────────────────────


async def test_stream_unknown_site_is_404(client):
    response = await client.get("/api/sites/ghost/events/stream")

    assert_error(response, 404, "not_found")


async def test_stream_emits_current_document_first(redis, seeded):
    """Drive the generator directly; the stream itself never ends on its own."""
    request = MagicMock()
    request.is_disconnected = AsyncMock(side_effect=[False, True])

    response = await stream_site("site-1", request, store=SiteStore(redis))

    assert response.media_type == "text/event-stream"
    assert response.headers["x-accel-buffering"] == "no"

    chunks = [chunk async for chunk in response.body_iterator]
    assert len(chunks) == 1
    assert chunks[0].startswith("event: site\n")
    data = json.loads(chunks[0].split("data: ", 1)[1])
    assert data["id"] == "site-1"
    assert data["globalProgress"] == 0
