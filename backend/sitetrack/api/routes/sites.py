"""Site progress API routes.

Thin HTTP layer over SiteMutationService. Domain errors (NotFoundError,
LockedDependencyError, InvalidTargetError, PersistenceFailureError) are
mapped to HTTP responses by the application-level exception handler.
"""

import time

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.responses import StreamingResponse

from sitetrack.api.schemas.sites import (
    AddMediaRequest,
    CreateSiteRequest,
    LockStatesResponse,
    PhaseLockResponse,
    SetPhaseProgressRequest,
    SetProgressRequest,
    StepLockResponse,
)
from sitetrack.core.config import get_settings
from sitetrack.core.exceptions import NotFoundError
from sitetrack.db.redis import build_site_store, get_redis
from sitetrack.domain.models import (
    MediaMeta,
    ProgressEntry,
    ProgressUpdate,
    ProgressUpdateInput,
    Site,
    TeamMember,
    TeamMemberInput,
)
from sitetrack.services.media_storage import MediaStorage
from sitetrack.services.site_mutation_service import SYSTEM_ACTOR, SiteMutationService
from sitetrack.store.site_store import SiteStore

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# Dependencies
# ──────────────────────────────────────────────────────────────────────────────


def get_site_store(redis=Depends(get_redis)) -> SiteStore:
    return build_site_store(redis)


def get_media_storage() -> MediaStorage:
    settings = get_settings()
    return MediaStorage(bucket=settings.media_bucket, region=settings.aws_region)


def get_mutation_service(
    store: SiteStore = Depends(get_site_store),
    media_storage: MediaStorage = Depends(get_media_storage),
) -> SiteMutationService:
    return SiteMutationService(store, media_storage=media_storage)


def get_actor(x_user_id: str | None = Header(default=None)) -> str:
    """Acting user id. Authentication happens upstream; the id is trusted here."""
    return x_user_id or SYSTEM_ACTOR


# ──────────────────────────────────────────────────────────────────────────────
# Creation
# ──────────────────────────────────────────────────────────────────────────────


@router.post("", response_model=Site, status_code=201)
async def create_site(body: CreateSiteRequest, service: SiteMutationService = Depends(get_mutation_service)):
    """Create a site with the standard phase template, all phases at 0%."""
    return await service.create_site(
        body.client_id,
        body.supervisor_id,
        body.start_date,
        body.planned_end_date,
        name=body.name,
        address=body.address,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────


@router.get("/{site_id}", response_model=Site)
async def get_site(site_id: str, service: SiteMutationService = Depends(get_mutation_service)):
    return await service.get_site(site_id)


@router.get("/{site_id}/locks", response_model=LockStatesResponse)
async def get_lock_states(site_id: str, service: SiteMutationService = Depends(get_mutation_service)):
    """Locked flags for every phase and step, computed from current data."""
    states = await service.get_lock_states(site_id)
    return LockStatesResponse(
        site_id=site_id,
        phases=[
            PhaseLockResponse(
                phase_id=state.phase_id,
                locked=state.locked,
                blocked_by=state.blocked_by,
                steps=[StepLockResponse(step_id=step_id, locked=locked) for step_id, locked in state.steps.items()],
            )
            for state in states.values()
        ],
    )


# ──────────────────────────────────────────────────────────────────────────────
# Progress
# ──────────────────────────────────────────────────────────────────────────────


@router.put("/{site_id}/phases/{phase_id}/progress", response_model=Site)
async def set_phase_progress(
    site_id: str,
    phase_id: str,
    body: SetPhaseProgressRequest,
    actor: str = Depends(get_actor),
    service: SiteMutationService = Depends(get_mutation_service),
):
    """Set progress of a phase without steps.

    Raises:
        404: Site or phase not found
        409: Phase locked by its predecessor
        422: Phase has steps
        503: Write did not complete
    """
    return await service.set_phase_progress(site_id, phase_id, body.progress, notes=body.notes, updated_by=actor)


@router.put("/{site_id}/phases/{phase_id}/steps/{step_id}/progress", response_model=Site)
async def set_step_progress(
    site_id: str,
    phase_id: str,
    step_id: str,
    body: SetProgressRequest,
    actor: str = Depends(get_actor),
    service: SiteMutationService = Depends(get_mutation_service),
):
    return await service.set_step_progress(site_id, phase_id, step_id, body.progress, updated_by=actor)


# ──────────────────────────────────────────────────────────────────────────────
# Media, team, activity feed
# ──────────────────────────────────────────────────────────────────────────────


@router.post("/{site_id}/media", response_model=ProgressEntry, status_code=201)
async def add_media(
    site_id: str,
    body: AddMediaRequest,
    actor: str = Depends(get_actor),
    service: SiteMutationService = Depends(get_mutation_service),
):
    meta = MediaMeta(
        url=body.url,
        kind=body.kind,
        description=body.description,
        duration=body.duration,
        thumbnail_url=body.thumbnail_url,
        uploaded_by=actor,
    )
    return await service.add_media(site_id, meta, phase_id=body.phase_id, step_id=body.step_id)


@router.delete("/{site_id}/media/{entry_id}", status_code=204)
async def remove_media(
    site_id: str,
    entry_id: str,
    service: SiteMutationService = Depends(get_mutation_service),
):
    await service.remove_media(site_id, entry_id)
    return Response(status_code=204)


@router.post("/{site_id}/team", response_model=TeamMember, status_code=201)
async def add_team_member(
    site_id: str,
    body: TeamMemberInput,
    actor: str = Depends(get_actor),
    service: SiteMutationService = Depends(get_mutation_service),
):
    return await service.add_team_member(site_id, body, added_by=actor)


@router.delete("/{site_id}/team/{member_id}", status_code=204)
async def remove_team_member(
    site_id: str,
    member_id: str,
    service: SiteMutationService = Depends(get_mutation_service),
):
    await service.remove_team_member(site_id, member_id)
    return Response(status_code=204)


@router.post("/{site_id}/updates", response_model=ProgressUpdate, status_code=201)
async def add_progress_update(
    site_id: str,
    body: ProgressUpdateInput,
    actor: str = Depends(get_actor),
    service: SiteMutationService = Depends(get_mutation_service),
):
    return await service.add_progress_update(site_id, body, created_by=actor)


# ──────────────────────────────────────────────────────────────────────────────
# Live feed
# ──────────────────────────────────────────────────────────────────────────────


@router.get("/{site_id}/events/stream")
async def stream_site(
    site_id: str,
    request: Request,
    store: SiteStore = Depends(get_site_store),
):
    """Stream the full site document via SSE on every change.

    Emits the current document first, then one ``site`` event per write.
    Sends a heartbeat event when idle to keep proxies from closing the stream.

    Raises:
        HTTP 404: If the site does not exist
    """
    if await store.get(site_id) is None:
        raise NotFoundError("Site", site_id)

    heartbeat_interval = get_settings().events_heartbeat_interval

    async def event_generator():
        last_heartbeat = time.monotonic()
        feed = store.feed(site_id)

        try:
            async for site in feed:
                if await request.is_disconnected():
                    return

                if site is None:
                    now = time.monotonic()
                    if now - last_heartbeat >= heartbeat_interval:
                        yield "event: heartbeat\ndata: {}\n\n"
                        last_heartbeat = now
                    continue

                yield f"event: site\ndata: {site.model_dump_json(by_alias=True, exclude_none=True)}\n\n"
                last_heartbeat = time.monotonic()
        finally:
            await feed.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
