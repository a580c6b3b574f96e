"""SiteMutationService: the only writer of site documents.

Every change to an existing site is a single atomic read-modify-write through
SiteStore.transact: read the current document, validate (existence, lock
state), recompute derived fields, write the changed top-level fields.
Validation runs inside the transaction against freshly read data, so a
stale lock computation on a client can never commit a locked write.

Progress input is clamped to 0-100, never rejected. This is intentional.
NaN is the one exception: it has no place on the scale and raises
InvalidTargetError.
"""

import uuid
from datetime import UTC, datetime

import structlog

from sitetrack.core.exceptions import InvalidTargetError, LockedDependencyError, NotFoundError
from sitetrack.core.logging import site_context
from sitetrack.domain.dependencies import (
    PhaseLockState,
    compute_lock_states,
    phase_predecessor,
    step_predecessor,
)
from sitetrack.domain.models import (
    MediaMeta,
    Phase,
    ProgressEntry,
    ProgressUpdate,
    ProgressUpdateInput,
    Site,
    SiteUpdate,
    Step,
    TeamMember,
    TeamMemberInput,
)
from sitetrack.domain.progress import MAX_PROGRESS, aggregate_phase_progress, aggregate_site_progress, clamp_progress
from sitetrack.domain.stats import SupervisorStats, compute_supervisor_stats
from sitetrack.domain.status import site_status, work_status
from sitetrack.domain.templates import build_standard_phases
from sitetrack.services.media_storage import MediaStorage
from sitetrack.store.site_store import SiteMutation, SiteStore

logger = structlog.get_logger(__name__)

SYSTEM_ACTOR = "system"


def _require_phase(site: Site, phase_id: str) -> tuple[int, Phase]:
    found = site.find_phase(phase_id)
    if found is None:
        raise NotFoundError("Phase", phase_id)
    return found


def _require_step(phase: Phase, step_id: str) -> tuple[int, Step]:
    found = phase.find_step(step_id)
    if found is None:
        raise NotFoundError("Step", step_id)
    return found


def _ensure_phase_unlocked(phases: list[Phase], index: int) -> None:
    predecessor = phase_predecessor(phases, index)
    if predecessor is not None and predecessor.progress < MAX_PROGRESS:
        raise LockedDependencyError("Phase", phases[index].id, predecessor.id)


def _ensure_step_unlocked(phase: Phase, index: int) -> None:
    predecessor = step_predecessor(phase.steps, index)
    if predecessor is not None and predecessor.progress < MAX_PROGRESS:
        raise LockedDependencyError("Step", phase.steps[index].id, predecessor.id)


def _replace(items: list, index: int, item) -> list:
    updated = list(items)
    updated[index] = item
    return updated


def _progress_update(site: Site, phases: list[Phase], now: datetime) -> SiteUpdate:
    """Build the write for a progress change: phases plus recomputed site fields."""
    return SiteUpdate(
        phases=phases,
        global_progress=aggregate_site_progress(phases),
        status=site_status(phases, site.planned_end_date, now),
        updated_at=now,
    )


def _without_url(photos: list[str], url: str) -> list[str]:
    return [photo for photo in photos if photo != url]


def _purge_media_url(phase: Phase, url: str) -> Phase:
    steps = [step.model_copy(update={"photos": _without_url(step.photos, url)}) for step in phase.steps]
    return phase.model_copy(update={"photos": _without_url(phase.photos, url), "steps": steps})


class SiteMutationService:
    """Service layer for every change to a site document.

    Args:
        store: Site document store
        media_storage: Optional binary store used by remove_media
    """

    def __init__(self, store: SiteStore, media_storage: MediaStorage | None = None):
        self.store = store
        self.media_storage = media_storage

    async def _commit(self, site_id: str, mutate: SiteMutation, **ids: str | None) -> Site:
        # retry and failure events from the store carry the target ids
        with site_context(site_id, **ids):
            return await self.store.transact(site_id, mutate)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_site(self, site_id: str) -> Site:
        site = await self.store.get(site_id)
        if site is None:
            raise NotFoundError("Site", site_id)
        return site

    async def get_lock_states(self, site_id: str) -> dict[str, PhaseLockState]:
        site = await self.get_site(site_id)
        return compute_lock_states(site.phases)

    async def get_client_site(self, client_id: str) -> Site:
        site = await self.store.find_client_site(client_id)
        if site is None:
            raise NotFoundError("Client site", client_id)
        return site

    async def get_supervisor_stats(self, supervisor_id: str) -> SupervisorStats:
        sites = await self.store.list_supervisor_sites(supervisor_id)
        return compute_supervisor_stats(sites)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_site(
        self,
        client_id: str,
        supervisor_id: str,
        start_date: datetime,
        planned_end_date: datetime,
        name: str = "",
        address: str = "",
        phases: list[Phase] | None = None,
        now: datetime | None = None,
    ) -> Site:
        """Create a site, seeded with the standard phase template unless phases are given.

        Global progress and status are derived from the phases, never taken
        from the caller.
        """
        now = now or datetime.now(UTC)
        phases = build_standard_phases() if phases is None else phases
        site = Site(
            id=str(uuid.uuid4()),
            client_id=client_id,
            supervisor_id=supervisor_id,
            name=name,
            address=address,
            start_date=start_date,
            planned_end_date=planned_end_date,
            phases=phases,
            global_progress=aggregate_site_progress(phases),
            status=site_status(phases, planned_end_date, now),
            created_at=now,
            updated_at=now,
        )
        await self.store.create(site)
        return site

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def set_step_progress(
        self,
        site_id: str,
        phase_id: str,
        step_id: str,
        progress: float,
        updated_by: str | None = None,
        now: datetime | None = None,
    ) -> Site:
        """Set the progress of one step and recompute phase and site.

        Args:
            site_id: Site identifier
            phase_id: Owning phase identifier
            step_id: Step identifier
            progress: Raw target progress, clamped to 0-100
            updated_by: Acting user id
            now: Current time (for deterministic testing)

        Returns:
            The persisted Site

        Raises:
            NotFoundError: Site, phase or step missing
            LockedDependencyError: The phase or the step is locked
            PersistenceFailureError: The write did not complete
        """
        now = now or datetime.now(UTC)
        value = clamp_progress(progress)
        actor = updated_by or SYSTEM_ACTOR

        def mutate(site: Site) -> SiteUpdate:
            phase_index, phase = _require_phase(site, phase_id)
            step_index, step = _require_step(phase, step_id)
            _ensure_phase_unlocked(site.phases, phase_index)
            _ensure_step_unlocked(phase, step_index)

            new_step = step.model_copy(
                update={
                    "progress": value,
                    "status": work_status(value),
                    "updated_by": actor,
                    "last_updated": now,
                }
            )
            new_phase = phase.model_copy(update={"steps": _replace(phase.steps, step_index, new_step)})
            phase_progress = aggregate_phase_progress(new_phase)
            new_phase = new_phase.model_copy(
                update={
                    "progress": phase_progress,
                    "status": work_status(phase_progress),
                    "updated_by": actor,
                    "last_updated": now,
                }
            )
            return _progress_update(site, _replace(site.phases, phase_index, new_phase), now)

        site = await self._commit(site_id, mutate, phase_id=phase_id, step_id=step_id)
        logger.info(
            "step_progress_updated",
            site_id=site_id,
            phase_id=phase_id,
            step_id=step_id,
            progress=value,
            global_progress=site.global_progress,
            status=site.status.value,
            updated_by=actor,
        )
        return site

    async def set_phase_progress(
        self,
        site_id: str,
        phase_id: str,
        progress: float,
        notes: str | None = None,
        updated_by: str | None = None,
        now: datetime | None = None,
    ) -> Site:
        """Set the progress of a phase that has no steps.

        Notes replace the existing notes only when a non-empty value is given.

        Raises:
            NotFoundError: Site or phase missing
            InvalidTargetError: The phase owns steps (its progress is derived)
            LockedDependencyError: The phase is locked by its predecessor
            PersistenceFailureError: The write did not complete
        """
        now = now or datetime.now(UTC)
        value = clamp_progress(progress)
        actor = updated_by or SYSTEM_ACTOR

        def mutate(site: Site) -> SiteUpdate:
            phase_index, phase = _require_phase(site, phase_id)
            if phase.steps:
                raise InvalidTargetError(
                    f"Phase '{phase_id}' has {len(phase.steps)} steps; its progress is derived from them"
                )
            _ensure_phase_unlocked(site.phases, phase_index)

            new_phase = phase.model_copy(
                update={
                    "progress": value,
                    "status": work_status(value),
                    "notes": notes or phase.notes,
                    "updated_by": actor,
                    "last_updated": now,
                }
            )
            return _progress_update(site, _replace(site.phases, phase_index, new_phase), now)

        site = await self._commit(site_id, mutate, phase_id=phase_id)
        logger.info(
            "phase_progress_updated",
            site_id=site_id,
            phase_id=phase_id,
            progress=value,
            global_progress=site.global_progress,
            status=site.status.value,
            updated_by=actor,
        )
        return site

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def add_media(
        self,
        site_id: str,
        meta: MediaMeta,
        phase_id: str | None = None,
        step_id: str | None = None,
        now: datetime | None = None,
    ) -> ProgressEntry:
        """Append a gallery entry, linking its URL to a phase (and step) if given.

        Never changes progress or status.

        Raises:
            NotFoundError: Site, phase or step missing
            InvalidTargetError: step_id given without phase_id
        """
        if step_id and not phase_id:
            raise InvalidTargetError("A step-linked media entry needs its phase id")

        now = now or datetime.now(UTC)
        entry = ProgressEntry(
            id=str(uuid.uuid4()),
            url=meta.url,
            kind=meta.kind,
            phase_id=phase_id or None,
            step_id=step_id or None,
            description=meta.description or None,
            uploaded_at=now,
            uploaded_by=meta.uploaded_by,
            duration=meta.duration,
            thumbnail_url=meta.thumbnail_url,
        )

        def mutate(site: Site) -> SiteUpdate:
            phases = None
            if phase_id:
                phase_index, phase = _require_phase(site, phase_id)
                changes = {
                    "photos": [*phase.photos, meta.url],
                    "updated_by": meta.uploaded_by,
                    "last_updated": now,
                }
                if step_id:
                    step_index, step = _require_step(phase, step_id)
                    new_step = step.model_copy(update={"photos": [*step.photos, meta.url]})
                    changes["steps"] = _replace(phase.steps, step_index, new_step)
                phases = _replace(site.phases, phase_index, phase.model_copy(update=changes))

            return SiteUpdate(phases=phases, gallery=[*site.gallery, entry], updated_at=now)

        await self._commit(site_id, mutate, phase_id=phase_id, step_id=step_id)
        logger.info("media_added", site_id=site_id, entry_id=entry.id, phase_id=phase_id, step_id=step_id)
        return entry

    async def remove_media(self, site_id: str, entry_id: str, now: datetime | None = None) -> ProgressEntry:
        """Remove a gallery entry and purge its URL from every phase and step.

        A URL still referenced by another gallery entry stays linked, and its
        binary is kept. Otherwise the stored binary (and thumbnail) is deleted
        afterwards on a best-effort basis; its failure never undoes or blocks
        the metadata removal.

        Raises:
            NotFoundError: Site or gallery entry missing
        """
        now = now or datetime.now(UTC)
        removed: ProgressEntry | None = None
        orphaned: list[str] = []

        def mutate(site: Site) -> SiteUpdate:
            nonlocal removed, orphaned
            entry = next((e for e in site.gallery if e.id == entry_id), None)
            if entry is None:
                raise NotFoundError("Media entry", entry_id)
            removed = entry

            gallery = [e for e in site.gallery if e.id != entry_id]
            still_used = {e.url for e in gallery} | {e.thumbnail_url for e in gallery if e.thumbnail_url}
            orphaned = [url for url in dict.fromkeys([entry.url, entry.thumbnail_url]) if url and url not in still_used]

            phases = None
            if entry.url not in still_used:
                phases = [_purge_media_url(phase, entry.url) for phase in site.phases]
            return SiteUpdate(phases=phases, gallery=gallery, updated_at=now)

        await self._commit(site_id, mutate)
        logger.info("media_removed", site_id=site_id, entry_id=entry_id, orphaned=len(orphaned))

        if self.media_storage is not None:
            for url in orphaned:
                await self.media_storage.delete(url)

        return removed

    # ------------------------------------------------------------------
    # Team roster
    # ------------------------------------------------------------------

    async def add_team_member(
        self,
        site_id: str,
        member: TeamMemberInput,
        added_by: str,
        now: datetime | None = None,
    ) -> TeamMember:
        now = now or datetime.now(UTC)
        new_member = TeamMember(
            id=str(uuid.uuid4()),
            name=member.name,
            role=member.role,
            phone=member.phone,
            experience=member.experience,
            added_at=now,
            added_by=added_by,
        )

        await self._commit(
            site_id,
            lambda site: SiteUpdate(team=[*site.team, new_member], updated_at=now),
        )
        logger.info("team_member_added", site_id=site_id, member_id=new_member.id, role=member.role)
        return new_member

    async def remove_team_member(self, site_id: str, member_id: str, now: datetime | None = None) -> None:
        """Remove a member from the roster.

        Raises:
            NotFoundError: Site or member missing
        """
        now = now or datetime.now(UTC)

        def mutate(site: Site) -> SiteUpdate:
            if not any(m.id == member_id for m in site.team):
                raise NotFoundError("Team member", member_id)
            return SiteUpdate(team=[m for m in site.team if m.id != member_id], updated_at=now)

        await self._commit(site_id, mutate)
        logger.info("team_member_removed", site_id=site_id, member_id=member_id)

    # ------------------------------------------------------------------
    # Activity feed
    # ------------------------------------------------------------------

    async def add_progress_update(
        self,
        site_id: str,
        update: ProgressUpdateInput,
        created_by: str,
        now: datetime | None = None,
    ) -> ProgressUpdate:
        """Prepend an entry to the site's activity feed (newest first).

        Raises:
            NotFoundError: Site missing, or related_phase_id not a phase of the site
        """
        now = now or datetime.now(UTC)
        entry = ProgressUpdate(
            id=str(uuid.uuid4()),
            title=update.title,
            description=update.description,
            kind=update.kind,
            related_phase_id=update.related_phase_id,
            photos=update.photos,
            created_at=now,
            created_by=created_by,
            is_visible_to_client=update.is_visible_to_client,
        )

        def mutate(site: Site) -> SiteUpdate:
            if update.related_phase_id:
                _require_phase(site, update.related_phase_id)
            return SiteUpdate(updates=[entry, *site.updates], updated_at=now)

        await self._commit(site_id, mutate)
        logger.info("progress_update_added", site_id=site_id, update_id=entry.id, kind=update.kind.value)
        return entry
