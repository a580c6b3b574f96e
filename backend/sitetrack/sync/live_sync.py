"""Live sync: mirror a site's live feed and reconcile optimistic edits.

Two explicit state layers, merged on read by ``reconcile``:

- authoritative: the last full document delivered by the live feed
- overrides: progress values the user just entered, keyed by
  (phase_id, step_id), held only while their write is in flight

A snapshot never clobbers an override whose write is still in flight (the
slider must not jump back under the user's finger). When that write
completes, successfully or not, the override is dropped and the feed is
authoritative again. Nothing guarantees the next snapshot carries this
session's write; another session may have written in between.
"""

import asyncio
import itertools
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

import structlog

from sitetrack.core.logging import site_context
from sitetrack.domain.dependencies import PhaseLockState, compute_lock_states
from sitetrack.domain.models import Phase, Site
from sitetrack.domain.progress import aggregate_phase_progress, aggregate_site_progress, clamp_progress
from sitetrack.domain.status import site_status, work_status
from sitetrack.services.site_mutation_service import SiteMutationService
from sitetrack.store.site_store import SiteStore

logger = structlog.get_logger(__name__)

# (phase_id, step_id); step_id is None for a phase without steps
ProgressKey = tuple[str, str | None]


def _apply_phase_overrides(phase: Phase, overrides: Mapping[ProgressKey, int]) -> Phase:
    if not phase.steps:
        value = overrides.get((phase.id, None))
        if value is None:
            return phase
        return phase.model_copy(update={"progress": value, "status": work_status(value)})

    steps = []
    for step in phase.steps:
        value = overrides.get((phase.id, step.id))
        if value is not None:
            step = step.model_copy(update={"progress": value, "status": work_status(value)})
        steps.append(step)

    merged = phase.model_copy(update={"steps": steps})
    progress = aggregate_phase_progress(merged)
    return merged.model_copy(update={"progress": progress, "status": work_status(progress)})


def reconcile(site: Site, overrides: Mapping[ProgressKey, int], now: datetime | None = None) -> Site:
    """Merge optimistic overrides into an authoritative snapshot for display.

    Pure function. Phase progress, global progress and statuses are
    recomputed so the whole view stays consistent with the overridden values.
    Overrides for phases/steps absent from the snapshot are ignored.
    """
    if not overrides:
        return site

    now = now or datetime.now(UTC)
    phases = [_apply_phase_overrides(phase, overrides) for phase in site.phases]
    return site.model_copy(
        update={
            "phases": phases,
            "global_progress": aggregate_site_progress(phases),
            "status": site_status(phases, site.planned_end_date, now),
        }
    )


class LiveSyncController:
    """Per-session view of one site: live feed plus optimistic progress edits.

    Usage:
        controller = LiveSyncController(site_id, store, service, actor="chef-1")
        controller.start()                      # follow the live feed
        await controller.set_progress("fondation", 80, step_id="terrassement")
        controller.view                         # reconciled Site for display
        await controller.aclose()
    """

    def __init__(
        self,
        site_id: str,
        store: SiteStore,
        service: SiteMutationService,
        actor: str | None = None,
        on_change: Callable[[Site], None] | None = None,
    ):
        self.site_id = site_id
        self.store = store
        self.service = service
        self.actor = actor
        self.on_change = on_change

        self.authoritative: Site | None = None
        self._overrides: dict[ProgressKey, int] = {}
        self._in_flight: dict[ProgressKey, int] = {}
        self._tokens = itertools.count(1)
        self._writes: set[asyncio.Task] = set()
        self._feed: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def overrides(self) -> dict[ProgressKey, int]:
        return dict(self._overrides)

    @property
    def view(self) -> Site | None:
        """Authoritative snapshot with in-flight overrides applied."""
        if self.authoritative is None:
            return None
        return reconcile(self.authoritative, self._overrides)

    def display_progress(self, phase_id: str, step_id: str | None = None) -> int | None:
        """Progress to show for a phase or step, override first."""
        override = self._overrides.get((phase_id, step_id))
        if override is not None:
            return override

        view = self.view
        if view is None:
            return None
        found = view.find_phase(phase_id)
        if found is None:
            return None
        _, phase = found
        if step_id is None:
            return phase.progress
        step = phase.find_step(step_id)
        return step[1].progress if step else None

    def lock_states(self) -> dict[str, PhaseLockState]:
        """Locked flags for the current view (display only; the service re-checks)."""
        view = self.view
        return compute_lock_states(view.phases) if view else {}

    def is_pending(self, phase_id: str, step_id: str | None = None) -> bool:
        return (phase_id, step_id) in self._in_flight

    def apply_snapshot(self, site: Site) -> None:
        """Take a snapshot from the live feed as the new authoritative layer.

        In-flight overrides survive; every other value comes from the snapshot.
        """
        self.authoritative = site
        logger.debug(
            "site_snapshot_applied",
            site_id=self.site_id,
            global_progress=site.global_progress,
            pending=len(self._in_flight),
        )
        self._notify()

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    async def set_progress(
        self,
        phase_id: str,
        progress: float,
        step_id: str | None = None,
        notes: str | None = None,
    ) -> Site:
        """Show ``progress`` immediately, then persist it.

        The override is dropped when this write completes, unless a newer
        write to the same phase/step is still in flight. Cancelling the
        caller does not cancel the write; it completes in the background.

        Raises:
            Whatever the mutation service raises (LockedDependencyError,
            InvalidTargetError, NotFoundError, PersistenceFailureError).
        """
        key: ProgressKey = (phase_id, step_id)
        value = clamp_progress(progress)
        token = next(self._tokens)

        self._overrides[key] = value
        self._in_flight[key] = token
        self._notify()

        task = asyncio.create_task(self._write(key, token, value, notes))
        self._writes.add(task)
        task.add_done_callback(self._write_done)
        return await asyncio.shield(task)

    async def _write(self, key: ProgressKey, token: int, value: int, notes: str | None) -> Site:
        phase_id, step_id = key
        try:
            if step_id is not None:
                return await self.service.set_step_progress(
                    self.site_id, phase_id, step_id, value, updated_by=self.actor
                )
            return await self.service.set_phase_progress(
                self.site_id, phase_id, value, notes=notes, updated_by=self.actor
            )
        except Exception as exc:
            logger.warning(
                "optimistic_write_failed",
                site_id=self.site_id,
                phase_id=phase_id,
                step_id=step_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            if self._in_flight.get(key) == token:
                del self._in_flight[key]
                self._overrides.pop(key, None)
                self._notify()

    def _write_done(self, task: asyncio.Task) -> None:
        self._writes.discard(task)
        if not task.cancelled():
            # Mark the exception retrieved when the caller stopped awaiting.
            task.exception()

    async def wait_for_writes(self) -> None:
        """Wait until every issued write has completed (success or failure)."""
        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)

    # ------------------------------------------------------------------
    # Live feed
    # ------------------------------------------------------------------

    async def follow(self) -> None:
        """Apply every snapshot from the store's live feed until cancelled."""
        with site_context(self.site_id, actor=self.actor):
            async for site in self.store.subscribe(self.site_id):
                self.apply_snapshot(site)

    def start(self) -> asyncio.Task:
        if self._feed is None or self._feed.done():
            self._feed = asyncio.create_task(self.follow())
        return self._feed

    async def aclose(self) -> None:
        """Stop following the feed. Issued writes still complete."""
        if self._feed is not None:
            self._feed.cancel()
            try:
                await self._feed
            except asyncio.CancelledError:
                pass
            self._feed = None

    def _notify(self) -> None:
        if self.on_change is not None and self.authoritative is not None:
            self.on_change(self.view)
