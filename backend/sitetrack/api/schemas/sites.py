"""Request/response schemas for the site API.

Requests only ever carry raw target progress for one step or one leaf
phase; derived fields (global progress, statuses, phase progress of phases
with steps) are never accepted from callers.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from sitetrack.domain.models import MediaKind


class CreateSiteRequest(BaseModel):
    """New site, seeded with the standard phase template."""

    client_id: str = Field(..., min_length=1)
    supervisor_id: str = Field(..., min_length=1)
    name: str = ""
    address: str = ""
    start_date: datetime
    planned_end_date: datetime



class SetProgressRequest(BaseModel):
    """Target progress.

    Out-of-range values are clamped, not rejected. Infinity and NaN fail
    validation.
    """

    progress: float = Field(allow_inf_nan=False)


class SetPhaseProgressRequest(SetProgressRequest):
    notes: str | None = None


class AddMediaRequest(BaseModel):
    url: str = Field(..., min_length=1)
    kind: MediaKind = MediaKind.IMAGE
    phase_id: str | None = None
    step_id: str | None = None
    description: str | None = None
    duration: float | None = None
    thumbnail_url: str | None = None


class StepLockResponse(BaseModel):
    step_id: str
    locked: bool


class PhaseLockResponse(BaseModel):
    phase_id: str
    locked: bool
    blocked_by: str | None = None
    steps: list[StepLockResponse] = []


class LockStatesResponse(BaseModel):
    site_id: str
    phases: list[PhaseLockResponse]


class SupervisorStatsResponse(BaseModel):
    supervisor_id: str
    total_sites: int
    active_sites: int
    completed_sites: int
    overdue_sites: int
    awaiting_sites: int
    average_progress: int
