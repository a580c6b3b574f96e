"""Site document model.

A Site is persisted as one document; phases, steps, team, gallery and updates
are embedded lists. Attribute names are snake_case, the persisted document
uses camelCase aliases (``globalProgress``, ``plannedEndDate``...).
"""

import json
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sitetrack.domain.progress import clamp_progress


class PhaseCategory(StrEnum):
    """Phase classification. Drives the sequential dependency rule."""

    MAIN = "main"
    GROS_OEUVRE = "gros_oeuvre"  # structural work
    SECOND_OEUVRE = "second_oeuvre"  # finishing work


class WorkStatus(StrEnum):
    """Status of a phase or step, derived from its progress."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class SiteStatus(StrEnum):
    """Site status, derived from global progress and the planned end date."""

    AWAITING = "awaiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class MediaKind(StrEnum):
    IMAGE = "image"
    VIDEO = "video"


class UpdateKind(StrEnum):
    PHASE_COMPLETION = "phase_completion"
    ISSUE = "issue"
    DELIVERY = "delivery"
    MILESTONE = "milestone"


class DocumentModel(BaseModel):
    """Base for everything embedded in the site document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Step(DocumentModel):
    id: str
    name: str
    description: str = ""
    progress: int = 0
    status: WorkStatus = WorkStatus.PENDING
    notes: str = ""
    photos: list[str] = Field(default_factory=list)
    updated_by: str | None = None
    last_updated: datetime | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp(cls, value):
        return clamp_progress(value)


class Phase(DocumentModel):
    id: str
    name: str
    description: str = ""
    category: PhaseCategory = PhaseCategory.MAIN
    progress: int = 0
    status: WorkStatus = WorkStatus.PENDING
    steps: list[Step] = Field(default_factory=list)
    notes: str = ""
    photos: list[str] = Field(default_factory=list)
    updated_by: str | None = None
    last_updated: datetime | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp(cls, value):
        return clamp_progress(value)

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value):
        # Phases without a tag are never dependency-bearing
        return PhaseCategory.MAIN if value is None else value

    def find_step(self, step_id: str) -> tuple[int, Step] | None:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index, step
        return None


class TeamMember(DocumentModel):
    id: str
    name: str
    role: str
    phone: str | None = None
    experience: str | None = None
    added_at: datetime
    added_by: str


class ProgressEntry(DocumentModel):
    """Gallery item: one photo or video, optionally linked to a phase/step."""

    id: str
    url: str
    kind: MediaKind = Field(default=MediaKind.IMAGE, alias="type")
    phase_id: str | None = None
    step_id: str | None = None
    description: str | None = None
    uploaded_at: datetime
    uploaded_by: str
    duration: float | None = None  # seconds, videos only
    thumbnail_url: str | None = None  # videos only


class ProgressUpdate(DocumentModel):
    """Journal entry shown in the site's activity feed."""

    id: str
    title: str
    description: str = ""
    kind: UpdateKind = Field(alias="type")
    related_phase_id: str | None = None
    photos: list[str] = Field(default_factory=list)
    created_at: datetime
    created_by: str
    is_visible_to_client: bool = True


class Site(DocumentModel):
    id: str
    client_id: str
    supervisor_id: str
    name: str = ""
    address: str = ""
    start_date: datetime
    planned_end_date: datetime
    actual_end_date: datetime | None = None
    phases: list[Phase] = Field(default_factory=list)
    team: list[TeamMember] = Field(default_factory=list)
    gallery: list[ProgressEntry] = Field(default_factory=list)
    updates: list[ProgressUpdate] = Field(default_factory=list)
    status: SiteStatus = SiteStatus.AWAITING
    global_progress: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("global_progress", mode="before")
    @classmethod
    def _clamp(cls, value):
        return clamp_progress(value)

    def find_phase(self, phase_id: str) -> tuple[int, Phase] | None:
        for index, phase in enumerate(self.phases):
            if phase.id == phase_id:
                return index, phase
        return None

    def to_document(self) -> dict[str, str]:
        """Encode every top-level field as a JSON string (one hash field each)."""
        return encode_fields(self.model_dump(mode="json", by_alias=True, exclude_none=True))


class SiteUpdate(DocumentModel):
    """Partial write: only the top-level fields a mutation changed.

    Fields left as None are omitted from the write entirely, never
    persisted as null.
    """

    phases: list[Phase] | None = None
    global_progress: int | None = None
    status: SiteStatus | None = None
    gallery: list[ProgressEntry] | None = None
    team: list[TeamMember] | None = None
    updates: list[ProgressUpdate] | None = None
    updated_at: datetime | None = None

    def to_document(self) -> dict[str, str]:
        return encode_fields(self.model_dump(mode="json", by_alias=True, exclude_none=True))


def encode_fields(document: dict) -> dict[str, str]:
    return {key: json.dumps(value) for key, value in document.items()}


def decode_fields(raw: dict[str, str]) -> dict:
    return {key: json.loads(value) for key, value in raw.items()}


# ---------------------------------------------------------------------------
# Caller input
# ---------------------------------------------------------------------------


class MediaMeta(BaseModel):
    """Metadata for a media binary that was already uploaded elsewhere."""

    url: str = Field(..., min_length=1)
    kind: MediaKind = MediaKind.IMAGE
    description: str | None = None
    duration: float | None = None
    thumbnail_url: str | None = None
    uploaded_by: str = "system"


class TeamMemberInput(BaseModel):
    name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    phone: str | None = None
    experience: str | None = None


class ProgressUpdateInput(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    kind: UpdateKind
    related_phase_id: str | None = None
    photos: list[str] = Field(default_factory=list)
    is_visible_to_client: bool = True
