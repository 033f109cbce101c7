"""Request/response bodies of the local HTTP service."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from fieldsurvey.schemas.forms import EntityType
from fieldsurvey.schemas.responses import GeoLocation, ResponseStatus, SyncStatus

FieldErrorMap = dict[str, list[str]]


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------


class FormSummary(BaseModel):
    id: str
    version: str
    title: str
    type: EntityType
    total_steps: int
    auto_save: bool


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStart(BaseModel):
    form_id: str = Field(..., min_length=1)
    submitted_by: str = Field(..., min_length=1)
    entity_id: str = ""
    response_id: str | None = Field(None, description="Resume this stored response instead of starting fresh")


class ValuesUpdate(BaseModel):
    values: dict[str, Any] = Field(..., min_length=1, description="Dotted field paths to new values")


class LocationUpdate(BaseModel):
    location: GeoLocation


class VisibleSection(BaseModel):
    id: str
    fields: list[str]


class VisibleStep(BaseModel):
    id: str
    index: int
    sections: list[VisibleSection]


class SessionState(BaseModel):
    form_id: str
    response_id: str
    status: ResponseStatus
    current_step: int
    total_steps: int
    progress: float
    values: dict[str, Any]
    visible: list[VisibleStep]
    dirty_fields: list[str]
    autosave_active: bool
    autosave_failures: int = 0


class ValuesResult(BaseModel):
    session: SessionState
    visibility_changes: dict[str, bool] = Field(default_factory=dict)


class StepOutcome(BaseModel):
    ok: bool
    step_index: int
    progress: float
    errors: FieldErrorMap = Field(default_factory=dict)


class SubmitOutcome(BaseModel):
    ok: bool
    errors: FieldErrorMap = Field(default_factory=dict)
    failed_step: int | None = None
    failed_field: str | None = None
    response_id: str | None = None
    version: int | None = None


class DraftOutcome(BaseModel):
    response_id: str
    version: int
    sync_status: SyncStatus
    dirty_fields: list[str]


# ---------------------------------------------------------------------------
# Stored responses
# ---------------------------------------------------------------------------


class ResponseSummary(BaseModel):
    id: str
    form_id: str
    entity_type: EntityType
    entity_id: str
    status: ResponseStatus
    sync_status: SyncStatus
    version: int
    updated_at: datetime


class ResponseList(BaseModel):
    items: list[ResponseSummary]
    total: int
