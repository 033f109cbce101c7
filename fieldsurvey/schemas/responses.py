"""Form response schemas — the mutable aggregate a surveyor fills in."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from fieldsurvey.schemas.forms import EntityType


class ResponseStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REJECTED = "rejected"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"  # Transient; never survives a restart
    SYNCED = "synced"
    ERROR = "error"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Captured assets
# ---------------------------------------------------------------------------


class GeoLocation(WireModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = None
    altitude: float | None = None
    timestamp: datetime


class ImageMetadata(WireModel):
    width: int
    height: int
    size: int


class ImageAsset(WireModel):
    id: str
    uri: str
    type: Literal["building", "person", "document"]
    metadata: ImageMetadata | None = None
    sync_status: Literal["pending", "synced"] = "pending"


class AudioAsset(WireModel):
    id: str
    uri: str
    duration: float
    transcript: str | None = None
    sync_status: Literal["pending", "synced"] = "pending"


class MediaBundle(WireModel):
    images: list[ImageAsset] = Field(default_factory=list)
    audio: list[AudioAsset] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.images or self.audio or self.files)


# ---------------------------------------------------------------------------
# Response tree
# ---------------------------------------------------------------------------


class FieldResponseMeta(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    skipped: bool = False
    skip_reason: str | None = None


class FieldResponse(WireModel):
    field_id: str
    value: Any = None
    meta: FieldResponseMeta | None = None


class SectionResponse(WireModel):
    section_id: str
    fields: list[FieldResponse] = Field(default_factory=list)
    meta: dict[str, Any] | None = None


class StepResponse(WireModel):
    step_id: str
    sections: list[SectionResponse] = Field(default_factory=list)
    meta: dict[str, Any] | None = None


class FormResponse(WireModel):
    form_id: str
    version: str
    entity_type: EntityType
    entity_id: str = ""
    steps: list[StepResponse] = Field(default_factory=list)
    status: ResponseStatus = ResponseStatus.DRAFT
    location: GeoLocation | None = None
    started_at: datetime
    completed_at: datetime | None = None
    last_modified_at: datetime
    submitted_by: str
    verified_by: str | None = None
    media: MediaBundle | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("media")
    @classmethod
    def _empty_media_is_none(cls, media: MediaBundle | None) -> MediaBundle | None:
        """An empty bundle and no bundle are the same response."""
        return None if media is not None and media.is_empty() else media

    def values(self) -> dict[str, Any]:
        """Flatten the response tree into {field_id: value}, skipped fields excluded."""
        flat: dict[str, Any] = {}
        for step in self.steps:
            for section in step.sections:
                for field in section.fields:
                    if field.meta is not None and field.meta.skipped:
                        continue
                    flat[field.field_id] = field.value
        return flat


class StoredResponse(BaseModel):
    """A survey response as held by the local store, with its sync bookkeeping."""

    id: str
    response: FormResponse
    sync_status: SyncStatus
    version: int
    created_at: datetime
    updated_at: datetime
    last_synced_at: datetime | None = None
