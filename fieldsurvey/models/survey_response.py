from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldsurvey.core.database import Base, UTCDateTime
from fieldsurvey.models.mixins import SyncTracked


class SurveyResponse(SyncTracked, Base):
    """A filled (or partially filled) form, flattened for local storage.

    The step/section/field tree lives in ``responses`` as JSON text; media,
    location and metadata are JSON text columns too.
    """

    __tablename__ = "survey_responses"

    survey_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    form_version: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    responses: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str | None] = mapped_column(Text)
    images: Mapped[str | None] = mapped_column(Text)
    audio: Mapped[str | None] = mapped_column(Text)
    files: Mapped[str | None] = mapped_column(Text)
    completed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    verified_by: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    metadata_: Mapped[str | None] = mapped_column("metadata", Text)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_modified_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    def __repr__(self) -> str:
        return f"<SurveyResponse {self.id} survey={self.survey_id} ({self.status}/{self.sync_status})>"
