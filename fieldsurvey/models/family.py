from datetime import datetime

from sqlalchemy import Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldsurvey.core.database import Base, UTCDateTime
from fieldsurvey.models.mixins import SyncTracked


class Family(SyncTracked, Base):
    __tablename__ = "families"

    building_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    head_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    member_ids: Mapped[str] = mapped_column(Text, nullable=False, default="[]")  # JSON id list
    economic_status: Mapped[str] = mapped_column(String(16), nullable=False)
    monthly_income: Mapped[float | None] = mapped_column(Float)
    residency_type: Mapped[str] = mapped_column(String(16), nullable=False)
    residency_since: Mapped[datetime | None] = mapped_column(UTCDateTime)
    images: Mapped[str | None] = mapped_column(Text)
    audio: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[str | None] = mapped_column("metadata", Text)

    def __repr__(self) -> str:
        return f"<Family {self.name} building={self.building_id}>"
