from datetime import datetime

from sqlalchemy import Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldsurvey.core.database import Base, UTCDateTime
from fieldsurvey.models.mixins import SyncTracked


class Building(SyncTracked, Base):
    __tablename__ = "buildings"

    name: Mapped[str | None] = mapped_column(String(255))
    ward: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    tole: Mapped[str] = mapped_column(String(255), nullable=False)
    street_name: Mapped[str | None] = mapped_column(String(255))
    house_number: Mapped[str | None] = mapped_column(String(64))
    landmark: Mapped[str | None] = mapped_column(String(255))
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[float | None] = mapped_column(Float)
    altitude: Mapped[float | None] = mapped_column(Float)
    located_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    building_type: Mapped[str] = mapped_column(String(32), nullable=False)
    construction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    total_floors: Mapped[int] = mapped_column(Integer, nullable=False)
    construction_year: Mapped[int | None] = mapped_column(Integer)
    land_area: Mapped[float | None] = mapped_column(Float)
    built_area: Mapped[float | None] = mapped_column(Float)
    images: Mapped[str] = mapped_column(Text, nullable=False, default="[]")  # JSON ImageAsset[]
    family_ids: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    business_ids: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    metadata_: Mapped[str | None] = mapped_column("metadata", Text)

    def __repr__(self) -> str:
        return f"<Building {self.id} ward={self.ward} ({self.building_type})>"
