from datetime import date

from sqlalchemy import Date, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldsurvey.core.database import Base
from fieldsurvey.models.mixins import SyncTracked


class Business(SyncTracked, Base):
    __tablename__ = "businesses"

    building_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    registration_no: Mapped[str | None] = mapped_column(String(64))
    ownership: Mapped[str] = mapped_column(String(16), nullable=False)
    established_date: Mapped[date] = mapped_column(Date, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    employees: Mapped[str] = mapped_column(Text, nullable=False)
    contact: Mapped[str] = mapped_column(Text, nullable=False)
    premises: Mapped[str] = mapped_column(Text, nullable=False)
    turnover: Mapped[str | None] = mapped_column(Text)
    images: Mapped[str | None] = mapped_column(Text)
    licenses: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[str | None] = mapped_column("metadata", Text)

    def __repr__(self) -> str:
        return f"<Business {self.name} ({self.type})>"
