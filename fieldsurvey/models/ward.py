from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldsurvey.core.database import Base
from fieldsurvey.models.mixins import SyncTracked


class Ward(SyncTracked, Base):
    __tablename__ = "wards"

    ward_number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    ward_area_code: Mapped[int] = mapped_column(Integer, nullable=False)
    geometry: Mapped[str] = mapped_column(Text, nullable=False)  # JSON Polygon

    def __repr__(self) -> str:
        return f"<Ward {self.ward_number}>"
