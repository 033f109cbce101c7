from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldsurvey.core.database import Base
from fieldsurvey.models.mixins import SyncTracked


class Asset(SyncTracked, Base):
    """A captured media file waiting to be uploaded alongside its entity."""

    __tablename__ = "assets"

    uri: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    metadata_: Mapped[str | None] = mapped_column("metadata", Text)

    def __repr__(self) -> str:
        return f"<Asset {self.type} {self.uri}>"
