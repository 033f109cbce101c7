from datetime import datetime

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from fieldsurvey.core.database import Base, UTCDateTime
from fieldsurvey.models.mixins import utcnow


class SyncCheckpoint(Base):
    """How far a pull has progressed, as the server's own timestamp (ms)."""

    __tablename__ = "sync_checkpoints"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_pulled_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<SyncCheckpoint {self.name}={self.last_pulled_at}>"
