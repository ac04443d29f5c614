"""Audio Resource Ingestor - SQLAlchemy ORM models.

Single table: resources. Each row is an immutable indirection from a
server-assigned id to a blob in the object store.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ingestor.config import MAX_STORAGE_KEY_LENGTH


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class Resource(Base):
    """Metadata record for one ingested audio resource.

    There is no update path: content replacement is delete + re-upload.
    """

    __tablename__ = "resources"

    # Server-assigned identity (positive integer)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Object store key; set once, never reused across records
    storage_key: Mapped[str] = mapped_column(
        String(MAX_STORAGE_KEY_LENGTH), unique=True, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        return f"Resource(id={self.id!r}, storage_key={self.storage_key!r})"
