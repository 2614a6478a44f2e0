from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from coachess.db.base import Base


class StorageItem(Base):
    __tablename__ = "storage_items"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
