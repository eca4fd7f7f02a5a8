from datetime import datetime, timezone
from sqlalchemy import Column, String, BigInteger, DateTime, JSON
from filedrop.core.database.base import Base


def utc_now():
    return datetime.now(timezone.utc)


class FileRecordModel(Base):
    __tablename__ = "file_records"

    id = Column(String(64), primary_key=True)
    original_name = Column(String, nullable=False)
    # Relative to the storage root, never absolute
    storage_location = Column(String, nullable=False, unique=True, index=True)
    size_bytes = Column(BigInteger, nullable=False)
    content_type = Column(String, nullable=False)
    owner_tag = Column(String, nullable=True, index=True)
    source = Column(String, nullable=True)
    custom_metadata = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
