from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from filedrop.features.storage.domain.models import FileRecord


class FileRecordOut(BaseModel):
    id: str = Field(description="Identifier to use for later retrieval or deletion")
    original_name: str = Field(description="Sanitized name of the uploaded file")
    size_bytes: int
    content_type: str
    owner_tag: Optional[str] = Field(default=None, description="The customer_id given at upload")
    source: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict, description="Custom metadata, as uploaded")
    created_at: datetime

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileRecordOut":
        # storage_location stays server-side
        return cls(
            id=record.id,
            original_name=record.original_name,
            size_bytes=record.size_bytes,
            content_type=record.content_type,
            owner_tag=record.owner_tag,
            source=record.source,
            metadata=record.custom_metadata,
            created_at=record.created_at,
        )
