from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Dict, List, Optional

from filedrop.core.common.enums import ContentType
from .errors import InvalidMetadata

ACCEPTED_CONTENT_TYPES = frozenset(ct.value for ct in ContentType)


def normalize_content_type(raw: Optional[str]) -> str:
    """
    'Text/Plain; charset=utf-8' -> 'text/plain'.
    Returns an empty string for a missing header.
    """
    if not raw:
        return ""
    return raw.split(";", 1)[0].strip().lower()


def is_accepted_content_type(raw: Optional[str]) -> bool:
    return normalize_content_type(raw) in ACCEPTED_CONTENT_TYPES


@dataclass(frozen=True)
class IngestRequest:
    """
    Request object for ingesting a new upload.
    `stream` is any readable binary file object; it is consumed exactly once.
    """
    stream: BinaryIO
    original_name: str
    content_type: str
    declared_size: Optional[int] = None
    owner_tag: Optional[str] = None
    source: Optional[str] = None
    custom_metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.custom_metadata is None:
            object.__setattr__(self, "custom_metadata", {})
        if not isinstance(self.custom_metadata, dict):
            raise InvalidMetadata("metadata must be a JSON object")
        if self.declared_size is not None and self.declared_size < 0:
            raise ValueError(f"Declared size cannot be negative: {self.declared_size}")


@dataclass(frozen=True)
class FileRecord:
    """
    The persisted description of one stored object.
    """
    id: str
    original_name: str
    storage_location: str
    size_bytes: int
    content_type: str
    created_at: datetime
    owner_tag: Optional[str] = None
    source: Optional[str] = None
    custom_metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteResult:
    record: FileRecord
    # False when the bytes could not be removed (reclaimable leak)
    storage_reclaimed: bool = True


@dataclass
class SweepSummary:
    """
    Report returned after a cleanup pass over the storage root.
    """
    files_scanned: int = 0
    orphans_removed: int = 0
    temp_files_removed: int = 0
    dangling_records: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
