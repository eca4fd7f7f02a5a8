"""Exceptions raised by the storage feature."""


class FiledropError(Exception):
    """Base class for every error the ingestion core raises."""


class ValidationError(FiledropError, ValueError):
    """The client sent something we refuse to store. Never touches storage."""


class UnsupportedType(ValidationError):
    def __init__(self, content_type: str):
        self.content_type = content_type
        super().__init__(f"Unsupported file type: {content_type or 'unknown'}")


class SizeExceeded(ValidationError):
    def __init__(self, limit_bytes: int):
        self.limit_bytes = limit_bytes
        super().__init__(f"File too large: limit is {limit_bytes} bytes")


class IncompleteUpload(ValidationError):
    """The stream ended before the declared size was reached (client abort)."""

    def __init__(self, expected_bytes: int, received_bytes: int):
        self.expected_bytes = expected_bytes
        self.received_bytes = received_bytes
        super().__init__(
            f"Upload incomplete: expected {expected_bytes} bytes, received {received_bytes}"
        )


class InvalidMetadata(ValidationError):
    pass


class NotFound(FiledropError, LookupError):
    pass


class RecordNotFound(NotFound):
    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"File not found: {file_id}")


class ObjectNotFound(NotFound):
    def __init__(self, location: str):
        self.location = location
        super().__init__(f"No stored object at: {location}")


class ConsistencyError(FiledropError):
    """Metadata and stored bytes disagree. Indicates corruption, not absence."""


class StorageIOError(FiledropError):
    pass


class Conflict(FiledropError):
    """An id or storage location is already taken."""
