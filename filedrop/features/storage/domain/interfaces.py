from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from .models import FileRecord


class IIdGenerator(ABC):
    @abstractmethod
    def generate(self) -> str:
        """Returns a fresh, unguessable identifier. Never fails."""
        pass


class IPathSharder(ABC):
    @abstractmethod
    def shard(self, file_id: str, now: datetime, original_name: str) -> str:
        """
        Maps an id + ingestion time to a relative storage location.
        Pure: no I/O.
        """
        pass


class IObjectStore(ABC):
    """
    Contract for durable byte storage addressed by relative locations.
    """

    @abstractmethod
    def put(self,
            location: str,
            stream: BinaryIO,
            size_limit: int,
            content_type: str,
            expected_size: Optional[int] = None) -> int:
        """
        Streams `stream` to `location`. Either the whole object becomes
        visible or nothing does.
        Returns: bytes written.
        Raises: UnsupportedType, SizeExceeded, IncompleteUpload, Conflict, StorageIOError
        A location that is already taken raises Conflict before the stream is read.
        """
        pass

    @abstractmethod
    def get(self, location: str) -> BinaryIO:
        """Opens the stored object for reading. Raises ObjectNotFound."""
        pass

    @abstractmethod
    def size(self, location: str) -> int:
        """Raises ObjectNotFound."""
        pass

    @abstractmethod
    def delete(self, location: str) -> None:
        """Raises ObjectNotFound."""
        pass

    @abstractmethod
    def modified_at(self, location: str) -> float:
        """Last modification time as a POSIX timestamp. Raises ObjectNotFound."""
        pass

    @abstractmethod
    def relocate(self, source: str, destination: str) -> None:
        """
        Moves a published object to a new location without overwriting.
        Raises ObjectNotFound, Conflict.
        """
        pass

    @abstractmethod
    def iter_locations(self) -> Iterator[str]:
        """Yields the location of every published object."""
        pass

    @abstractmethod
    def iter_temp_files(self) -> Iterator[Path]:
        """Yields leftover staging files from interrupted writes."""
        pass


class IMetadataStore(ABC):
    """
    Contract for FileRecord persistence, keyed by id.
    """

    @abstractmethod
    def insert(self, record: FileRecord) -> None:
        """Raises Conflict if the id already exists."""
        pass

    @abstractmethod
    def get(self, file_id: str) -> FileRecord:
        """Raises RecordNotFound."""
        pass

    @abstractmethod
    def delete(self, file_id: str) -> FileRecord:
        """
        Removes the record and returns it, atomically.
        Raises RecordNotFound.
        """
        pass

    @abstractmethod
    def has_location(self, location: str) -> bool:
        """True if any record references this storage location."""
        pass

    @abstractmethod
    def iter_records(self, page_size: int = 500) -> Iterator[FileRecord]:
        """
        All records, oldest first. Fetched a page at a time; no lock or
        transaction is held while the caller works on a page.
        """
        pass
