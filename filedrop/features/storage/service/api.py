import logging
from dataclasses import replace
from typing import BinaryIO, Optional, Tuple

from filedrop.core.common.enums import IngestState
from filedrop.core.config.settings import settings
from ..data.id_generator import MonotonicClock, UUIDGenerator
from ..data.local_fs import LocalObjectStore
from ..data.path_sharder import DatePathSharder, sanitize_filename
from ..data.repository import SqlMetadataStore
from ..domain.errors import (
    Conflict,
    ConsistencyError,
    ObjectNotFound,
    SizeExceeded,
    StorageIOError,
    UnsupportedType,
)
from ..domain.interfaces import IIdGenerator, IMetadataStore, IObjectStore, IPathSharder
from ..domain.models import (
    DeleteResult,
    FileRecord,
    IngestRequest,
    is_accepted_content_type,
    normalize_content_type,
)

logger = logging.getLogger(__name__)


def _stream_offset(stream) -> Optional[int]:
    """Current position of a seekable stream, None if it can't be rewound."""
    try:
        return stream.tell()
    except (AttributeError, OSError, ValueError):
        return None


class IngestionService:
    """
    Facade for the Storage Feature.
    Orchestrates id generation, path sharding, byte storage and metadata
    persistence.

    Create is a compensable saga: bytes are published first, the record
    second, and a failed record insert removes the bytes again. A record is
    therefore never visible without its bytes.
    """

    def __init__(self,
                 object_store: Optional[IObjectStore] = None,
                 metadata_store: Optional[IMetadataStore] = None,
                 id_generator: Optional[IIdGenerator] = None,
                 sharder: Optional[IPathSharder] = None,
                 clock: Optional[MonotonicClock] = None,
                 max_upload_bytes: Optional[int] = None):
        self.objects = object_store or LocalObjectStore()
        self.metadata = metadata_store or SqlMetadataStore()
        self.ids = id_generator or UUIDGenerator()
        self.sharder = sharder or DatePathSharder()
        self.clock = clock or MonotonicClock()
        if max_upload_bytes is None:
            max_upload_bytes = settings.MAX_UPLOAD_BYTES
        self.max_upload_bytes = max_upload_bytes

    def create_file(self, request: IngestRequest) -> FileRecord:
        """
        Ingests one upload.
        - Rejects bad type/size before any storage I/O.
        - Streams the bytes to their sharded location.
        - Records the metadata, compensating on failure.

        Returns:
            The committed FileRecord.
        """
        state = IngestState.RECEIVING
        file_id = None
        try:
            # 1. Validate
            state = IngestState.VALIDATING
            if not is_accepted_content_type(request.content_type):
                raise UnsupportedType(request.content_type)
            if request.declared_size is not None and request.declared_size > self.max_upload_bytes:
                raise SizeExceeded(self.max_upload_bytes)

            content_type = normalize_content_type(request.content_type)
            original_name = sanitize_filename(request.original_name)
            created_at = self.clock.now()

            # 2. Store bytes (cleans up after itself on failure)
            state = IngestState.STORING
            file_id, location, size_bytes = self._store(request, created_at, original_name, content_type)

            # 3. Persist metadata
            state = IngestState.PERSISTING
            logger.debug(f"[{file_id}] {state.value}")
            record = self._persist(FileRecord(
                id=file_id,
                original_name=original_name,
                storage_location=location,
                size_bytes=size_bytes,
                content_type=content_type,
                created_at=created_at,
                owner_tag=request.owner_tag,
                source=request.source,
                custom_metadata=request.custom_metadata,
            ))

            state = IngestState.COMMITTED
            logger.info(f"Stored {record.id} ({record.size_bytes} bytes, {record.content_type})")
            return record

        except Exception as e:
            logger.info(f"Ingestion {file_id or '-'} failed while {state.value}: {e}")
            raise

    def get_file(self, file_id: str) -> FileRecord:
        """
        Looks up a record and checks its bytes are really there.
        Raises RecordNotFound, or ConsistencyError if the bytes are missing.
        """
        record = self.metadata.get(file_id)
        problem = self._check_bytes(record)
        if problem:
            # A delete may have won the race since the lookup: then the id is simply gone
            self.metadata.get(file_id)
            raise self._inconsistent(record, problem)
        return record

    def open_file(self, file_id: str) -> Tuple[FileRecord, BinaryIO]:
        """Like get_file, but also returns an open stream of the bytes. Caller closes it."""
        record = self.get_file(file_id)
        try:
            return record, self.objects.get(record.storage_location)
        except ObjectNotFound:
            self.metadata.get(file_id)
            raise self._inconsistent(record, "bytes vanished while opening")

    def delete_file(self, file_id: str) -> DeleteResult:
        """
        Removes the record first, then the bytes.
        Once the record is gone the id is gone, even if reclaiming disk space fails.
        """
        record = self.metadata.delete(file_id)

        try:
            self.objects.delete(record.storage_location)
        except ObjectNotFound:
            logger.error(f"Deleted {file_id} but it had no bytes at {record.storage_location}")
            return DeleteResult(record=record, storage_reclaimed=False)
        except StorageIOError:
            logger.exception(
                f"Reclaimable storage leak: {file_id} deleted, bytes remain at {record.storage_location}"
            )
            return DeleteResult(record=record, storage_reclaimed=False)

        logger.info(f"Deleted {file_id}")
        return DeleteResult(record=record)

    # --- saga steps ---

    def _store(self, request: IngestRequest, created_at, original_name: str, content_type: str):
        """
        Puts the bytes under a fresh id. If that location is already taken the
        stream is rewound and the put is retried once under another id;
        a stream that cannot be rewound surfaces the Conflict.

        Returns:
            (file_id, location, size_bytes)
        """
        start = _stream_offset(request.stream)
        for attempt in (1, 2):
            file_id = self.ids.generate()
            location = self.sharder.shard(file_id, created_at, original_name)
            logger.debug(f"[{file_id}] storing -> {location}")
            try:
                size_bytes = self.objects.put(
                    location,
                    request.stream,
                    self.max_upload_bytes,
                    content_type,
                    request.declared_size,
                )
                return file_id, location, size_bytes
            except Conflict:
                if attempt == 2 or start is None:
                    raise
                logger.warning(f"Storage location {location} already taken, retrying under a fresh id")
                request.stream.seek(start)

    def _persist(self, record: FileRecord) -> FileRecord:
        """
        Inserts the record. An id collision is retried once under a fresh id
        by moving the already-stored bytes; every other failure removes them.
        """
        for attempt in (1, 2):
            try:
                self.metadata.insert(record)
                return record
            except Conflict:
                if attempt == 2:
                    self._discard(record.storage_location)
                    raise
            except Exception:
                self._discard(record.storage_location)
                raise

            new_id = self.ids.generate()
            new_location = self.sharder.shard(new_id, record.created_at, record.original_name)
            logger.warning(f"Id collision on {record.id}, retrying as {new_id}")
            try:
                self.objects.relocate(record.storage_location, new_location)
            except Exception:
                self._discard(record.storage_location)
                raise
            record = replace(record, id=new_id, storage_location=new_location)

    def _discard(self, location: str) -> None:
        """
        Best-effort compensation: the record was never written, so these
        bytes are unreachable. If removal fails, the cleanup pass reclaims them.
        """
        try:
            logger.warning(f"Rolling back stored bytes at {location}")
            self.objects.delete(location)
        except ObjectNotFound:
            # Already gone
            pass
        except Exception:
            logger.exception(f"Failed to roll back, orphaned bytes at {location}")

    def _check_bytes(self, record: FileRecord) -> Optional[str]:
        try:
            actual = self.objects.size(record.storage_location)
        except ObjectNotFound:
            return "bytes missing"

        if actual != record.size_bytes:
            return f"size is {actual}, expected {record.size_bytes}"
        return None

    @staticmethod
    def _inconsistent(record: FileRecord, reason: str) -> ConsistencyError:
        message = f"Record {record.id} at {record.storage_location}: {reason}"
        logger.error(f"Consistency error. {message}")
        return ConsistencyError(message)


# Singleton Instance for easy import
ingestion = IngestionService()
