from datetime import timezone
from typing import Iterator, Mapping

from sqlalchemy import and_, delete, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from filedrop.core.database.connection import SessionLocal
from .sql_models import FileRecordModel
from ..domain.errors import Conflict, RecordNotFound, StorageIOError
from ..domain.interfaces import IMetadataStore
from ..domain.models import FileRecord


_COLUMNS = FileRecordModel.__table__.c


def _to_record(row: Mapping) -> FileRecord:
    created_at = row["created_at"]
    # SQLite hands back naive datetimes; everything we store is UTC
    if created_at is not None and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    return FileRecord(
        id=row["id"],
        original_name=row["original_name"],
        storage_location=row["storage_location"],
        size_bytes=row["size_bytes"],
        content_type=row["content_type"],
        created_at=created_at,
        owner_tag=row["owner_tag"],
        source=row["source"],
        custom_metadata=row["custom_metadata"] or {},
    )


def _model_as_row(model: FileRecordModel) -> dict:
    return {column.name: getattr(model, column.name) for column in _COLUMNS}


class SqlMetadataStore(IMetadataStore):
    """
    FileRecord persistence through SQLAlchemy (SQLite or PostgreSQL).
    Atomicity comes from the database: the primary key rejects duplicate
    ids, and delete is a single DELETE ... RETURNING.
    """

    def __init__(self, session_factory=None):
        # In a full DI framework, this would be injected.
        self.session_factory = session_factory or SessionLocal

    def insert(self, record: FileRecord) -> None:
        with self.session_factory() as db:
            try:
                db.add(FileRecordModel(
                    id=record.id,
                    original_name=record.original_name,
                    storage_location=record.storage_location,
                    size_bytes=record.size_bytes,
                    content_type=record.content_type,
                    owner_tag=record.owner_tag,
                    source=record.source,
                    custom_metadata=record.custom_metadata,
                    created_at=record.created_at,
                ))
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise Conflict(f"File record already exists: {record.id}") from e
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageIOError(f"Could not save metadata for {record.id}: {e}") from e

    def get(self, file_id: str) -> FileRecord:
        with self.session_factory() as db:
            try:
                model = db.get(FileRecordModel, file_id)
            except SQLAlchemyError as e:
                raise StorageIOError(f"Could not load metadata for {file_id}: {e}") from e

            if model is None:
                raise RecordNotFound(file_id)
            return _to_record(_model_as_row(model))

    def delete(self, file_id: str) -> FileRecord:
        stmt = (
            delete(FileRecordModel.__table__)
            .where(_COLUMNS.id == file_id)
            .returning(*_COLUMNS)
        )
        with self.session_factory() as db:
            try:
                row = db.execute(stmt).mappings().one_or_none()
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageIOError(f"Could not delete metadata for {file_id}: {e}") from e

        # Lost the race to a concurrent delete, or never existed
        if row is None:
            raise RecordNotFound(file_id)
        return _to_record(row)

    def has_location(self, location: str) -> bool:
        with self.session_factory() as db:
            hit = (
                db.query(FileRecordModel.id)
                .filter(FileRecordModel.storage_location == location)
                .first()
            )
            return hit is not None

    def iter_records(self, page_size: int = 500) -> Iterator[FileRecord]:
        # Keyset pagination on (created_at, id): each page is read in its own
        # short session, so nothing is locked while the caller does disk I/O.
        last = None
        while True:
            with self.session_factory() as db:
                query = db.query(FileRecordModel)
                if last is not None:
                    last_created_at, last_id = last
                    query = query.filter(or_(
                        FileRecordModel.created_at > last_created_at,
                        and_(FileRecordModel.created_at == last_created_at, FileRecordModel.id > last_id),
                    ))
                models = (
                    query.order_by(FileRecordModel.created_at, FileRecordModel.id)
                    .limit(page_size)
                    .all()
                )
                rows = [_model_as_row(model) for model in models]

            if not rows:
                return
            for row in rows:
                yield _to_record(row)
            if len(rows) < page_size:
                return
            last = (rows[-1]["created_at"], rows[-1]["id"])
