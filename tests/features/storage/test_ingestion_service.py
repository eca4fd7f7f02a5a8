import io
from concurrent.futures import ThreadPoolExecutor

import pytest

from filedrop.features.storage.data.sql_models import FileRecordModel
from filedrop.features.storage.domain.errors import (
    Conflict,
    ConsistencyError,
    IncompleteUpload,
    ObjectNotFound,
    RecordNotFound,
    SizeExceeded,
    StorageIOError,
    UnsupportedType,
)
from filedrop.features.storage.domain.interfaces import IIdGenerator
from filedrop.features.storage.domain.models import IngestRequest
from filedrop.features.storage.service.api import IngestionService
from tests.conftest import TEST_MAX_UPLOAD_BYTES
from tests.tools import ExplodingStream, files_under


class ScriptedIds(IIdGenerator):
    """Hands out a fixed sequence of ids, repeating the last one."""

    def __init__(self, *ids):
        self.ids = list(ids)

    def generate(self) -> str:
        if len(self.ids) > 1:
            return self.ids.pop(0)
        return self.ids[0]


def count_records(session_factory) -> int:
    with session_factory() as db:
        return db.query(FileRecordModel).count()


# --- Create / Get / Delete ---

def test_create_get_delete_flow(service, make_request, storage_root):
    """
    Upload "Hello, World!" with customer/source/metadata, read it back, delete it.
    """
    record = service.create_file(make_request(
        owner_tag="cus_123",
        source="verification-script",
        custom_metadata={"key": "value"},
    ))

    assert len(record.id) >= 36
    assert record.original_name == "test-upload.txt"
    assert record.size_bytes == 13
    assert record.content_type == "text/plain"
    assert record.owner_tag == "cus_123"
    assert record.source == "verification-script"
    assert record.custom_metadata == {"key": "value"}
    assert record.storage_location.endswith(f"/{record.id}-test-upload.txt")

    # Round trip
    assert service.get_file(record.id) == record
    loaded, stream = service.open_file(record.id)
    with stream:
        assert stream.read() == b"Hello, World!"
    assert loaded == record

    # Deletion is total
    result = service.delete_file(record.id)
    assert result.storage_reclaimed
    assert result.record == record
    with pytest.raises(RecordNotFound):
        service.get_file(record.id)
    with pytest.raises(ObjectNotFound):
        service.objects.size(record.storage_location)
    assert files_under(storage_root) == []


def test_content_type_is_normalized(service, make_request):
    record = service.create_file(make_request(content=b"a,b\n1,2\n", name="data.csv", content_type="Text/CSV; charset=utf-8"))
    assert record.content_type == "text/csv"


def test_hostile_filename_stays_inside_its_day_folder(service, make_request, storage_root):
    record = service.create_file(make_request(name="../../etc/passwd"))

    assert record.original_name == ".._.._etc_passwd"
    stored = (storage_root / record.storage_location).resolve()
    assert stored.parent.parent.parent.parent == storage_root.resolve()


def test_created_at_follows_insertion_order(service, make_request):
    records = [service.create_file(make_request()) for _ in range(5)]
    stamps = [r.created_at for r in records]

    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 5


# --- Validation ---

def test_unsupported_type_has_no_side_effects(service, session_factory, storage_root):
    request = IngestRequest(stream=ExplodingStream(), original_name="photo.png", content_type="image/png")

    with pytest.raises(UnsupportedType):
        service.create_file(request)

    assert files_under(storage_root) == []
    assert count_records(session_factory) == 0


def test_declared_oversize_is_rejected_up_front(service, session_factory, storage_root):
    request = IngestRequest(
        stream=ExplodingStream(),
        original_name="big.txt",
        content_type="text/plain",
        declared_size=TEST_MAX_UPLOAD_BYTES + 1,
    )

    with pytest.raises(SizeExceeded):
        service.create_file(request)

    assert files_under(storage_root) == []
    assert count_records(session_factory) == 0


def test_undeclared_oversize_is_rejected_while_streaming(service, make_request, session_factory, storage_root):
    with pytest.raises(SizeExceeded):
        service.create_file(make_request(content=b"x" * (TEST_MAX_UPLOAD_BYTES * 5)))

    assert files_under(storage_root) == []
    assert list(storage_root.iterdir()) == []
    assert count_records(session_factory) == 0


def test_aborted_upload_is_not_committed(service, make_request, session_factory, storage_root):
    with pytest.raises(IncompleteUpload):
        service.create_file(make_request(content=b"only part", declared_size=500))

    assert files_under(storage_root) == []
    assert count_records(session_factory) == 0


def test_metadata_must_be_an_object(make_request):
    with pytest.raises(ValueError):
        make_request(custom_metadata=["not", "a", "dict"])


# --- Compensation ---

def test_failed_insert_removes_stored_bytes(service, make_request, storage_root, monkeypatch):
    def broken_insert(record):
        raise StorageIOError("database is on fire")

    monkeypatch.setattr(service.metadata, "insert", broken_insert)

    with pytest.raises(StorageIOError):
        service.create_file(make_request())

    assert files_under(storage_root) == []


def test_id_collision_is_retried_once(object_store, metadata_store, make_request, storage_root):
    first = IngestionService(object_store, metadata_store, id_generator=ScriptedIds("file_dup"))
    original = first.create_file(make_request(name="a.txt"))

    second = IngestionService(object_store, metadata_store, id_generator=ScriptedIds("file_dup", "file_fresh"))
    retried = second.create_file(make_request(content=b"other bytes", name="b.txt"))

    assert retried.id == "file_fresh"
    assert retried.storage_location.endswith("/file_fresh-b.txt")
    with second.open_file("file_fresh")[1] as stream:
        assert stream.read() == b"other bytes"
    # The first upload is untouched and nothing is left at the abandoned location
    assert first.get_file("file_dup") == original
    assert sorted(p.name for p in files_under(storage_root)) == ["file_dup-a.txt", "file_fresh-b.txt"]


def test_second_collision_fails_cleanly(object_store, metadata_store, make_request, storage_root, session_factory):
    service = IngestionService(object_store, metadata_store, id_generator=ScriptedIds("file_dup"))
    service.create_file(make_request(name="a.txt"))

    with pytest.raises(Conflict):
        service.create_file(make_request(name="b.txt"))

    assert [p.name for p in files_under(storage_root)] == ["file_dup-a.txt"]
    assert count_records(session_factory) == 1


def test_taken_storage_location_is_retried_once(object_store, metadata_store, make_request, storage_root):
    # Bytes already sit where the first id would go, with no record for them
    service = IngestionService(object_store, metadata_store, id_generator=ScriptedIds("file_dup", "file_fresh"))
    taken = service.sharder.shard("file_dup", service.clock.now(), "b.txt")
    object_store.put(taken, io.BytesIO(b"already here"), 1024, "text/plain")

    record = service.create_file(make_request(content=b"new bytes", name="b.txt"))

    assert record.id == "file_fresh"
    with service.open_file("file_fresh")[1] as stream:
        assert stream.read() == b"new bytes"
    assert (storage_root / taken).read_bytes() == b"already here"


def test_taken_storage_location_twice_is_a_conflict(object_store, metadata_store, make_request, storage_root, session_factory):
    service = IngestionService(object_store, metadata_store, id_generator=ScriptedIds("file_dup"))
    taken = service.sharder.shard("file_dup", service.clock.now(), "b.txt")
    object_store.put(taken, io.BytesIO(b"already here"), 1024, "text/plain")

    with pytest.raises(Conflict):
        service.create_file(make_request(content=b"new bytes", name="b.txt"))

    assert (storage_root / taken).read_bytes() == b"already here"
    assert files_under(storage_root) == [storage_root / taken]
    assert count_records(session_factory) == 0


def test_explicit_zero_cap_is_kept(object_store, metadata_store, make_request):
    service = IngestionService(object_store, metadata_store, max_upload_bytes=0)

    assert service.max_upload_bytes == 0
    with pytest.raises(SizeExceeded):
        service.create_file(make_request(content=b"x"))


# --- Consistency ---

def test_missing_bytes_are_a_consistency_error(service, make_request, storage_root):
    record = service.create_file(make_request())
    (storage_root / record.storage_location).unlink()

    with pytest.raises(ConsistencyError):
        service.get_file(record.id)
    with pytest.raises(ConsistencyError):
        service.open_file(record.id)


def test_truncated_bytes_are_a_consistency_error(service, make_request, storage_root):
    record = service.create_file(make_request())
    (storage_root / record.storage_location).write_bytes(b"Hello")

    with pytest.raises(ConsistencyError):
        service.get_file(record.id)


def test_unknown_id(service):
    with pytest.raises(RecordNotFound):
        service.get_file("file_nope")
    with pytest.raises(RecordNotFound):
        service.delete_file("file_nope")


def test_delete_with_missing_bytes_still_removes_the_id(service, make_request, storage_root):
    record = service.create_file(make_request())
    (storage_root / record.storage_location).unlink()

    result = service.delete_file(record.id)

    assert not result.storage_reclaimed
    with pytest.raises(RecordNotFound):
        service.get_file(record.id)


def test_delete_reports_storage_leak(service, make_request, storage_root, monkeypatch):
    record = service.create_file(make_request())

    def broken_delete(location):
        raise StorageIOError("disk went read-only")

    monkeypatch.setattr(service.objects, "delete", broken_delete)
    result = service.delete_file(record.id)

    assert not result.storage_reclaimed
    with pytest.raises(RecordNotFound):
        service.get_file(record.id)
    # The bytes are still there for the cleanup pass to reclaim
    assert (storage_root / record.storage_location).exists()


# --- Concurrency ---

@pytest.mark.parametrize("count", [200, pytest.param(10_000, marks=pytest.mark.slow)])
def test_concurrent_creates_get_distinct_ids(service, make_request, session_factory, count):
    def upload(n):
        return service.create_file(make_request(content=f"file {n}".encode(), name=f"f{n}.txt"))

    # Any Conflict would propagate out of pool.map
    with ThreadPoolExecutor(max_workers=16) as pool:
        records = list(pool.map(upload, range(count)))

    assert len({r.id for r in records}) == count
    assert len({r.storage_location for r in records}) == count
    assert count_records(session_factory) == count


def test_get_racing_delete_sees_all_or_nothing(service, make_request):
    records = [service.create_file(make_request(name=f"f{n}.txt")) for n in range(20)]

    def read(record):
        try:
            return service.get_file(record.id)
        except RecordNotFound:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        deletes = [pool.submit(service.delete_file, r.id) for r in records]
        reads = [pool.submit(read, r) for r in records]

        for future in deletes:
            assert future.result().storage_reclaimed
        for future, record in zip(reads, records):
            seen = future.result()
            assert seen is None or seen == record
