# File: tests/conftest.py

import io
import os
import sys

import pytest
from sqlalchemy.orm import sessionmaker

# 1. Add project root to path
sys.path.append(os.getcwd())

from filedrop.core.database.connection import build_engine, init_db
from filedrop.features.storage.data.local_fs import LocalObjectStore
from filedrop.features.storage.data.repository import SqlMetadataStore
from filedrop.features.storage.domain.models import IngestRequest
from filedrop.features.storage.service.api import IngestionService

TEST_MAX_UPLOAD_BYTES = 1024


@pytest.fixture
def storage_root(tmp_path):
    """A fresh, empty storage root per test."""
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def test_engine(tmp_path):
    """
    SQLite file per test (outside the storage root).
    A file, not :memory:, so worker threads share one database.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'filedrop_test.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=test_engine)


@pytest.fixture
def object_store(storage_root):
    return LocalObjectStore(storage_root)


@pytest.fixture
def metadata_store(session_factory):
    return SqlMetadataStore(session_factory)


@pytest.fixture
def service(object_store, metadata_store):
    return IngestionService(
        object_store=object_store,
        metadata_store=metadata_store,
        max_upload_bytes=TEST_MAX_UPLOAD_BYTES,
    )


@pytest.fixture
def make_request():
    """Builds an IngestRequest around in-memory bytes."""
    def _make(content=b"Hello, World!", name="test-upload.txt", content_type="text/plain", **kwargs):
        return IngestRequest(
            stream=io.BytesIO(content),
            original_name=name,
            content_type=content_type,
            **kwargs
        )
    return _make
