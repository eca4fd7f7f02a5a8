# File: filedrop/core/database/connection.py

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from filedrop.core.config.settings import settings


def build_engine(url: str):
    """
    Creates an engine for the given URL.
    SQLite needs check_same_thread=False because requests run in a thread pool.
    """
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    else:
        connect_args = {}

    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(bind=None):
    """Creates every registered table. Safe to call repeatedly."""
    from .base import Base
    import filedrop.features.storage.data.sql_models  # noqa: F401 (registers tables)

    if bind is None:
        # The default SQLite file lives inside the storage root
        settings.ensure_dirs()
    Base.metadata.create_all(bind=bind or engine)

