from .base import Base
from .connection import engine, SessionLocal, build_engine, init_db

__all__ = ["Base", "engine", "SessionLocal", "build_engine", "init_db"]
