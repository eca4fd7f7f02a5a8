"""filedrop: a small file ingestion service."""

__version__ = "0.1.0"
