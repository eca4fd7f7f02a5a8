import re
from datetime import datetime, timezone
from ..domain.interfaces import IPathSharder

# Anything outside this allow-list becomes '_'
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.-]")

MAX_NAME_LENGTH = 200
FALLBACK_NAME = "upload"


def sanitize_filename(name: str) -> str:
    """
    Makes a client-supplied filename safe to embed as the tail of a path segment.
    '../../etc/passwd' -> '.._.._etc_passwd' (no separators survive).
    """
    if not name:
        return FALLBACK_NAME

    cleaned = _UNSAFE_CHARS.sub("_", name)[:MAX_NAME_LENGTH]

    # '.', '..' and friends carry no information
    if cleaned.strip(".") == "":
        return FALLBACK_NAME
    return cleaned


def _as_utc(now) -> datetime:
    if not isinstance(now, datetime):
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def shard_location(file_id: str, now: datetime, original_name: str) -> str:
    """
    YYYY/MM/DD/{file_id}-{sanitized_name}

    Date folders bound directory fan-out; the id makes the final segment unique.
    """
    if not file_id or _UNSAFE_CHARS.search(file_id.replace("_", "")):
        raise ValueError(f"Malformed file id: {file_id!r}")

    stamp = _as_utc(now)
    filename = f"{file_id}-{sanitize_filename(original_name)}"
    return f"{stamp.year:04d}/{stamp.month:02d}/{stamp.day:02d}/{filename}"


class DatePathSharder(IPathSharder):
    def shard(self, file_id: str, now: datetime, original_name: str) -> str:
        return shard_location(file_id, now, original_name)
