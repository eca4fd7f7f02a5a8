import threading
import uuid
from datetime import datetime, timedelta, timezone
from ..domain.interfaces import IIdGenerator

ID_PREFIX = "file_"


class UUIDGenerator(IIdGenerator):
    """
    'file_' + UUID4. 122 random bits from os.urandom, no shared state.
    """

    def generate(self) -> str:
        return f"{ID_PREFIX}{uuid.uuid4()}"


class MonotonicClock:
    """
    UTC wall clock that never repeats or goes backwards within a process,
    so created_at follows insertion order even if the system clock is adjusted.
    """

    def __init__(self, now=None):
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._last = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        current = self._now()
        with self._lock:
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current
