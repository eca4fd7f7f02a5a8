import logging
import os
import uuid
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, Optional

from filedrop.core.config.settings import settings
from ..domain.errors import (
    Conflict,
    FiledropError,
    IncompleteUpload,
    ObjectNotFound,
    SizeExceeded,
    StorageIOError,
    UnsupportedType,
)
from ..domain.interfaces import IObjectStore
from ..domain.models import is_accepted_content_type

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536
TEMP_MARKER = ".part-"


class LocalObjectStore(IObjectStore):
    """
    Stores objects under a root directory: {root}/{location}.

    Writes go to a hidden staging file next to the target, are fsync'ed,
    then published with a hard link. Readers never see a partial object,
    and publishing never replaces an existing file.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.STORAGE_ROOT).resolve()

    def put(self,
            location: str,
            stream: BinaryIO,
            size_limit: int,
            content_type: str,
            expected_size: Optional[int] = None) -> int:
        # 1. Reject before reading a single byte
        if not is_accepted_content_type(content_type):
            raise UnsupportedType(content_type)
        if expected_size is not None and expected_size > size_limit:
            raise SizeExceeded(size_limit)

        target = self._resolve(location)
        # Checked again atomically at publish time
        if target.exists():
            raise Conflict(f"Storage location already taken: {location}")

        tmp_path = target.parent / f".{target.name}{TEMP_MARKER}{uuid.uuid4().hex}"
        written = 0
        published = False

        try:
            # 2. Stream to staging, enforcing the cap chunk by chunk
            with self._open_staging(tmp_path) as f:
                for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                    written += len(chunk)
                    if written > size_limit:
                        raise SizeExceeded(size_limit)
                    f.write(chunk)
                f.flush()
                os.fsync(f.fileno())

            # 3. A short stream means the client went away mid-upload
            if expected_size is not None and written < expected_size:
                raise IncompleteUpload(expected_size, written)

            # 4. Publish
            try:
                os.link(tmp_path, target)
            except FileExistsError:
                raise Conflict(f"Storage location already taken: {location}")
            published = True
            self._fsync_dir(target.parent)

        except FiledropError:
            raise
        except OSError as e:
            logger.exception(f"Write failed for {location}")
            if published:
                # Published but not durable: the caller will treat this as a failure
                target.unlink(missing_ok=True)
                published = False
            raise StorageIOError(f"Could not store object at {location}: {e}") from e
        finally:
            tmp_path.unlink(missing_ok=True)
            if not published:
                self._prune_empty_dirs(target.parent)

        logger.debug(f"Stored {written} bytes at {location}")
        return written

    def get(self, location: str) -> BinaryIO:
        path = self._resolve(location)
        try:
            return open(path, "rb")
        except FileNotFoundError:
            raise ObjectNotFound(location)
        except OSError as e:
            raise StorageIOError(f"Could not read {location}: {e}") from e

    def size(self, location: str) -> int:
        path = self._resolve(location)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            raise ObjectNotFound(location)
        except OSError as e:
            raise StorageIOError(f"Could not stat {location}: {e}") from e

    def modified_at(self, location: str) -> float:
        path = self._resolve(location)
        try:
            return path.stat().st_mtime
        except FileNotFoundError:
            raise ObjectNotFound(location)
        except OSError as e:
            raise StorageIOError(f"Could not stat {location}: {e}") from e

    def delete(self, location: str) -> None:
        path = self._resolve(location)
        try:
            path.unlink()
        except FileNotFoundError:
            raise ObjectNotFound(location)
        except OSError as e:
            raise StorageIOError(f"Could not delete {location}: {e}") from e

        self._prune_empty_dirs(path.parent)

    def relocate(self, source: str, destination: str) -> None:
        src = self._resolve(source)
        dst = self._resolve(destination)
        try:
            for attempt in range(3):
                dst.parent.mkdir(parents=True, exist_ok=True)
                try:
                    os.link(src, dst)
                    break
                except FileNotFoundError:
                    if not src.exists():
                        raise ObjectNotFound(source)
                    # dst.parent was pruned under us, try again
                    if attempt == 2:
                        raise
            src.unlink()
        except FileExistsError:
            raise Conflict(f"Storage location already taken: {destination}")
        except FiledropError:
            raise
        except OSError as e:
            raise StorageIOError(f"Could not move {source} -> {destination}: {e}") from e

        self._prune_empty_dirs(src.parent)

    def iter_locations(self) -> Iterator[str]:
        for path in self._walk():
            if not path.name.startswith("."):
                yield path.relative_to(self.root).as_posix()

    def iter_temp_files(self) -> Iterator[Path]:
        for path in self._walk():
            if path.name.startswith(".") and TEMP_MARKER in path.name:
                yield path

    # --- helpers ---

    def _resolve(self, location: str) -> Path:
        """
        Maps a relative location to an absolute path, refusing anything
        that would land outside the root.
        """
        rel = PurePosixPath(location)
        if not location or rel.is_absolute() or ".." in rel.parts:
            raise StorageIOError(f"Refusing location outside storage root: {location!r}")

        path = self.root.joinpath(*rel.parts).resolve()
        if self.root not in path.parents:
            raise StorageIOError(f"Refusing location outside storage root: {location!r}")
        return path

    def _open_staging(self, tmp_path: Path):
        # A concurrent delete may prune the day folder between mkdir and open
        for attempt in range(3):
            tmp_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                return open(tmp_path, "xb")
            except FileNotFoundError:
                if attempt == 2:
                    raise

    def _walk(self) -> Iterator[Path]:
        if not self.root.exists():
            return
        for dirpath, dirnames, filenames in os.walk(self.root):
            # Skip hidden folders in-place so os.walk doesn't descend
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for filename in filenames:
                yield Path(dirpath) / filename

    def _prune_empty_dirs(self, directory: Path) -> None:
        """Removes empty date folders up to (not including) the root."""
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # Not empty (or already gone): stop climbing
                break
            directory = directory.parent

    @staticmethod
    def _fsync_dir(directory: Path) -> None:
        # Makes the new directory entry durable. POSIX only.
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
