import logging
import time
from datetime import timedelta
from typing import Optional

from filedrop.core.config.settings import settings
from ..data.local_fs import LocalObjectStore
from ..data.repository import SqlMetadataStore
from ..domain.errors import ObjectNotFound
from ..domain.interfaces import IMetadataStore, IObjectStore
from ..domain.models import SweepSummary

logger = logging.getLogger(__name__)


class StorageJanitor:
    """
    Cleanup pass for what a crash can leave behind:
    - staging files from writes that never finished,
    - published bytes whose record was never inserted,
    - records whose bytes are gone (reported, never auto-deleted).

    Anything younger than `grace` is left alone: it may belong to an
    upload that is still between "bytes written" and "record inserted".
    """

    def __init__(self,
                 object_store: Optional[IObjectStore] = None,
                 metadata_store: Optional[IMetadataStore] = None):
        self.objects = object_store or LocalObjectStore()
        self.metadata = metadata_store or SqlMetadataStore()

    def sweep(self, grace: Optional[timedelta] = None) -> SweepSummary:
        if grace is None:
            grace = timedelta(seconds=settings.ORPHAN_GRACE_SECONDS)
        cutoff = time.time() - grace.total_seconds()
        summary = SweepSummary()

        logger.info(f"Starting storage sweep (grace={grace})")

        # 1. Interrupted writes
        for tmp_path in list(self.objects.iter_temp_files()):
            try:
                if tmp_path.stat().st_mtime >= cutoff:
                    continue
                tmp_path.unlink()
                summary.temp_files_removed += 1
            except FileNotFoundError:
                # The write finished (or failed) while we were looking
                continue
            except OSError as e:
                summary.errors.append(f"Failed to remove {tmp_path.name}: {e}")

        # 2. Bytes nobody references
        for location in list(self.objects.iter_locations()):
            summary.files_scanned += 1
            try:
                if self.metadata.has_location(location):
                    continue
                if self.objects.modified_at(location) >= cutoff:
                    continue

                self.objects.delete(location)
                summary.orphans_removed += 1
                logger.warning(f"Reclaimed orphaned bytes at {location}")
            except ObjectNotFound:
                continue
            except Exception as e:
                error_msg = f"Failed to check {location}: {e}"
                logger.error(error_msg)
                summary.errors.append(error_msg)

        # 3. Records without (intact) bytes
        for record in self.metadata.iter_records():
            try:
                actual = self.objects.size(record.storage_location)
            except ObjectNotFound:
                actual = None
            except Exception as e:
                summary.errors.append(f"Failed to check record {record.id}: {e}")
                continue

            if actual != record.size_bytes:
                logger.error(
                    f"Consistency error: record {record.id} expects {record.size_bytes} bytes "
                    f"at {record.storage_location}, found {actual}"
                )
                summary.dangling_records.append(record.id)

        logger.info(
            f"Sweep complete. Scanned {summary.files_scanned} files, "
            f"removed {summary.orphans_removed} orphans and {summary.temp_files_removed} temp files, "
            f"{len(summary.dangling_records)} dangling records."
        )
        return summary
