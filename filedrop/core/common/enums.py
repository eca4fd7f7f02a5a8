# File: filedrop/core/common/enums.py

from enum import Enum, unique


@unique
class ContentType(str, Enum):
    JSON = "application/json"
    CSV = "text/csv"
    PLAIN_TEXT = "text/plain"
    PDF = "application/pdf"
    ZIP = "application/zip"
    # Some browsers send zip archives as this
    ZIP_COMPRESSED = "application/x-zip-compressed"


@unique
class IngestState(str, Enum):
    RECEIVING = "receiving"
    VALIDATING = "validating"
    STORING = "storing"
    PERSISTING = "persisting"
    COMMITTED = "committed"
