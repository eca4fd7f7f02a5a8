# File: filedrop/core/config/settings.py

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class Settings:
    # --- Paths ---
    # filedrop/core/config/settings.py -> filedrop/core/config -> filedrop/core -> filedrop -> ROOT
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent.parent

    # Railway-style volume mounts take precedence over the local default
    STORAGE_ROOT: Path = Path(
        os.getenv("STORAGE_ROOT")
        or os.getenv("RAILWAY_VOLUME_MOUNT_PATH")
        or Path.cwd() / "uploads"
    )

    # --- Uploads ---
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "50"))

    # Unprocessed bytes older than this are fair game for the cleanup pass
    ORPHAN_GRACE_SECONDS: int = int(os.getenv("ORPHAN_GRACE_SECONDS", "3600"))

    # --- Auth ---
    API_AUTH_KEY: str = os.getenv("API_AUTH_KEY", "")

    # --- Database ---
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "password")
    POSTGRES_SERVER: str = os.getenv("POSTGRES_SERVER", "localhost")
    POSTGRES_PORT: str = os.getenv("POSTGRES_PORT", "5432")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "filedrop_db")

    # --- Server ---
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def MAX_UPLOAD_BYTES(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024

    @property
    def SQLITE_PATH(self) -> Path:
        # Hidden, so the cleanup pass never mistakes it for an upload
        return self.STORAGE_ROOT / ".filedrop.db"

    @property
    def DATABASE_URL(self) -> str:
        explicit = os.getenv("DATABASE_URL")
        if explicit:
            return explicit

        # Single node by default: the metadata lives next to the bytes.
        if os.getenv("USE_SQLITE", "true").lower() == "true":
            return f"sqlite:///{self.SQLITE_PATH}"

        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    def ensure_dirs(self):
        """Creates the storage root if it doesn't exist."""
        self.STORAGE_ROOT.mkdir(parents=True, exist_ok=True)


settings = Settings()
