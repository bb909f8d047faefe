"""Configuration module for the QuickNote store."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from quicknote_store import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default data directory
_USER_ENV = Path.home() / ".quicknote" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Size assumed for a media file that is referenced but missing on disk
_DEFAULT_MISSING_MEDIA_BYTES = 1024 * 1024

_MERGE_STRATEGIES = ("lastWriteWins", "skipOlder")


class QuickNoteConfig(BaseModel):
    """Configuration for the QuickNote store."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("QUICKNOTE_BASE_DIR", "."))
    )
    # Attachment payload directory (the AttachmentStore root)
    attachments_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("QUICKNOTE_ATTACHMENTS_DIR", "data/attachments")
        )
    )
    # Note record database
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("QUICKNOTE_DATABASE_PATH", "data/db/notes.db")
        )
    )
    # When True the note records live in an in-memory SQLite database and
    # vanish with the process. Intended for previews and tests.
    in_memory_db: bool = Field(
        default_factory=lambda: os.getenv("QUICKNOTE_IN_MEMORY_DB", "false").lower()
        in ("true", "1", "yes")
    )
    # Where exported archives are written. None means a fresh temp directory.
    export_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("QUICKNOTE_EXPORT_DIR"))
            if os.getenv("QUICKNOTE_EXPORT_DIR")
            else None
        )
    )
    missing_media_size_estimate: int = Field(
        default_factory=lambda: int(
            os.getenv(
                "QUICKNOTE_MISSING_MEDIA_SIZE_ESTIMATE",
                str(_DEFAULT_MISSING_MEDIA_BYTES),
            )
        )
    )
    default_merge_strategy: str = Field(
        default_factory=lambda: os.getenv(
            "QUICKNOTE_DEFAULT_MERGE_STRATEGY", "lastWriteWins"
        )
    )
    store_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_values(self) -> "QuickNoteConfig":
        """Reject settings that would make the store misbehave."""
        if self.missing_media_size_estimate < 0:
            raise ValueError("missing_media_size_estimate must be >= 0")
        if self.default_merge_strategy not in _MERGE_STRATEGIES:
            raise ValueError(
                f"default_merge_strategy must be one of {', '.join(_MERGE_STRATEGIES)}"
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite:///:memory:"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_export_dir(self) -> Path:
        """Get the directory exported archives are written to.

        When no export directory is configured a new temporary directory is
        created on every call, so each export lands in a fresh location.
        """
        if self.export_dir is None:
            return Path(tempfile.mkdtemp(prefix="quicknote-export-"))
        export_dir = self.get_absolute_path(self.export_dir)
        export_dir.mkdir(parents=True, exist_ok=True)
        return export_dir


# Create a global config instance
config = QuickNoteConfig()
