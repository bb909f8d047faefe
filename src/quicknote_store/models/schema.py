"""Data models for the QuickNote store."""

import datetime
import os
import re
import threading
from dataclasses import asdict, dataclass, field
from datetime import timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from quicknote_store.exceptions import ValidationError
from quicknote_store.utils import format_size

# Version of the persisted note record layout (see models/db_models.py)
CURRENT_SCHEMA_VERSION = 1

# Note and attachment IDs double as file name components
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "heic"})

MIME_TYPES: Dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "heic": "image/heic",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "md": "text/markdown",
    "json": "application/json",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "zip": "application/zip",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "mp4": "video/mp4",
    "avi": "video/x-msvideo",
}
DEFAULT_MIME_TYPE = "application/octet-stream"


def validate_safe_path_component(value: str, field_name: str = "value") -> str:
    """Validate that a value is safe to use as a file name component.

    Rejects path separators, parent references and anything outside
    alphanumerics, underscores and hyphens.

    Raises:
        ValueError: If the value contains unsafe characters
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")

    if ".." in value:
        raise ValueError(f"{field_name} cannot contain '..' (path traversal)")

    if "/" in value or "\\" in value:
        raise ValueError(f"{field_name} cannot contain path separators")

    if not SAFE_ID_PATTERN.match(value):
        raise ValueError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric characters, underscores and hyphens are allowed."
        )

    return value


def validate_relative_path(value: str) -> str:
    """Validate an attachment path relative to the attachment store root.

    The path must use forward slashes, must not be absolute and must not
    step outside the root.

    Returns:
        The normalised POSIX path.

    Raises:
        ValueError: If the path is empty, absolute or escapes the root
    """
    if not value or not value.strip():
        raise ValueError("Relative path cannot be empty")
    if "\\" in value:
        raise ValueError("Relative path cannot contain backslashes")

    path = PurePosixPath(value)
    if path.is_absolute():
        raise ValueError("Relative path cannot be absolute")
    if any(part == ".." for part in path.parts):
        raise ValueError("Relative path cannot contain '..' (path traversal)")

    normalised = str(path)
    if normalised in ("", "."):
        raise ValueError("Relative path cannot be empty")
    return normalised


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC."""
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a timestamp-based ID with guaranteed uniqueness.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc" where ssssss is the
        microsecond component and cccccc a counter for same-microsecond
        uniqueness.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)

        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        _counter %= 1_000_000

        date_time = now.strftime("%Y%m%dT%H%M%S")
        return f"{date_time}{now.microsecond:06d}{_counter:06d}"


def generate_attachment_id() -> str:
    """Generate a unique attachment ID."""
    return f"att_{generate_id()}"


def file_extension(name: str) -> str:
    """Lower-cased extension of a file name without the dot ('' if none)."""
    suffix = PurePosixPath(name.replace("\\", "/")).suffix
    return suffix[1:].lower() if len(suffix) > 1 else ""


class AttachmentType(str, Enum):
    """Kinds of attachment payloads."""

    IMAGE = "image"
    FILE = "file"
    VOICE = "voice"


def infer_attachment_type(name: str) -> AttachmentType:
    """Classify a file by extension: image extensions are images, the rest files."""
    if file_extension(name) in IMAGE_EXTENSIONS:
        return AttachmentType.IMAGE
    return AttachmentType.FILE


def infer_mime_type(name: str) -> str:
    """Look up the MIME type for a file name's extension."""
    return MIME_TYPES.get(file_extension(name), DEFAULT_MIME_TYPE)


class MergeStrategy(str, Enum):
    """Conflict policy applied when an imported note id already exists."""

    LAST_WRITE_WINS = "lastWriteWins"
    SKIP_OLDER = "skipOlder"

    @classmethod
    def parse(cls, value: Union[str, "MergeStrategy"]) -> "MergeStrategy":
        """Accept an enum member, its wire value or its snake_case name."""
        if isinstance(value, cls):
            return value
        normalised = str(value).strip()
        for member in cls:
            if normalised in (member.value, member.name, member.name.lower()):
                return member
        raise ValidationError(
            f"Unknown merge strategy: {value}",
            field="strategy",
            value=value,
        )


class Attachment(BaseModel):
    """A reference to a physical file owned by a note."""

    id: str = Field(default_factory=generate_attachment_id, description="Unique within the note")
    name: str = Field(..., description="Original file name")
    relative_path: str = Field(..., description="Path under the attachment store root")
    mime_type: Optional[str] = Field(default=None, description="MIME type")
    size_bytes: Optional[int] = Field(default=None, ge=0, description="Payload size")
    type: AttachmentType = Field(default=AttachmentType.FILE, description="Payload kind")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the attachment was stored (UTC)"
    )
    duration_seconds: Optional[float] = Field(
        default=None, ge=0, description="Recording length for voice attachments"
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def _infer_mime_type(cls, data: Any) -> Any:
        """Fill in the MIME type from the file extension when absent."""
        if isinstance(data, dict) and not data.get("mime_type"):
            source = data.get("name") or data.get("relative_path") or ""
            data = {**data, "mime_type": infer_mime_type(str(source))}
        return data

    @field_validator("relative_path")
    @classmethod
    def check_relative_path(cls, v: str) -> str:
        """Keep attachment paths inside the store root."""
        return validate_relative_path(v)

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @model_validator(mode="after")
    def _check_duration(self) -> "Attachment":
        if self.duration_seconds is not None and self.type != AttachmentType.VOICE:
            raise ValueError("duration_seconds is only valid for voice attachments")
        return self

    @property
    def extension(self) -> str:
        return file_extension(self.name) or file_extension(self.relative_path)

    @property
    def is_image(self) -> bool:
        return self.type == AttachmentType.IMAGE

    @property
    def is_voice(self) -> bool:
        return self.type == AttachmentType.VOICE

    @property
    def size_formatted(self) -> str:
        return format_size(self.size_bytes)


# Fields whose change counts as a content change and refreshes updated_at
_CONTENT_FIELDS = ("title", "content", "folder", "tags", "attachments", "pinned")


class Note(BaseModel):
    """A titled text record with optional folder, tags and attachments.

    Notes are immutable snapshots. Every edit goes through with_changes()
    (or a helper built on it) and yields a new Note that the caller then
    saves.
    """

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(default="", description="Title of the note")
    content: str = Field(default="", description="Content of the note")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last changed (UTC)"
    )
    folder: Optional[str] = Field(default=None, description="Folder label")
    tags: FrozenSet[str] = Field(default_factory=frozenset, description="Tags")
    attachments: Tuple[Attachment, ...] = Field(
        default_factory=tuple, description="Attachments in display order"
    )
    pinned: bool = Field(default=False, description="Pinned to the top of lists")

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def _default_updated_at(cls, data: Any) -> Any:
        """A note without an update time was last touched when it was created."""
        if isinstance(data, dict) and data.get("created_at") and not data.get("updated_at"):
            data = {**data, "updated_at": data["created_at"]}
        return data

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is safe for filesystem use."""
        return validate_safe_path_component(v, "Note ID")

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @field_validator("folder")
    @classmethod
    def validate_folder(cls, v: Optional[str]) -> Optional[str]:
        """Blank folder labels mean no folder."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Any:
        """Strip tags and drop blank ones."""
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            return frozenset(
                t.strip() for t in v if isinstance(t, str) and t.strip()
            )
        return v

    @model_validator(mode="after")
    def _check_invariants(self) -> "Note":
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be earlier than created_at")
        ids = [a.id for a in self.attachments]
        if len(ids) != len(set(ids)):
            raise ValueError("Attachment IDs must be unique within a note")
        return self

    @classmethod
    def new(
        cls,
        title: str = "",
        content: str = "",
        folder: Optional[str] = None,
        tags: Iterable[str] = (),
    ) -> "Note":
        """Create a fresh note with a new ID and matching timestamps."""
        now = utc_now()
        return cls(
            title=title,
            content=content,
            folder=folder,
            tags=frozenset(tags),
            created_at=now,
            updated_at=now,
        )

    def with_changes(self, **changes: Any) -> "Note":
        """Return a copy with the given fields replaced.

        When a content-bearing field actually changes and no explicit
        updated_at is given, updated_at is refreshed to now.

        Raises:
            ValueError: If the change would alter the note ID
        """
        if "id" in changes and changes["id"] != self.id:
            raise ValueError("Note ID is immutable")

        candidate = type(self).model_validate({**dict(self), **changes})
        if "updated_at" in changes:
            return candidate

        if any(getattr(candidate, f) != getattr(self, f) for f in _CONTENT_FIELDS):
            touched = max(utc_now(), candidate.created_at)
            return candidate.model_copy(update={"updated_at": touched})
        return candidate

    def add_attachment(self, attachment: Attachment) -> "Note":
        return self.with_changes(attachments=self.attachments + (attachment,))

    def remove_attachment(self, attachment_id: str) -> "Note":
        return self.with_changes(
            attachments=tuple(a for a in self.attachments if a.id != attachment_id)
        )

    def replace_attachment(self, attachment_id: str, attachment: Attachment) -> "Note":
        return self.with_changes(
            attachments=tuple(
                attachment if a.id == attachment_id else a for a in self.attachments
            )
        )

    def add_tag(self, tag: str) -> "Note":
        return self.with_changes(tags=self.tags | {tag})

    def remove_tag(self, tag: str) -> "Note":
        return self.with_changes(tags=self.tags - {tag})

    @property
    def images(self) -> Tuple[Attachment, ...]:
        return tuple(a for a in self.attachments if a.type == AttachmentType.IMAGE)

    @property
    def voice_notes(self) -> Tuple[Attachment, ...]:
        return tuple(a for a in self.attachments if a.type == AttachmentType.VOICE)

    @property
    def files(self) -> Tuple[Attachment, ...]:
        return tuple(a for a in self.attachments if a.type == AttachmentType.FILE)

    @property
    def attachment_paths(self) -> List[str]:
        """Relative paths of all attachments, in display order."""
        return [a.relative_path for a in self.attachments]

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    @property
    def total_attachment_size(self) -> int:
        return sum(a.size_bytes for a in self.attachments if a.size_bytes is not None)

    @property
    def character_count(self) -> int:
        return len(self.title) + len(self.content)

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    @property
    def is_empty(self) -> bool:
        return not self.title.strip() and not self.content.strip()

    @property
    def preview_text(self) -> str:
        """First 100 characters of the content on a single line."""
        clean = " ".join(self.content.split())
        if not clean:
            return "No content"
        return f"{clean[:100]}..." if len(clean) > 100 else clean


class NoteSnapshot(BaseModel):
    """All notes of a store at one point in time."""

    notes: List[Note] = Field(default_factory=list)
    exported_at: datetime.datetime = Field(default_factory=utc_now)
    schema_version: int = Field(default=CURRENT_SCHEMA_VERSION)

    model_config = {"frozen": True}

    def attachment_paths(self) -> List[str]:
        """Distinct relative attachment paths referenced by the snapshot."""
        seen: Dict[str, None] = {}
        for note in self.notes:
            for path in note.attachment_paths:
                seen.setdefault(path, None)
        return list(seen)


@dataclass
class StorageStats:
    """Aggregate counts over the whole note store."""

    note_count: int = 0
    folder_count: int = 0
    tag_count: int = 0
    image_count: int = 0
    file_count: int = 0
    voice_count: int = 0
    total_characters: int = 0

    @property
    def attachment_count(self) -> int:
        return self.image_count + self.file_count + self.voice_count

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data["attachment_count"] = self.attachment_count
        return data


@dataclass
class ExportSummary:
    """Dry-run estimate of what an export will contain."""

    note_count: int
    media_file_count: int
    estimated_size_bytes: int

    @property
    def estimated_size_mb(self) -> float:
        return round(self.estimated_size_bytes / (1024 * 1024), 2)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["estimated_size_mb"] = self.estimated_size_mb
        return data


@dataclass
class ImportResult:
    """Outcome of an import: counts plus collected errors and warnings.

    Attributes:
        created: Notes added to the store.
        updated: Existing notes overwritten.
        skipped: Notes rejected by validation, the merge strategy or a
            failed write.
        media_imported: Media files written into the attachment store.
        errors: Failures; archive-level errors mean nothing was applied.
        warnings: Recoverable per-item problems.
    """

    created: int = 0
    updated: int = 0
    skipped: int = 0
    media_imported: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def failed(cls, message: str) -> "ImportResult":
        return cls(errors=[message])

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def total_processed(self) -> int:
        return self.created + self.updated + self.skipped

    def summary(self) -> str:
        """Human-readable summary of the import."""
        parts = []
        if self.created:
            parts.append(f"Created {self.created} notes")
        if self.updated:
            parts.append(f"Updated {self.updated} notes")
        if self.skipped:
            parts.append(f"Skipped {self.skipped} notes")
        if self.media_imported:
            parts.append(f"Imported {self.media_imported} media files")

        text = ", ".join(parts) if parts else "No changes made"
        if self.warnings:
            text += f"\n{len(self.warnings)} warnings"
        if self.errors:
            text += f"\n{len(self.errors)} errors"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ArchiveValidation:
    """Read-only preview of a backup file."""

    valid: bool = False
    kind: str = "unknown"
    note_count: int = 0
    media_file_count: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
