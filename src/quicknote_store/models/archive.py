"""Wire format of the portable backup archive.

A backup is a ZIP container holding ``notes.json`` (a UTF-8 JSON array of
note records) and a ``media/`` directory with the attachment payloads. Each
record flattens the note's attachments into path lists::

    {"id": "1", "title": "Shopping", "content": "Milk, Eggs",
     "createdAt": "2024-01-15T10:30:00+00:00",
     "updatedAt": "2024-01-15T10:30:00+00:00",
     "folder": "Home", "tags": ["home"], "images": ["1_20240115.jpg"],
     "voiceNotes": [], "pinned": false}

Plain file attachments go into an extra ``files`` list that is only written
when non-empty. Unknown keys are ignored on read.

All structural checks on incoming records happen in decode_record(), so the
importer only ever sees validated ArchiveNote instances.
"""
import datetime
import json
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from quicknote_store.exceptions import ArchiveFormatError, ErrorCode, NoteValidationError
from quicknote_store.models.schema import (
    AttachmentType,
    Note,
    validate_relative_path,
)
from quicknote_store.utils import parse_timestamp

NOTES_FILE_NAME = "notes.json"
MEDIA_DIR_NAME = "media"

_REQUIRED_FIELDS = (
    ("id", ErrorCode.NOTE_ID_REQUIRED),
    ("title", ErrorCode.NOTE_TITLE_REQUIRED),
    ("content", ErrorCode.NOTE_CONTENT_REQUIRED),
)


def _string_list(value: Any) -> List[str]:
    """Tolerant list-of-strings coercion: non-strings and blanks are dropped."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError("expected a list of strings")
    return [item for item in value if isinstance(item, str) and item.strip()]


class ArchiveNote(BaseModel):
    """A validated element of notes.json."""

    id: str
    title: str
    content: str
    created_at: Optional[datetime.datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime.datetime] = Field(default=None, alias="updatedAt")
    folder: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    voice_notes: List[str] = Field(default_factory=list, alias="voiceNotes")
    files: List[str] = Field(default_factory=list)
    pinned: bool = False

    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": True}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Note ID cannot be empty")
        return v

    @field_validator("folder", mode="before")
    @classmethod
    def validate_folder(cls, v: Any) -> Optional[str]:
        if isinstance(v, str) and v.strip():
            return v
        return None

    @field_validator("pinned", mode="before")
    @classmethod
    def validate_pinned(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("tags", "images", "voice_notes", "files", mode="before")
    @classmethod
    def validate_lists(cls, v: Any) -> List[str]:
        return _string_list(v)

    @property
    def label(self) -> str:
        return self.title or self.id

    @property
    def media_references(self) -> List[Tuple[AttachmentType, str]]:
        """Normalised (type, relative path) pairs in record order.

        References that cannot be mapped into the attachment store are
        dropped; see unusable_media_references for the rejects.
        """
        refs = []
        for kind, paths in self._media_lists():
            for raw in paths:
                normalised = normalize_media_reference(raw)
                if normalised is not None:
                    refs.append((kind, normalised))
        return refs

    @property
    def unusable_media_references(self) -> List[str]:
        return [
            raw
            for _, paths in self._media_lists()
            for raw in paths
            if normalize_media_reference(raw) is None
        ]

    def _media_lists(self) -> Sequence[Tuple[AttachmentType, List[str]]]:
        return (
            (AttachmentType.IMAGE, self.images),
            (AttachmentType.VOICE, self.voice_notes),
            (AttachmentType.FILE, self.files),
        )


def normalize_media_reference(reference: str) -> Optional[str]:
    """Map a path from a record onto an attachment-store relative path.

    Absolute paths (from the device that made the backup) keep only their
    file name and a leading ``media/`` prefix is removed. Returns None when
    nothing safe is left.
    """
    text = reference.strip()
    if not text:
        return None

    if PurePosixPath(text).is_absolute() or PureWindowsPath(text).is_absolute():
        text = PureWindowsPath(text).name if "\\" in text else PurePosixPath(text).name
    text = text.replace("\\", "/")
    prefix = f"{MEDIA_DIR_NAME}/"
    if text.startswith(prefix):
        text = text[len(prefix):]

    try:
        return validate_relative_path(text)
    except ValueError:
        return None


def record_label(raw: Any, position: int) -> str:
    """Best human-readable name for a raw record: title, then id, then position."""
    if isinstance(raw, dict):
        title = raw.get("title")
        if isinstance(title, str) and title.strip():
            return title
        note_id = raw.get("id")
        if isinstance(note_id, (str, int)) and str(note_id).strip():
            return str(note_id)
    return f"#{position + 1}"


def decode_record(raw: Any, position: int = 0) -> ArchiveNote:
    """Decode and validate one raw notes.json element.

    Raises:
        NoteValidationError: If a required field is missing, a timestamp does
            not parse, or any field has the wrong shape
    """
    label = record_label(raw, position)
    if not isinstance(raw, dict):
        raise NoteValidationError("Note record is not an object", label=label)

    for name, code in _REQUIRED_FIELDS:
        if raw.get(name) is None:
            raise NoteValidationError(
                f"Missing required field '{name}'", field=name, label=label, code=code
            )

    note_id = raw["id"]
    if isinstance(note_id, int) and not isinstance(note_id, bool):
        note_id = str(note_id)

    timestamps: Dict[str, Optional[datetime.datetime]] = {}
    for key in ("createdAt", "updatedAt"):
        value = raw.get(key)
        if value is None:
            timestamps[key] = None
            continue
        parsed = parse_timestamp(value)
        if parsed is None:
            raise NoteValidationError(
                f"Field '{key}' is not a valid timestamp",
                field=key,
                value=value,
                label=label,
                code=ErrorCode.NOTE_TIMESTAMP_INVALID,
            )
        timestamps[key] = parsed

    created, updated = timestamps["createdAt"], timestamps["updatedAt"]
    if created is not None and updated is not None and updated < created:
        raise NoteValidationError(
            "Field 'updatedAt' is earlier than 'createdAt'",
            field="updatedAt",
            value=raw.get("updatedAt"),
            label=label,
            code=ErrorCode.NOTE_TIMESTAMP_INVALID,
        )

    try:
        return ArchiveNote.model_validate({**raw, "id": note_id, **timestamps})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(p) for p in first.get("loc", ())) or None
        raise NoteValidationError(
            f"Invalid note record: {first.get('msg', 'validation failed')}",
            field=field_name,
            label=label,
        ) from e


def note_to_record(note: Note) -> Dict[str, Any]:
    """Serialize a note into its notes.json element."""
    record: Dict[str, Any] = {
        "id": note.id,
        "title": note.title,
        "content": note.content,
        "createdAt": note.created_at.isoformat(),
        "updatedAt": note.updated_at.isoformat(),
        "folder": note.folder,
        "tags": sorted(note.tags),
        "images": [a.relative_path for a in note.images],
        "voiceNotes": [a.relative_path for a in note.voice_notes],
        "pinned": note.pinned,
    }
    if note.files:
        record["files"] = [a.relative_path for a in note.files]
    return record


def encode_notes_document(notes: Sequence[Note]) -> bytes:
    """Encode notes as the UTF-8 notes.json array."""
    records = [note_to_record(note) for note in notes]
    return json.dumps(records, ensure_ascii=False, indent=2).encode("utf-8")


def decode_notes_document(
    data: bytes,
    allow_single: bool = False,
    source: Optional[str] = None,
) -> List[Any]:
    """Parse a notes document into its list of raw records.

    Args:
        data: Raw bytes of the document.
        allow_single: Accept a single JSON object as a one-note list
            (bare JSON exports of a single note).
        source: File name used in error details.

    Raises:
        ArchiveFormatError: If the bytes are not UTF-8 JSON or the top-level
            value is not an array (or object when allow_single is set)
    """
    try:
        parsed = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ArchiveFormatError(
            f"Failed to parse notes data: {e}",
            path=source,
            code=ErrorCode.ARCHIVE_NOTES_INVALID,
        ) from e

    if isinstance(parsed, list):
        return parsed
    if allow_single and isinstance(parsed, dict):
        return [parsed]
    raise ArchiveFormatError(
        "Invalid notes data format: expected a JSON array",
        path=source,
        code=ErrorCode.ARCHIVE_NOTES_INVALID,
    )
