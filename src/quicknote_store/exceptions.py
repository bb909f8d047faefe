"""Custom exceptions for the QuickNote store.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Expected per-item failures during
bulk operations are collected into result objects instead of raised;
these exceptions cover single targeted operations and programmer errors.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_ID_REQUIRED = 1003
    NOTE_TITLE_REQUIRED = 1004
    NOTE_CONTENT_REQUIRED = 1005
    NOTE_TIMESTAMP_INVALID = 1006

    # Attachment errors (2xxx)
    ATTACHMENT_SOURCE_NOT_FOUND = 2001
    ATTACHMENT_WRITE_FAILED = 2002
    ATTACHMENT_DELETE_FAILED = 2003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_NOT_INITIALIZED = 4004
    RECORD_CORRUPTED = 4005

    # Archive errors (5xxx)
    ARCHIVE_NOT_FOUND = 5001
    ARCHIVE_UNSUPPORTED_FORMAT = 5002
    ARCHIVE_NOTES_MISSING = 5003
    ARCHIVE_NOTES_INVALID = 5004

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    PATH_TRAVERSAL_DETECTED = 7005


class QuickNoteError(Exception):
    """Base exception for all QuickNote store errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(QuickNoteError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class ValidationError(QuickNoteError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NoteValidationError(ValidationError):
    """Raised when a note record fails structural validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        label: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED,
    ):
        super().__init__(message, field=field, value=value, code=code)
        # Human-readable name of the offending note (title, id or position)
        self.label = label
        if label:
            self.details["note"] = label


class StorageError(QuickNoteError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class SourceNotFoundError(StorageError):
    """Raised when a file handed to the attachment store does not exist."""

    def __init__(self, path: str):
        super().__init__(
            f"Source file does not exist: {path}",
            operation="store_attachment",
            path=path,
            code=ErrorCode.ATTACHMENT_SOURCE_NOT_FOUND,
        )


class CorruptRecordError(StorageError):
    """Raised when a persisted note record cannot be deserialized.

    Read paths catch this and purge the record; it never reaches callers
    of the note store's read operations.
    """

    def __init__(
        self,
        note_id: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            f"Stored record for note '{note_id}' is corrupt",
            operation="read_note",
            code=ErrorCode.RECORD_CORRUPTED,
            original_error=original_error,
        )
        self.note_id = note_id
        self.details["note_id"] = note_id


class ArchiveFormatError(QuickNoteError):
    """Raised when a backup file is not a usable archive.

    Covers unrecognised containers, a missing notes document and a notes
    document that is not a JSON array. Fatal for the whole import.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.ARCHIVE_UNSUPPORTED_FORMAT,
    ):
        details = {}
        if path:
            details["file"] = path.split("/")[-1] if "/" in path else path
        super().__init__(message, code=code, details=details)
        self.path = path


class StoreNotInitializedError(QuickNoteError):
    """Raised when a store is used before its context was initialized."""

    def __init__(self, component: str):
        super().__init__(
            f"{component} used before StoreContext.initialize() was called",
            code=ErrorCode.STORAGE_NOT_INITIALIZED,
            details={"component": component},
        )
        self.component = component


class ConfigurationError(QuickNoteError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
