"""Backup import: validate, extract media and merge notes into the store."""

import logging
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from quicknote_store.config import config
from quicknote_store.exceptions import (
    ArchiveFormatError,
    ErrorCode,
    NoteValidationError,
    StorageError,
    ValidationError,
)
from quicknote_store.models.archive import (
    MEDIA_DIR_NAME,
    NOTES_FILE_NAME,
    ArchiveNote,
    decode_notes_document,
    decode_record,
)
from quicknote_store.models.schema import (
    ArchiveValidation,
    Attachment,
    ImportResult,
    MergeStrategy,
    Note,
    generate_id,
    utc_now,
    validate_safe_path_component,
)
from quicknote_store.observability import traced
from quicknote_store.storage.attachment_store import AttachmentStore
from quicknote_store.storage.note_store import NoteStore

logger = logging.getLogger(__name__)

_MEDIA_PREFIX = f"{MEDIA_DIR_NAME}/"

PathLike = Union[str, Path]


def _open_zip(path: Path) -> zipfile.ZipFile:
    """Open a backup archive or raise ArchiveFormatError."""
    if not path.is_file():
        raise ArchiveFormatError(
            "Backup file not found", path=str(path), code=ErrorCode.ARCHIVE_NOT_FOUND
        )
    if not zipfile.is_zipfile(path):
        raise ArchiveFormatError("Backup file is not a ZIP archive", path=str(path))
    try:
        return zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveFormatError(f"Failed to open backup archive: {e}", path=str(path)) from e


def _read_notes_document(archive: zipfile.ZipFile, source: str) -> List[Any]:
    try:
        data = archive.read(NOTES_FILE_NAME)
    except KeyError as e:
        raise ArchiveFormatError(
            "Notes data file not found in backup",
            path=source,
            code=ErrorCode.ARCHIVE_NOTES_MISSING,
        ) from e
    except (zipfile.BadZipFile, OSError, RuntimeError, NotImplementedError) as e:
        # RuntimeError: encrypted entry. NotImplementedError: unknown compression
        raise ArchiveFormatError(
            f"Failed to read notes data: {e}",
            path=source,
            code=ErrorCode.ARCHIVE_NOTES_INVALID,
        ) from e
    return decode_notes_document(data, source=source)


def _media_members(archive: zipfile.ZipFile) -> List[zipfile.ZipInfo]:
    return [
        info
        for info in archive.infolist()
        if info.filename.startswith(_MEDIA_PREFIX)
        and not info.is_dir()
        and len(info.filename) > len(_MEDIA_PREFIX)
    ]


class ArchiveImporter:
    """Reconciles backup files against a NoteStore.

    Each candidate note ends up created, updated or skipped. Problems with a
    single note or media file are collected in the ImportResult and never
    stop the import; a backup that cannot be read at all is reported as an
    error before anything is applied.
    """

    def __init__(
        self,
        note_store: NoteStore,
        attachment_store: Optional[AttachmentStore] = None,
    ):
        self.note_store = note_store
        self.attachment_store = attachment_store or note_store.attachment_store

    @staticmethod
    def _strategy(strategy: Optional[Union[str, MergeStrategy]]) -> MergeStrategy:
        return MergeStrategy.parse(
            strategy if strategy is not None else config.default_merge_strategy
        )

    @traced("import_from_archive")
    def import_from_archive(
        self,
        path: PathLike,
        as_copies: bool = False,
        strategy: Optional[Union[str, MergeStrategy]] = None,
    ) -> ImportResult:
        """Import a ZIP backup.

        Args:
            path: Backup archive to read.
            as_copies: Create every note under a fresh id instead of merging.
            strategy: Conflict policy for ids that already exist. Defaults to
                config.default_merge_strategy.

        Returns:
            ImportResult with counts, errors and warnings.
        """
        merge_strategy = self._strategy(strategy)
        archive_path = Path(path)
        result = ImportResult()

        try:
            with _open_zip(archive_path) as archive:
                records = _read_notes_document(archive, archive_path.name)
                result.media_imported = self._extract_media(archive, result)
        except ArchiveFormatError as e:
            logger.error(f"Import of {archive_path.name} rejected: {e}")
            return ImportResult.failed(e.message)

        self._merge_records(records, as_copies, merge_strategy, result)
        logger.info(f"Imported {archive_path.name}: {result.summary()}")
        return result

    @traced("import_from_json")
    def import_from_json(
        self,
        path: PathLike,
        as_copies: bool = False,
        strategy: Optional[Union[str, MergeStrategy]] = None,
    ) -> ImportResult:
        """Import a bare JSON file holding a note array or a single note.

        No media is imported. Notes referencing attachment files the store
        does not have are still imported, with a warning per missing file.
        """
        merge_strategy = self._strategy(strategy)
        json_path = Path(path)
        if not json_path.is_file():
            return ImportResult.failed("JSON file not found")

        try:
            records = decode_notes_document(
                json_path.read_bytes(), allow_single=True, source=json_path.name
            )
        except OSError as e:
            return ImportResult.failed(f"Failed to read JSON file: {e}")
        except ArchiveFormatError as e:
            logger.error(f"Import of {json_path.name} rejected: {e}")
            return ImportResult.failed(e.message)

        result = ImportResult()
        self._merge_records(records, as_copies, merge_strategy, result)
        logger.info(f"Imported {json_path.name}: {result.summary()}")
        return result

    def import_file(
        self,
        path: PathLike,
        as_copies: bool = False,
        strategy: Optional[Union[str, MergeStrategy]] = None,
    ) -> ImportResult:
        """Import a ZIP backup or a JSON file, detected from its contents."""
        file_path = Path(path)
        if not file_path.is_file():
            return ImportResult.failed("Backup file not found")
        if zipfile.is_zipfile(file_path):
            return self.import_from_archive(file_path, as_copies=as_copies, strategy=strategy)
        if file_path.suffix.lower() == ".json":
            return self.import_from_json(file_path, as_copies=as_copies, strategy=strategy)
        return ImportResult.failed(f"Unsupported backup format: {file_path.name}")

    @traced("validate_archive")
    def validate_archive(self, path: PathLike) -> ArchiveValidation:
        """Preview a backup file without touching the store.

        note_count counts the records that would pass validation; records
        that would be skipped are listed in warnings.
        """
        file_path = Path(path)
        report = ArchiveValidation()
        if not file_path.is_file():
            report.errors.append("Backup file not found")
            return report

        archive_media: Optional[Set[str]] = None
        try:
            if zipfile.is_zipfile(file_path):
                report.kind = "zip"
                with _open_zip(file_path) as archive:
                    records = _read_notes_document(archive, file_path.name)
                    members = _media_members(archive)
                report.media_file_count = len(members)
                archive_media = {info.filename[len(_MEDIA_PREFIX):] for info in members}
            elif file_path.suffix.lower() == ".json":
                report.kind = "json"
                records = decode_notes_document(
                    file_path.read_bytes(), allow_single=True, source=file_path.name
                )
            else:
                report.errors.append(f"Unsupported backup format: {file_path.name}")
                return report
        except ArchiveFormatError as e:
            report.errors.append(e.message)
            return report
        except OSError as e:
            report.errors.append(f"Failed to read backup file: {e}")
            return report

        for position, raw in enumerate(records):
            try:
                record = decode_record(raw, position)
            except NoteValidationError as e:
                report.warnings.append(f"Note '{e.label}' will be skipped: {e.message}")
                continue
            report.note_count += 1
            try:
                validate_safe_path_component(record.id, "Note ID")
            except ValueError as e:
                report.warnings.append(
                    f"Note '{record.label}' can only be imported as a copy: {e}"
                )
            for _, relative_path in record.media_references:
                if archive_media is not None:
                    present = relative_path in archive_media
                else:
                    present = self.attachment_store.exists(relative_path)
                if not present:
                    report.warnings.append(
                        f"Note '{record.label}' references missing media file {relative_path}"
                    )

        report.valid = not report.errors
        return report

    def _extract_media(self, archive: zipfile.ZipFile, result: ImportResult) -> int:
        """Write every media/ entry into the attachment store."""
        imported = 0
        for info in _media_members(archive):
            relative_path = info.filename[len(_MEDIA_PREFIX):]
            try:
                with archive.open(info) as stream:
                    self.attachment_store.write_payload(relative_path, stream)
                imported += 1
            except ValidationError:
                result.warnings.append(f"Skipped unsafe media entry {info.filename}")
            except (
                StorageError,
                zipfile.BadZipFile,
                OSError,
                RuntimeError,
                NotImplementedError,
            ) as e:
                result.warnings.append(f"Failed to extract media file {info.filename}: {e}")
        logger.debug(f"Extracted {imported} media files")
        return imported

    def _attachments_for(self, record: ArchiveNote, result: ImportResult) -> List[Attachment]:
        """Attachments for the record's media references that exist in the store."""
        attachments = []
        for raw in record.unusable_media_references:
            result.warnings.append(f"Note '{record.label}' has unusable media reference {raw}")
        for kind, relative_path in record.media_references:
            if not self.attachment_store.exists(relative_path):
                result.warnings.append(
                    f"Note '{record.label}' references missing media file {relative_path}"
                )
                continue
            attachments.append(
                self.attachment_store.attachment_from_path(relative_path, type_hint=kind)
            )
        return attachments

    def _fresh_id(self, taken: Set[str]) -> str:
        note_id = generate_id()
        while note_id in taken:
            note_id = generate_id()
        return note_id

    def _merge_records(
        self,
        records: List[Any],
        as_copies: bool,
        strategy: MergeStrategy,
        result: ImportResult,
    ) -> None:
        """Run every raw record through validation, merge and persistence."""
        existing: Dict[str, Note] = {note.id: note for note in self.note_store.get_all()}
        assigned: Set[str] = set()

        for position, raw in enumerate(records):
            try:
                record = decode_record(raw, position)
            except NoteValidationError as e:
                result.skipped += 1
                result.warnings.append(f"Skipping invalid note '{e.label}': {e.message}")
                continue

            if not as_copies:
                # Copies get a fresh id, so only merged ids must be usable as-is
                try:
                    validate_safe_path_component(record.id, "Note ID")
                except ValueError as e:
                    result.skipped += 1
                    result.warnings.append(f"Skipping invalid note '{record.label}': {e}")
                    continue

            current = None if as_copies else existing.get(record.id)
            if current is not None:
                if strategy == MergeStrategy.SKIP_OLDER:
                    result.skipped += 1
                    continue
                if record.updated_at is None:
                    result.skipped += 1
                    result.warnings.append(
                        f"Note '{record.label}' has no updatedAt; kept the local version"
                    )
                    continue
                if record.updated_at <= current.updated_at:
                    result.skipped += 1
                    continue

            try:
                attachments = self._attachments_for(record, result)
                if as_copies:
                    note_id = self._fresh_id(set(existing) | assigned)
                    assigned.add(note_id)
                    now = utc_now()
                    created_at, updated_at = now, now
                else:
                    note_id = record.id
                    created_at = record.created_at or record.updated_at or utc_now()
                    updated_at = record.updated_at or created_at
                note = Note(
                    id=note_id,
                    title=record.title,
                    content=record.content,
                    created_at=created_at,
                    updated_at=updated_at,
                    folder=record.folder,
                    tags=record.tags,
                    attachments=tuple(attachments),
                    pinned=record.pinned,
                )
            except (PydanticValidationError, ValueError) as e:
                result.skipped += 1
                result.warnings.append(f"Skipping invalid note '{record.label}': {e}")
                continue

            try:
                self.note_store.save(note)
            except StorageError as e:
                logger.error(f"Failed to import note {note.id}: {e}")
                result.skipped += 1
                result.errors.append(f"Failed to import note '{record.label}': {e.message}")
                continue

            existing[note.id] = note
            if current is None:
                result.created += 1
            else:
                result.updated += 1
