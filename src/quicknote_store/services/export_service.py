"""Backup export: notes plus attachment payloads in one ZIP archive."""

import json
import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from quicknote_store.config import config
from quicknote_store.exceptions import ErrorCode, StorageError, ValidationError
from quicknote_store.models.archive import (
    MEDIA_DIR_NAME,
    NOTES_FILE_NAME,
    encode_notes_document,
    note_to_record,
)
from quicknote_store.models.schema import ExportSummary, Note
from quicknote_store.observability import traced
from quicknote_store.storage.attachment_store import AttachmentStore
from quicknote_store.storage.note_store import NoteStore
from quicknote_store.utils import filename_timestamp, sanitize_filename

logger = logging.getLogger(__name__)


class ArchiveExporter:
    """Builds portable backups without touching the store.

    Attachment paths are resolved against the attachment store root; an
    absolute path is read as-is and archived under its file name. Paths whose
    files no longer exist are skipped.
    """

    def __init__(
        self,
        attachment_store: AttachmentStore,
        export_dir: Optional[Union[str, Path]] = None,
        missing_media_size_estimate: Optional[int] = None,
    ):
        self.attachment_store = attachment_store
        self.export_dir = Path(export_dir) if export_dir else None
        self.missing_media_size_estimate = (
            config.missing_media_size_estimate
            if missing_media_size_estimate is None
            else missing_media_size_estimate
        )

    def _target_dir(self) -> Path:
        if self.export_dir is None:
            return config.get_export_dir()
        self.export_dir.mkdir(parents=True, exist_ok=True)
        return self.export_dir

    def _locate(self, attachment_path: str) -> Tuple[Optional[Path], Optional[str]]:
        """Source file and archive name for one attachment path.

        The source is None when the path cannot be resolved safely.
        """
        path = Path(attachment_path)
        if path.is_absolute():
            return path, path.name
        try:
            source = self.attachment_store.absolute_path(attachment_path)
        except ValidationError:
            logger.warning(f"Ignoring unsafe attachment path: {attachment_path}")
            return None, None
        return source, source.relative_to(self.attachment_store.root).as_posix()

    def _media_entries(self, attachment_paths: Iterable[str]) -> List[Tuple[Path, str]]:
        """Existing files to archive, de-duplicated by archive name."""
        entries = {}
        for attachment_path in attachment_paths:
            source, arcname = self._locate(str(attachment_path))
            if source is None or arcname in entries:
                continue
            if source.is_file():
                entries[arcname] = source
            else:
                logger.debug(f"Skipping missing attachment file: {attachment_path}")
        return [(source, arcname) for arcname, source in entries.items()]

    def _write_atomically(self, target: Path, writer) -> None:
        """Run writer(tmp_path) and rename the result onto target."""
        fd, tmp_name = tempfile.mkstemp(prefix=".export-", suffix=".part", dir=target.parent)
        os.close(fd)
        try:
            writer(Path(tmp_name))
            os.replace(tmp_name, target)
            tmp_name = None
        except OSError as e:
            raise StorageError(
                f"Failed to write export file: {e}",
                operation="export",
                path=str(target),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    @traced("export_to_archive")
    def export_to_archive(
        self,
        notes: Sequence[Note],
        attachment_paths: Iterable[str],
        file_name: Optional[str] = None,
    ) -> Path:
        """Write notes.json and the media/ directory into a new ZIP file.

        Args:
            notes: Notes to serialize, in the order they should appear.
            attachment_paths: Attachment paths whose files go under media/.
            file_name: Archive file name. Defaults to
                quicknote_backup_<timestamp>.zip.

        Returns:
            Path of the finished archive in the export directory.

        Raises:
            StorageError: If the archive cannot be written
        """
        target = self._target_dir() / (
            file_name or f"quicknote_backup_{filename_timestamp()}.zip"
        )
        document = encode_notes_document(notes)
        media = self._media_entries(attachment_paths)
        written = []

        def write(tmp_path: Path) -> None:
            with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                archive.writestr(NOTES_FILE_NAME, document)
                for source, arcname in media:
                    try:
                        archive.write(source, f"{MEDIA_DIR_NAME}/{arcname}")
                        written.append(arcname)
                    except FileNotFoundError:
                        logger.debug(f"Attachment vanished during export: {source}")

        self._write_atomically(target, write)
        logger.info(
            f"Exported {len(notes)} notes and {len(written)} media files to {target.name}"
        )
        return target

    def export_store(self, note_store: NoteStore, file_name: Optional[str] = None) -> Path:
        """Export every note in a store together with its attachments."""
        snapshot = note_store.export_snapshot()
        return self.export_to_archive(
            snapshot.notes, snapshot.attachment_paths(), file_name=file_name
        )

    @traced("export_single_note")
    def export_single_note(self, note: Note, file_name: Optional[str] = None) -> Path:
        """Write one note as a JSON record, without media, for sharing."""
        target = self._target_dir() / (
            file_name or f"{sanitize_filename(note.title)}_{filename_timestamp()}.json"
        )
        data = json.dumps(note_to_record(note), ensure_ascii=False, indent=2)
        self._write_atomically(target, lambda tmp: tmp.write_text(data, encoding="utf-8"))
        logger.info(f"Exported note {note.id} to {target.name}")
        return target

    def summarize(
        self, notes: Sequence[Note], attachment_paths: Iterable[str]
    ) -> ExportSummary:
        """Estimate an export without building it.

        Existing files count with their real size; each path whose file is
        missing adds the configured fallback estimate but is not counted as
        a media file.
        """
        size = len(encode_notes_document(notes))
        media_count = 0
        for attachment_path in dict.fromkeys(str(p) for p in attachment_paths):
            source, _ = self._locate(attachment_path)
            try:
                if source is not None and source.is_file():
                    size += source.stat().st_size
                    media_count += 1
                    continue
            except OSError:
                pass
            size += self.missing_media_size_estimate

        return ExportSummary(
            note_count=len(notes),
            media_file_count=media_count,
            estimated_size_bytes=size,
        )
