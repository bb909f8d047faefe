"""File custody for attachment payloads."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Set, Union

from quicknote_store.exceptions import (
    ErrorCode,
    SourceNotFoundError,
    StorageError,
    ValidationError,
)
from quicknote_store.models.schema import (
    Attachment,
    AttachmentType,
    file_extension,
    infer_attachment_type,
    infer_mime_type,
    utc_now,
    validate_relative_path,
    validate_safe_path_component,
)
from quicknote_store.storage.context import StoreContext

logger = logging.getLogger(__name__)


def _normalise_paths(paths: Iterable[str]) -> Set[str]:
    """Normalise relative paths, silently dropping ones that are not valid."""
    result = set()
    for path in paths:
        try:
            result.add(validate_relative_path(str(path)))
        except ValueError:
            continue
    return result


class AttachmentStore:
    """Owns the directory of attachment payload files.

    Files are addressed by their path relative to the store root; that
    relative path is the join key stored in Attachment.relative_path. The
    store knows nothing about notes beyond the note id used to name new
    files.
    """

    def __init__(self, context: StoreContext):
        self.context = context

    infer_type = staticmethod(infer_attachment_type)
    infer_mime_type = staticmethod(infer_mime_type)

    @property
    def root(self) -> Path:
        self.context.require_initialized("AttachmentStore")
        return self.context.attachments_dir

    def absolute_path(self, relative_path: str) -> Path:
        """Join a relative path onto the root, refusing to leave the root.

        Raises:
            ValidationError: If the path is absolute or escapes the root
        """
        try:
            normalised = validate_relative_path(relative_path)
        except ValueError as e:
            raise ValidationError(
                str(e),
                field="relative_path",
                value=relative_path,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            ) from e
        return self.root / normalised

    def exists(self, relative_path: str) -> bool:
        try:
            return self.absolute_path(relative_path).is_file()
        except ValidationError:
            return False

    def _unique_name(self, note_id: str, extension: str) -> str:
        stamp = utc_now().strftime("%Y%m%dT%H%M%S%f")
        suffix = f".{extension}" if extension else ""
        base = f"{note_id}_{stamp}"
        name = f"{base}{suffix}"
        counter = 1
        while (self.root / name).exists():
            name = f"{base}_{counter}{suffix}"
            counter += 1
        return name

    def store(
        self,
        source_file: Union[str, Path],
        note_id: str,
        type_hint: Optional[AttachmentType] = None,
        mime_type: Optional[str] = None,
    ) -> Attachment:
        """Copy a file into the store and describe it as an Attachment.

        Args:
            source_file: File to copy.
            note_id: Owning note; becomes the prefix of the stored name.
            type_hint: Attachment type. Inferred from the extension if None.
            mime_type: MIME type. Looked up from the extension if None.

        Returns:
            A fully populated Attachment pointing at the new file.

        Raises:
            SourceNotFoundError: If source_file does not exist
            ValidationError: If note_id is not safe for a file name
            StorageError: If the copy fails
        """
        source = Path(source_file)
        if not source.is_file():
            raise SourceNotFoundError(str(source))
        try:
            validate_safe_path_component(note_id, "Note ID")
        except ValueError as e:
            raise ValidationError(str(e), field="note_id", value=note_id) from e

        name = self._unique_name(note_id, file_extension(source.name))
        target = self.root / name
        try:
            shutil.copy2(source, target)
            size = target.stat().st_size
        except OSError as e:
            raise StorageError(
                f"Failed to copy attachment into store: {e}",
                operation="store_attachment",
                path=str(source),
                code=ErrorCode.ATTACHMENT_WRITE_FAILED,
                original_error=e,
            ) from e

        attachment = Attachment(
            name=source.name,
            relative_path=name,
            mime_type=mime_type or infer_mime_type(source.name),
            size_bytes=size,
            type=type_hint or infer_attachment_type(source.name),
        )
        logger.debug(f"Stored attachment {name} for note {note_id} ({size} bytes)")
        return attachment

    def delete(self, attachment: Attachment) -> None:
        """Remove an attachment's file. A file that is already gone is fine.

        Raises:
            StorageError: If the file exists but cannot be removed
        """
        path = self.absolute_path(attachment.relative_path)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to delete attachment: {e}",
                operation="delete_attachment",
                path=attachment.relative_path,
                code=ErrorCode.ATTACHMENT_DELETE_FAILED,
                original_error=e,
            ) from e

    def resolve_absolute_path(self, attachment: Attachment) -> Optional[Path]:
        """Absolute path of the attachment's file, or None if it does not exist.

        This is the existence check; callers must not assume the file is there.
        """
        try:
            path = self.absolute_path(attachment.relative_path)
        except ValidationError:
            return None
        return path if path.is_file() else None

    def refresh(self, attachment: Attachment) -> Optional[Attachment]:
        """Re-read an attachment's size from disk.

        Returns:
            The attachment (a copy if the size changed), or None when its
            file no longer exists.
        """
        path = self.resolve_absolute_path(attachment)
        if path is None:
            return None
        try:
            size = path.stat().st_size
        except OSError:
            return None
        if size != attachment.size_bytes:
            return attachment.model_copy(update={"size_bytes": size})
        return attachment

    def attachment_from_path(
        self,
        relative_path: str,
        type_hint: Optional[AttachmentType] = None,
        name: Optional[str] = None,
    ) -> Attachment:
        """Describe a file already (or soon to be) in the store."""
        normalised = validate_relative_path(relative_path)
        display_name = name or Path(normalised).name
        size = None
        path = self.root / normalised
        if path.is_file():
            size = path.stat().st_size
        return Attachment(
            name=display_name,
            relative_path=normalised,
            size_bytes=size,
            type=type_hint or infer_attachment_type(display_name),
        )

    def write_payload(self, relative_path: str, data: Union[bytes, BinaryIO]) -> Path:
        """Write a payload into the store, replacing any existing file.

        The data goes to a temporary sibling first and is renamed into place,
        so a failed write never leaves a truncated attachment behind.

        Raises:
            ValidationError: If the path escapes the root
            StorageError: If the write fails
        """
        target = self.absolute_path(relative_path)
        tmp_name = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".incoming-", dir=target.parent)
            with os.fdopen(fd, "wb") as handle:
                if isinstance(data, (bytes, bytearray)):
                    handle.write(data)
                else:
                    shutil.copyfileobj(data, handle)
            os.replace(tmp_name, target)
            tmp_name = None
        except OSError as e:
            raise StorageError(
                f"Failed to write attachment payload: {e}",
                operation="write_payload",
                path=relative_path,
                code=ErrorCode.ATTACHMENT_WRITE_FAILED,
                original_error=e,
            ) from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
        return target

    def list_files(self) -> List[str]:
        """Relative POSIX paths of every file under the root, sorted."""
        root = self.root
        return sorted(
            path.relative_to(root).as_posix()
            for path in root.rglob("*")
            if path.is_file()
        )

    def collect_orphans(
        self,
        referenced_paths: Iterable[str],
        candidates: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Delete files that no note references.

        Args:
            referenced_paths: Relative paths still referenced by any note.
            candidates: Restrict the sweep to these relative paths. None
                scans every file under the root.

        Returns:
            Relative paths of the files that were deleted. A file that fails
            to delete is logged and left in place.
        """
        referenced = _normalise_paths(referenced_paths)
        if candidates is None:
            scan = self.list_files()
        else:
            scan = sorted(p for p in _normalise_paths(candidates) if self.exists(p))

        deleted = []
        for relative_path in scan:
            if relative_path in referenced:
                continue
            try:
                (self.root / relative_path).unlink()
                deleted.append(relative_path)
                logger.debug(f"Removed orphaned attachment: {relative_path}")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove orphaned attachment {relative_path}: {e}")

        if deleted:
            logger.info(f"Collected {len(deleted)} orphaned attachment file(s)")
        return deleted
