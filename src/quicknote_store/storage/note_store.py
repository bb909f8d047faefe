"""Authoritative, queryable collection of notes."""

import datetime
import logging
from typing import Callable, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete as sql_delete
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quicknote_store.exceptions import (
    CorruptRecordError,
    ErrorCode,
    NoteNotFoundError,
    QuickNoteError,
    StorageError,
)
from quicknote_store.models.db_models import DBNote
from quicknote_store.models.schema import (
    CURRENT_SCHEMA_VERSION,
    Note,
    NoteSnapshot,
    StorageStats,
    utc_now,
)
from quicknote_store.storage.attachment_store import AttachmentStore
from quicknote_store.storage.context import StoreContext

logger = logging.getLogger(__name__)

NoteListener = Callable[[List[Note]], None]


def _decode(row: DBNote) -> Note:
    try:
        return Note.model_validate_json(row.payload)
    except (PydanticValidationError, ValueError) as e:
        raise CorruptRecordError(row.id, original_error=e) from e


def _stored_at() -> datetime.datetime:
    return utc_now().replace(tzinfo=None)


class NoteStore:
    """Note records persisted one row per note, keyed by note id.

    Every read validates the stored payload against the Note model. A row
    that no longer decodes is purged rather than reported, and attachments
    whose files have disappeared are dropped from the note and the healed
    record written back. The attachment file lifecycle is delegated to the
    AttachmentStore sharing this store's context.
    """

    def __init__(self, context: StoreContext, attachment_store: Optional[AttachmentStore] = None):
        self.context = context
        self.attachment_store = attachment_store or AttachmentStore(context)
        self._listeners: List[NoteListener] = []

    def _session(self) -> Session:
        self.context.require_initialized("NoteStore")
        return self.context.session()

    # Change notification

    def subscribe(self, listener: NoteListener) -> Callable[[], None]:
        """Register a listener for the current note list.

        The listener is called with get_all() after every save, delete,
        merge and purge of a corrupt record.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, notes: Optional[List[Note]] = None) -> None:
        if not self._listeners:
            return
        if notes is None:
            notes = self.get_all()
        for listener in list(self._listeners):
            try:
                listener(list(notes))
            except Exception as e:
                logger.error(f"Note listener {listener!r} failed: {e}", exc_info=True)

    # Reads

    def _heal(self, note: Note) -> Tuple[Note, bool]:
        """Drop stale attachments and refresh sizes, keeping updated_at."""
        if not note.attachments:
            return note, False

        kept = []
        changed = False
        for attachment in note.attachments:
            refreshed = self.attachment_store.refresh(attachment)
            if refreshed is None:
                logger.info(
                    f"Dropping stale attachment {attachment.relative_path} from note {note.id}"
                )
                changed = True
                continue
            if refreshed is not attachment:
                changed = True
            kept.append(refreshed)

        if not changed:
            return note, False
        return note.model_copy(update={"attachments": tuple(kept)}), True

    def _load(self, session: Session, row: DBNote) -> Optional[Note]:
        """Decode and heal one row inside an open session.

        Returns None (after deleting the row) when the record is corrupt.
        """
        try:
            note = _decode(row)
        except CorruptRecordError as e:
            logger.warning(f"Purging corrupt note record {row.id}: {e.details.get('original_error')}")
            session.delete(row)
            return None

        note, healed = self._heal(note)
        if healed:
            row.payload = note.model_dump_json()
        return note

    def get_all(self) -> List[Note]:
        """All notes, most recently updated first; ties keep insertion order."""
        purged = False
        notes = []
        try:
            with self._session() as session:
                rows = session.scalars(select(DBNote).order_by(DBNote.seq)).all()
                for row in rows:
                    note = self._load(session, row)
                    if note is None:
                        purged = True
                    else:
                        notes.append(note)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read notes: {e}",
                operation="get_all",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

        # list.sort is stable, so equal update times stay in seq order
        notes.sort(key=lambda n: n.updated_at, reverse=True)
        if purged:
            self._notify(notes)
        return notes

    def get_by_id(self, note_id: str) -> Optional[Note]:
        """The note with this id, or None if absent or unreadable."""
        try:
            with self._session() as session:
                row = session.scalar(select(DBNote).where(DBNote.id == note_id))
                if row is None:
                    return None
                note = self._load(session, row)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read note {note_id}: {e}",
                operation="get_by_id",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

        if note is None:
            self._notify()
        return note

    def exists(self, note_id: str) -> bool:
        try:
            with self._session() as session:
                row = session.scalar(select(DBNote.seq).where(DBNote.id == note_id))
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to look up note {note_id}: {e}",
                operation="exists",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e
        return row is not None

    def count(self) -> int:
        """Number of readable notes. Corrupt records are purged first, as in get_all."""
        return len(self.get_all())

    # Writes

    def _write(self, session: Session, note: Note) -> bool:
        """Upsert a note inside an open session. Returns True when it was new."""
        payload = note.model_dump_json()
        row = session.scalar(select(DBNote).where(DBNote.id == note.id))
        if row is None:
            session.add(
                DBNote(
                    id=note.id,
                    schema_version=CURRENT_SCHEMA_VERSION,
                    payload=payload,
                    stored_at=_stored_at(),
                )
            )
            return True
        row.payload = payload
        row.schema_version = CURRENT_SCHEMA_VERSION
        row.stored_at = _stored_at()
        return False

    def save(self, note: Note) -> None:
        """Insert or wholesale replace the record for note.id.

        Raises:
            StorageError: If the record cannot be written
        """
        try:
            with self._session() as session:
                created = self._write(session, note)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to save note {note.id}: {e}",
                operation="save",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.debug(f"{'Created' if created else 'Updated'} note {note.id}")
        self._notify()

    def delete(self, note_id: str) -> None:
        """Remove a note, then clean up attachment files nobody else references.

        Unknown ids are ignored. Attachment cleanup is best-effort and never
        undoes the record deletion.
        """
        try:
            with self._session() as session:
                row = session.scalar(select(DBNote).where(DBNote.id == note_id))
                if row is None:
                    logger.debug(f"Delete of unknown note {note_id} ignored")
                    return
                try:
                    own_paths = _decode(row).attachment_paths
                except CorruptRecordError:
                    own_paths = []
                session.delete(row)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to delete note {note_id}: {e}",
                operation="delete",
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e

        remaining = self.get_all()
        if own_paths:
            referenced = {path for note in remaining for path in note.attachment_paths}
            try:
                self.attachment_store.collect_orphans(referenced, candidates=own_paths)
            except (OSError, QuickNoteError) as e:
                logger.warning(f"Attachment cleanup after deleting note {note_id} failed: {e}")

        logger.info(f"Deleted note {note_id}")
        self._notify(remaining)

    def merge_snapshot(self, notes: Iterable[Note]) -> int:
        """Overwrite-always bulk upsert.

        Notes that fail to write are logged and skipped.

        Returns:
            Number of notes written.
        """
        written = 0
        for note in notes:
            try:
                with self._session() as session:
                    self._write(session, note)
                    session.commit()
                written += 1
            except SQLAlchemyError as e:
                logger.error(f"Failed to merge note {note.id}: {e}")

        logger.info(f"Merged {written} notes into the store")
        self._notify()
        return written

    def duplicate(self, note_id: str) -> Note:
        """Save and return a copy of a note under a fresh id.

        The copy shares the original's attachment files, gets " (Copy)"
        appended to its title and is never pinned.

        Raises:
            NoteNotFoundError: If no note has this id
        """
        original = self.get_by_id(note_id)
        if original is None:
            raise NoteNotFoundError(note_id)

        now = utc_now()
        copy = Note(
            title=f"{original.title} (Copy)",
            content=original.content,
            folder=original.folder,
            tags=original.tags,
            attachments=original.attachments,
            pinned=False,
            created_at=now,
            updated_at=now,
        )
        self.save(copy)
        return copy

    def clear(self) -> int:
        """Delete every note and sweep all attachment files. Returns notes removed."""
        try:
            with self._session() as session:
                removed = session.execute(sql_delete(DBNote)).rowcount or 0
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to clear notes: {e}",
                operation="clear",
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e

        self.collect_garbage()
        logger.info(f"Cleared {removed} notes from the store")
        self._notify([])
        return removed

    # Queries

    def search(self, term: str) -> List[Note]:
        """Case-insensitive substring match over title, content and tags."""
        needle = (term or "").strip().lower()
        notes = self.get_all()
        if not needle:
            return notes
        return [
            note
            for note in notes
            if needle in note.title.lower()
            or needle in note.content.lower()
            or any(needle in tag.lower() for tag in note.tags)
        ]

    def notes_in_folder(self, folder: str) -> List[Note]:
        return [note for note in self.get_all() if note.folder == folder]

    def notes_with_tag(self, tag: str) -> List[Note]:
        return [note for note in self.get_all() if tag in note.tags]

    def pinned_notes(self) -> List[Note]:
        return [note for note in self.get_all() if note.pinned]

    def folders_in_use(self) -> Set[str]:
        return {note.folder for note in self.get_all() if note.folder}

    def tags_in_use(self) -> Set[str]:
        return {tag for note in self.get_all() for tag in note.tags}

    def referenced_paths(self) -> Set[str]:
        """Relative paths of every attachment referenced by any note."""
        return {path for note in self.get_all() for path in note.attachment_paths}

    def stats(self) -> StorageStats:
        """Aggregate counts from a single scan of all notes."""
        result = StorageStats()
        folders: Set[str] = set()
        tags: Set[str] = set()
        for note in self.get_all():
            result.note_count += 1
            result.total_characters += note.character_count
            result.image_count += len(note.images)
            result.voice_count += len(note.voice_notes)
            result.file_count += len(note.files)
            if note.folder:
                folders.add(note.folder)
            tags.update(note.tags)
        result.folder_count = len(folders)
        result.tag_count = len(tags)
        return result

    def export_snapshot(self) -> NoteSnapshot:
        return NoteSnapshot(notes=self.get_all())

    def collect_garbage(self) -> List[str]:
        """Delete every attachment file that no note references."""
        return self.attachment_store.collect_orphans(self.referenced_paths())
