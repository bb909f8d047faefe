"""Storage layer for the QuickNote store."""

from quicknote_store.storage.attachment_store import AttachmentStore
from quicknote_store.storage.context import StoreContext
from quicknote_store.storage.note_store import NoteStore

__all__ = [
    "StoreContext",
    "AttachmentStore",
    "NoteStore",
]
