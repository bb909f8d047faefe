"""
QuickNote Store - local note and attachment persistence with ZIP backups.

This package implements the storage core of the QuickNote note-taking app:
typed Note/Attachment models, an attachment file store, an SQLite-backed
note store, and an archive exporter/importer that merges backups back into
the local store under a selectable conflict strategy.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("quicknote-store")
except PackageNotFoundError:
    __version__ = "0.3.0"
