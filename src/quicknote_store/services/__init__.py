"""Backup export and import services."""

from quicknote_store.services.export_service import ArchiveExporter
from quicknote_store.services.import_service import ArchiveImporter

__all__ = ["ArchiveExporter", "ArchiveImporter"]
