"""Explicit store handle shared by the attachment and note stores."""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from quicknote_store.config import config
from quicknote_store.exceptions import ConfigurationError, StoreNotInitializedError
from quicknote_store.models.db_models import get_session_factory, init_db

logger = logging.getLogger(__name__)


class StoreContext:
    """Directories and database engine for one local store.

    Construct one context per store, call initialize() once and pass it to
    AttachmentStore and NoteStore. Stores never create their own context.

    Example:
        context = StoreContext.from_directory(app_dir).initialize()
        attachments = AttachmentStore(context)
        notes = NoteStore(context, attachments)
    """

    def __init__(
        self,
        attachments_dir: Optional[Union[str, Path]] = None,
        database_path: Optional[Union[str, Path]] = None,
        in_memory_db: Optional[bool] = None,
        engine: Optional[Any] = None,
    ):
        """Configure the context without touching the disk.

        Args:
            attachments_dir: Attachment store root. Defaults to
                config.attachments_dir.
            database_path: SQLite file for note records. Defaults to
                config.database_path. Ignored when in_memory_db is True or
                an engine is given.
            in_memory_db: Keep note records in memory. Defaults to
                config.in_memory_db.
            engine: Pre-configured SQLAlchemy engine to share. The context
                does not dispose engines it did not create.
        """
        self.attachments_dir = config.get_absolute_path(
            Path(attachments_dir) if attachments_dir else config.attachments_dir
        )
        self.in_memory_db = config.in_memory_db if in_memory_db is None else in_memory_db
        self.database_path = (
            config.get_absolute_path(Path(database_path)) if database_path else None
        )
        self.engine = engine
        self._owns_engine = engine is None
        self.session_factory = None
        self._initialized = False

    @classmethod
    def from_directory(
        cls, base_dir: Union[str, Path], in_memory_db: bool = False
    ) -> "StoreContext":
        """Lay out a store under one directory (attachments/ and db/notes.db)."""
        base = Path(base_dir)
        return cls(
            attachments_dir=base / "attachments",
            database_path=base / "db" / "notes.db",
            in_memory_db=in_memory_db,
        )

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _db_url(self) -> str:
        if self.in_memory_db:
            return "sqlite:///:memory:"
        if self.database_path is not None:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite:///{self.database_path}"
        return config.get_db_url()

    def initialize(self) -> "StoreContext":
        """Create directories and tables. Safe to call more than once.

        Raises:
            ConfigurationError: If the attachment root exists but is not a
                directory
        """
        if self._initialized:
            return self

        if self.attachments_dir.exists() and not self.attachments_dir.is_dir():
            raise ConfigurationError(
                f"Attachment root is not a directory: {self.attachments_dir}",
                config_key="attachments_dir",
            )
        self.attachments_dir.mkdir(parents=True, exist_ok=True)

        if self.engine is None:
            self.engine = init_db(self._db_url())
        self.session_factory = get_session_factory(self.engine)
        self._initialized = True

        logger.info(
            f"StoreContext initialized: attachments_dir={self.attachments_dir}, "
            f"db={'memory' if self.in_memory_db else self.engine.url}"
        )
        return self

    def require_initialized(self, component: str = "StoreContext") -> None:
        """Raise StoreNotInitializedError unless initialize() has run."""
        if not self._initialized:
            raise StoreNotInitializedError(component)

    def session(self):
        """Open a new database session."""
        self.require_initialized()
        return self.session_factory()

    def close(self) -> None:
        """Release the database engine (if owned) and mark the context closed."""
        if self._owns_engine and self.engine is not None:
            self.engine.dispose()
            self.engine = None
        self.session_factory = None
        self._initialized = False

    def __enter__(self) -> "StoreContext":
        return self.initialize()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
