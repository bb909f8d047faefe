"""SQLAlchemy database models for the QuickNote store.

Each note is persisted as one row holding the JSON payload of the typed
Note model. The autoincrement ``seq`` column is the id index: it records
insertion order, which breaks ties when notes share an update time.
"""
import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from quicknote_store.config import config
from quicknote_store.models.schema import CURRENT_SCHEMA_VERSION

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Database model for a persisted note record."""
    __tablename__ = "note_records"
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(255), unique=True, nullable=False, index=True)
    schema_version = Column(Integer, nullable=False, default=CURRENT_SCHEMA_VERSION)
    payload = Column(Text, nullable=False)
    stored_at = Column(
        DateTime,
        default=lambda: datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None),
        nullable=False,
    )

    def __repr__(self) -> str:
        """Return string representation of the record."""
        return f"<DBNote(seq={self.seq}, id='{self.id}', v{self.schema_version})>"


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and tables for the note record database.

    File databases get WAL journaling and NORMAL synchronous mode for crash
    resilience. In-memory databases share one connection through StaticPool
    so every session sees the same data.
    """
    db_url = db_url or config.get_db_url()

    if ":memory:" in db_url:
        engine = create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
