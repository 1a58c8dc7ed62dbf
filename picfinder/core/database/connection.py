"""
Database connection and session management.

The index database is created explicitly by the caller (``init_db``) and
handed to the components that need it; there is no module-level engine.
SQLite is the default backend; any SQLAlchemy URL works.
"""
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from picfinder.core.database.models import Base

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """
    Normalize a database URL.

    - ``postgres://`` is rewritten to ``postgresql://``
    - ``~`` in SQLite file paths is expanded and the parent directory created
    """
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        db_path = Path(url.database).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        database_url = url.set(database=str(db_path)).render_as_string(hide_password=False)
    return database_url


def _is_memory_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and (not url.database or url.database == ":memory:")


def _unicode_lower(value):
    if isinstance(value, str):
        return value.casefold()
    return value


def _configure_sqlite(engine: Engine, memory: bool) -> None:
    """
    Enable WAL journaling (file databases) so search can read during scans.

    Also replaces SQLite's ASCII-only lower() so case-insensitive LIKE
    (SQLAlchemy's ilike) folds non-ASCII letters as well.
    """

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        dbapi_connection.create_function("lower", 1, _unicode_lower)
        cursor = dbapi_connection.cursor()
        if not memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(
    database_url: str,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    echo: bool = False,
) -> Engine:
    """
    Create an engine and verify the connection, retrying on failure.

    Args:
        database_url: SQLAlchemy database URL
        max_retries: Number of connection attempts
        retry_delay: Seconds to wait between retries (multiplied by attempt)
        echo: Log SQL statements

    Raises:
        RuntimeError: If connection fails after all retries
    """
    database_url = normalize_database_url(database_url)
    is_sqlite = make_url(database_url).get_backend_name() == "sqlite"
    memory = _is_memory_sqlite(database_url)

    kwargs = {"echo": echo}
    if memory:
        # One shared connection so every session sees the same in-memory database
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    elif is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True
        kwargs["pool_recycle"] = 3600

    last_error = None
    for attempt in range(max_retries):
        try:
            engine = create_engine(database_url, **kwargs)
            if is_sqlite:
                _configure_sqlite(engine, memory)

            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            return engine

        except (OperationalError, DBAPIError) as e:
            last_error = e
            logger.warning(f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}")
            if attempt < max_retries - 1:
                time.sleep(retry_delay * (attempt + 1))

    logger.error(f"Database initialization failed after {max_retries} attempts")
    raise RuntimeError(f"Failed to connect to database: {last_error}") from last_error


@dataclass
class Database:
    """An engine plus the session factory bound to it."""

    engine: Engine
    session_factory: sessionmaker

    def session(self) -> Session:
        """Open a new session (caller closes it)."""
        return self.session_factory()

    def close(self) -> None:
        """Dispose of all pooled connections."""
        self.engine.dispose()


def init_db(
    database_url: Optional[str] = None,
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
    create_tables: bool = True,
) -> Database:
    """
    Initialize the index database.

    Call this once at process startup and pass the returned ``Database``
    (or its ``session_factory``) to the components that need it.

    Args:
        database_url: URL to connect to (default: settings.database_url)
        max_retries: Connection attempts (default: from settings)
        retry_delay: Seconds between attempts (default: from settings)
        create_tables: Create missing tables

    Returns:
        Database handle
    """
    from picfinder.core.config import get_settings

    settings = get_settings()
    database_url = database_url or settings.database_url
    engine = create_db_engine(
        database_url,
        max_retries=max_retries if max_retries is not None else settings.database_connect_retries,
        retry_delay=retry_delay if retry_delay is not None else settings.database_retry_delay,
    )

    if create_tables:
        # Register the index tables on Base.metadata
        import picfinder.core.images.models  # noqa: F401

        Base.metadata.create_all(bind=engine)

    session_factory = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )

    url = make_url(engine.url)
    logger.info(f"Database initialized: {url.render_as_string(hide_password=True)}")
    return Database(engine=engine, session_factory=session_factory)
