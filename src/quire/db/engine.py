"""Database engine setup for the Quire release ledger (releases.db)."""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

if TYPE_CHECKING:
    from quire.config import Settings

# Lazy engine initialization - engine created on first use
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _enable_foreign_keys(dbapi_conn: object, connection_record: object) -> None:
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _create_engine_for_db(db_path: Path) -> Engine:
    """Create a SQLite engine with proper configuration."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def get_engine(settings: "Settings | None" = None) -> Engine:
    """Get or create the release ledger engine."""
    global _engine
    if _engine is None:
        if settings is None:
            from quire.config import get_settings

            settings = get_settings()
        settings.ensure_storage_dir()
        _engine = _create_engine_for_db(settings.releases_db_path)
    return _engine


def get_session_factory(settings: "Settings | None" = None) -> sessionmaker[Session]:
    """Get or create the release ledger session factory."""
    global _session_factory
    if _session_factory is None:
        engine = get_engine(settings)
        _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return _session_factory


@contextmanager
def get_session(settings: "Settings | None" = None) -> Generator[Session, None, None]:
    """Yield a ledger session; commit on success, roll back on error."""
    factory = get_session_factory(settings)
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(settings: "Settings | None" = None) -> None:
    """Create the ledger tables if they don't exist."""
    from quire.db.models import LedgerBase

    LedgerBase.metadata.create_all(get_engine(settings))


def reset_engine() -> None:
    """Reset the engine cache (useful for testing)."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _session_factory = None
