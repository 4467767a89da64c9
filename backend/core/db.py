"""
FilaBridge — Core database layer.

Provides the SQLAlchemy engine, session factory, and the FastAPI get_db
dependency. SQLite pragmas are applied per connection so importing this
module never touches the filesystem.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from core.config import settings
from core.base import Base  # Single Base instance shared across all models


def make_engine(database_url: str, **kwargs):
    """Create an engine with the SQLite pragmas every connection needs."""
    connect_args = kwargs.pop("connect_args", {})
    if database_url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    eng = create_engine(database_url, connect_args=connect_args, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL")
            cur.execute("PRAGMA busy_timeout=5000")
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return eng


engine = make_engine(settings.database_url, echo=settings.debug, poolclass=NullPool)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    """Create all tables owned by loaded models."""
    # Importing the model modules registers their tables on Base.metadata.
    import core.models  # noqa: F401
    import modules.printers.models  # noqa: F401
    import modules.bindings.models  # noqa: F401
    import modules.inventory.models  # noqa: F401
    import modules.reconciliation.models  # noqa: F401
    import modules.pairing.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Dependency for database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
