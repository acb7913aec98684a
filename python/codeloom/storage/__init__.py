"""Persistence for sessions and users.

Provides:
- SessionStoreBase / UserStoreBase abstractions
- In-memory stores (tests, and when no database is configured)
- SQL stores over SQLAlchemy, sharing one database
"""

from codeloom.config import Settings
from codeloom.db import Base, create_db_engine, create_session_factory
from codeloom.logging import get_logger
from codeloom.storage.records import MessageRecord, ProjectConfig, SessionRecord, UserRecord
from codeloom.storage.sessions import InMemorySessionStore, SessionStoreBase, SqlSessionStore
from codeloom.storage.users import InMemoryUserStore, SqlUserStore, UserStoreBase

logger = get_logger(__name__)


def open_stores(settings: Settings) -> tuple[SessionStoreBase, UserStoreBase]:
    """Create the session and user stores described by settings.

    With DATABASE_URL set, missing tables are created on first open.
    """
    if not settings.database_url:
        return (
            InMemorySessionStore(max_records=settings.max_stored_sessions),
            InMemoryUserStore(),
        )

    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(engine)
    logger.info("storage.opened", backend=engine.url.get_backend_name())
    factory = create_session_factory(engine)
    return (
        SqlSessionStore(factory, max_records=settings.max_stored_sessions),
        SqlUserStore(factory),
    )


__all__ = [
    "InMemorySessionStore",
    "InMemoryUserStore",
    "MessageRecord",
    "ProjectConfig",
    "SessionRecord",
    "SessionStoreBase",
    "SqlSessionStore",
    "SqlUserStore",
    "UserRecord",
    "UserStoreBase",
    "open_stores",
]
