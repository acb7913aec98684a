"""Session store abstraction.

The core reads one record to resume a session and writes it back after each
generation settles. The bundled stores cap the collection to the most recent
max_records sessions by last_modified; saving an existing id updates in place.
"""

from abc import ABC, abstractmethod

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from codeloom.db import SessionRow, transaction
from codeloom.logging import get_logger
from codeloom.storage.records import SessionRecord

logger = get_logger(__name__)

DEFAULT_MAX_STORED_SESSIONS = 20


def _cap(records: list[SessionRecord], max_records: int) -> list[SessionRecord]:
    ordered = sorted(records, key=lambda r: r.last_modified, reverse=True)
    return ordered[:max_records]


class SessionStoreBase(ABC):
    """Abstract base class for session stores."""

    def __init__(self, max_records: int = DEFAULT_MAX_STORED_SESSIONS):
        if max_records < 1:
            raise ValueError("max_records must be >= 1")
        self.max_records = max_records

    @abstractmethod
    def get(self, session_id: str) -> SessionRecord | None:
        """Return the stored record, or None if it does not exist."""
        ...

    @abstractmethod
    def save(self, record: SessionRecord) -> None:
        """Insert or replace a record, evicting the oldest beyond max_records."""
        ...

    @abstractmethod
    def list_recent(self, owner_id: str | None = None) -> list[SessionRecord]:
        """Stored records, most recently modified first."""
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove a record. Missing ids are ignored."""
        ...


class InMemorySessionStore(SessionStoreBase):
    """Process-local store, used by tests and when no database is configured."""

    def __init__(self, max_records: int = DEFAULT_MAX_STORED_SESSIONS):
        super().__init__(max_records)
        self._records: dict[str, SessionRecord] = {}

    def get(self, session_id: str) -> SessionRecord | None:
        record = self._records.get(session_id)
        return record.model_copy(deep=True) if record else None

    def save(self, record: SessionRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)
        kept = _cap(list(self._records.values()), self.max_records)
        evicted = set(self._records) - {r.id for r in kept}
        for session_id in evicted:
            del self._records[session_id]
        if evicted:
            logger.info("sessions.evicted", count=len(evicted))

    def list_recent(self, owner_id: str | None = None) -> list[SessionRecord]:
        records = _cap(list(self._records.values()), self.max_records)
        return [
            r.model_copy(deep=True)
            for r in records
            if owner_id is None or r.owner_id == owner_id
        ]

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)


class SqlSessionStore(SessionStoreBase):
    """Sessions in the "sessions" table; the record itself is a JSON column."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        max_records: int = DEFAULT_MAX_STORED_SESSIONS,
    ):
        super().__init__(max_records)
        self._session_factory = session_factory

    def get(self, session_id: str) -> SessionRecord | None:
        with self._session_factory() as db:
            row = db.get(SessionRow, session_id)
            return SessionRecord.model_validate(row.record) if row else None

    def save(self, record: SessionRecord) -> None:
        recent = (
            select(SessionRow.id)
            .order_by(SessionRow.last_modified.desc())
            .limit(self.max_records)
        )
        with self._session_factory() as db, transaction(db):
            db.merge(
                SessionRow(
                    id=record.id,
                    owner_id=record.owner_id,
                    last_modified=record.last_modified,
                    record=record.model_dump(mode="json"),
                )
            )
            db.flush()
            evicted = db.execute(
                delete(SessionRow)
                .where(SessionRow.id.not_in(recent))
                .execution_options(synchronize_session=False)
            ).rowcount
        if evicted:
            logger.info("sessions.evicted", count=evicted)

    def list_recent(self, owner_id: str | None = None) -> list[SessionRecord]:
        query = select(SessionRow).order_by(SessionRow.last_modified.desc())
        if owner_id is not None:
            query = query.where(SessionRow.owner_id == owner_id)
        with self._session_factory() as db:
            rows = db.scalars(query.limit(self.max_records)).all()
            return [SessionRecord.model_validate(row.record) for row in rows]

    def delete(self, session_id: str) -> None:
        with self._session_factory() as db, transaction(db):
            db.execute(delete(SessionRow).where(SessionRow.id == session_id))
