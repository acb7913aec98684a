"""User record store (tier and daily quota)."""

from abc import ABC, abstractmethod

from sqlalchemy.orm import Session, sessionmaker

from codeloom.db import UserRow, transaction
from codeloom.services.types import Tier
from codeloom.storage.records import UserRecord


class UserStoreBase(ABC):
    """Abstract base class for user stores."""

    @abstractmethod
    def get(self, user_id: str) -> UserRecord | None:
        ...

    @abstractmethod
    def save(self, record: UserRecord) -> None:
        ...

    def get_or_create(self, user_id: str) -> UserRecord:
        """Return the stored user, creating a free-tier record on first sight."""
        record = self.get(user_id)
        if record is None:
            record = UserRecord(id=user_id)
            self.save(record)
        return record


class InMemoryUserStore(UserStoreBase):
    def __init__(self):
        self._records: dict[str, UserRecord] = {}

    def get(self, user_id: str) -> UserRecord | None:
        record = self._records.get(user_id)
        return record.model_copy() if record else None

    def save(self, record: UserRecord) -> None:
        self._records[record.id] = record.model_copy()


class SqlUserStore(UserStoreBase):
    """Users in the "users" table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, user_id: str) -> UserRecord | None:
        with self._session_factory() as db:
            row = db.get(UserRow, user_id)
            if row is None:
                return None
            return UserRecord(
                id=row.id,
                tier=Tier(row.tier),
                daily_requests_count=row.daily_requests_count,
                last_request_date=row.last_request_date,
            )

    def save(self, record: UserRecord) -> None:
        with self._session_factory() as db, transaction(db):
            db.merge(
                UserRow(
                    id=record.id,
                    tier=record.tier.value,
                    daily_requests_count=record.daily_requests_count,
                    last_request_date=record.last_request_date,
                )
            )
