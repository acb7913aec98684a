"""SQLAlchemy ORM models.

Sessions keep their full record as a JSON document next to the columns the
store queries on (owner and recency). Users are plain columns.
"""

from sqlalchemy import JSON, BigInteger, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class SessionRow(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    owner_id: Mapped[str | None] = mapped_column(Text, index=True)
    last_modified: Mapped[int] = mapped_column(BigInteger, index=True)
    record: Mapped[dict] = mapped_column(JSON)


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    tier: Mapped[str] = mapped_column(Text)
    daily_requests_count: Mapped[int] = mapped_column(Integer, default=0)
    last_request_date: Mapped[str | None] = mapped_column(Text)
