"""Database module for Codeloom.

Provides engine creation, the session factory, the transaction helper and
ORM models.
"""

from codeloom.db.engine import create_db_engine
from codeloom.db.models import Base, SessionRow, UserRow
from codeloom.db.session import create_session_factory, transaction

__all__ = [
    "Base",
    "SessionRow",
    "UserRow",
    "create_db_engine",
    "create_session_factory",
    "transaction",
]
