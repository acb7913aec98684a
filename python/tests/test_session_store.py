"""Tests for the session and user stores."""

import pytest
from sqlalchemy import inspect

from codeloom.config import Settings
from codeloom.db import Base, SessionRow, create_db_engine, create_session_factory
from codeloom.services.quota import QuotaState
from codeloom.services.types import ChatMode, Role, Tier
from codeloom.storage import (
    InMemorySessionStore,
    InMemoryUserStore,
    MessageRecord,
    ProjectConfig,
    SessionRecord,
    SqlSessionStore,
    SqlUserStore,
    UserRecord,
    open_stores,
)


def make_record(session_id: str, last_modified: int, owner_id: str = "user-1") -> SessionRecord:
    return SessionRecord(
        id=session_id,
        name=f"session {session_id}",
        owner_id=owner_id,
        config=ProjectConfig(prompt="a page"),
        code="<p/>",
        creator_messages=[
            MessageRecord(id="m1", role=Role.USER, text="hi", timestamp=last_modified)
        ],
        last_modified=last_modified,
    )


def sql_factory(url: str = "sqlite://"):
    engine = create_db_engine(url)
    Base.metadata.create_all(engine)
    return create_session_factory(engine)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemorySessionStore(max_records=3)
    return SqlSessionStore(sql_factory(), max_records=3)



class TestSessionStores:
    """Behaviour shared by both bundled session stores."""

    def test_save_and_get(self, store):
        store.save(make_record("a", 1))
        record = store.get("a")
        assert record.name == "session a"
        assert record.creator_messages[0].role == Role.USER
        assert store.get("missing") is None

    def test_save_updates_in_place(self, store):
        store.save(make_record("a", 1))
        updated = make_record("a", 2)
        updated.code = "<h1/>"
        store.save(updated)

        assert store.get("a").code == "<h1/>"
        assert len(store.list_recent()) == 1

    def test_keeps_most_recent(self, store):
        for index, session_id in enumerate(["a", "b", "c", "d"]):
            store.save(make_record(session_id, index))

        assert [r.id for r in store.list_recent()] == ["d", "c", "b"]
        assert store.get("a") is None

    def test_list_filters_by_owner(self, store):
        store.save(make_record("a", 1, owner_id="user-1"))
        store.save(make_record("b", 2, owner_id="user-2"))
        assert [r.id for r in store.list_recent(owner_id="user-2")] == ["b"]

    def test_delete(self, store):
        store.save(make_record("a", 1))
        store.delete("a")
        store.delete("never-existed")
        assert store.get("a") is None

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            InMemorySessionStore(max_records=0)


class TestInMemoryIsolation:
    def test_returned_records_are_copies(self):
        store = InMemorySessionStore()
        store.save(make_record("a", 1))
        store.get("a").creator_messages.clear()
        assert len(store.get("a").creator_messages) == 1


class TestSqlStores:
    def test_sessions_and_users_share_one_database(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'codeloom.db'}"
        factory = sql_factory(url)
        SqlSessionStore(factory).save(make_record("a", 1))
        SqlUserStore(factory).save(UserRecord(id="user-1", tier=Tier.PREMIUM))

        reopened = sql_factory(url)
        record = SqlSessionStore(reopened).get("a")
        assert record.config.chat_mode == ChatMode.CREATOR
        assert record.creator_messages[0].text == "hi"
        assert SqlUserStore(reopened).get("user-1").tier == Tier.PREMIUM

    def test_record_is_stored_as_json_beside_query_columns(self):
        factory = sql_factory()
        SqlSessionStore(factory).save(make_record("a", 5, owner_id="user-9"))

        with factory() as db:
            row = db.get(SessionRow, "a")
            assert row.owner_id == "user-9"
            assert row.last_modified == 5
            assert row.record["config"]["chat_mode"] == ChatMode.CREATOR.value


class TestUserStores:
    @pytest.mark.parametrize("kind", ["memory", "sql"])
    def test_get_or_create(self, kind):
        users = InMemoryUserStore() if kind == "memory" else SqlUserStore(sql_factory())

        created = users.get_or_create("user-1")

        assert created.tier == Tier.FREE
        assert created.daily_requests_count == 0
        assert users.get("user-1") == created
        assert users.get_or_create("user-1") == created

    def test_sql_save_updates_quota(self):
        users = SqlUserStore(sql_factory())
        users.save(UserRecord(id="u", daily_requests_count=1, last_request_date="2024-01-01"))
        users.save(UserRecord(id="u", daily_requests_count=2, last_request_date="2024-01-02"))

        stored = users.get("u")
        assert stored.daily_requests_count == 2
        assert stored.last_request_date == "2024-01-02"

    def test_quota_state_round_trip(self):
        user = UserRecord(id="u", tier=Tier.ADMIN, daily_requests_count=3, last_request_date="d")
        assert user.quota_state() == QuotaState(count=3, last_request_date="d", tier=Tier.ADMIN)

        updated = user.with_quota(QuotaState(count=4, last_request_date="e", tier=Tier.ADMIN))
        assert updated.daily_requests_count == 4
        assert updated.last_request_date == "e"
        assert user.daily_requests_count == 3


class TestOpenStores:
    def test_in_memory_without_database(self):
        sessions, users = open_stores(Settings(CODELOOM_ENV="test"))
        assert isinstance(sessions, InMemorySessionStore)
        assert isinstance(users, InMemoryUserStore)

    def test_sql_with_database_url(self, tmp_path):
        path = tmp_path / "codeloom.db"
        settings = Settings(
            CODELOOM_ENV="test",
            DATABASE_URL=f"sqlite:///{path}",
            MAX_STORED_SESSIONS=5,
        )
        sessions, users = open_stores(settings)

        assert isinstance(sessions, SqlSessionStore)
        assert isinstance(users, SqlUserStore)
        assert sessions.max_records == 5
        assert path.exists()

        tables = inspect(create_db_engine(settings.database_url)).get_table_names()
        assert set(tables) == {"sessions", "users"}
