"""
Tests for the Key-Value Store backends.

The in-memory backend is tested directly. The SQL backend is tested against
a mocked AsyncSession; statements are compiled with the PostgreSQL dialect
to check the conflict clauses.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.sql_store import SqlKeyValueStore
from app.db.store import KeyValueStore, MemoryKeyValueStore
from app.exceptions import StoreError


class TestMemoryStore:
    """Tests for MemoryKeyValueStore."""

    @pytest.mark.asyncio
    async def test_get_set_delete(self, store):
        assert await store.get("k") is None

        await store.set("k", b"v")
        assert await store.get("k") == b"v"

        await store.delete("k")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_absent_is_ok(self, store):
        await store.delete("never-set")

    @pytest.mark.asyncio
    async def test_list_keys_prefix_sorted(self, store):
        for key in ["b/2", "a/1", "b/1", "bb/1"]:
            await store.set(key, b"")

        assert await store.list_keys("b/") == ["b/1", "b/2"]
        assert await store.list_keys("") == ["a/1", "b/1", "b/2", "bb/1"]

    @pytest.mark.asyncio
    async def test_set_if_absent(self, store):
        assert await store.set_if_absent("k", b"first")
        assert not await store.set_if_absent("k", b"second")
        assert await store.get("k") == b"first"

    @pytest.mark.asyncio
    async def test_json_helpers(self, store):
        await store.set_json("k", {"a": 1, "b": [1, 2]})
        assert await store.get_json("k") == {"a": 1, "b": [1, 2]}
        assert await store.get_json("missing") is None

        assert await store.set_json_if_absent("j", {"x": 1})
        assert not await store.set_json_if_absent("j", {"x": 2})

    @pytest.mark.asyncio
    async def test_invalid_json_raises_store_error(self, store):
        await store.set("k", b"{not json")

        with pytest.raises(StoreError) as exc_info:
            await store.get_json("k")

        assert exc_info.value.operation == "get"
        assert exc_info.value.key == "k"

    @pytest.mark.asyncio
    async def test_ping(self, store):
        await store.ping()

    def test_atomic_flag(self):
        assert MemoryKeyValueStore.atomic_conditional_put


class _CheckThenSetStore(KeyValueStore):
    """Minimal backend relying on the base-class set_if_absent."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)

    async def list_keys(self, prefix):
        return sorted(k for k in self.data if k.startswith(prefix))


class TestBaseContract:
    """Tests for the base-class conditional put."""

    @pytest.mark.asyncio
    async def test_check_then_set_fallback(self):
        store = _CheckThenSetStore()

        assert not store.atomic_conditional_put
        assert await store.set_if_absent("k", b"1")
        assert not await store.set_if_absent("k", b"2")
        assert store.data["k"] == b"1"


# ============================================================================
# SQL backend with a mocked session
# ============================================================================


@pytest.fixture
def sql_session() -> AsyncMock:
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=None)
    result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    result.rowcount = 1
    session.execute = AsyncMock(return_value=result)
    return session


@pytest.fixture
def sql_store(sql_session: AsyncMock) -> SqlKeyValueStore:
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = sql_session
    factory.return_value.__aexit__.return_value = False
    return SqlKeyValueStore(factory, namespace="imghost")


def _compiled(session: AsyncMock) -> str:
    statement = session.execute.call_args[0][0]
    return str(statement.compile(dialect=postgresql.dialect()))


class TestSqlStore:
    """Tests for SqlKeyValueStore."""

    @pytest.mark.asyncio
    async def test_get_returns_value(self, sql_store, sql_session):
        sql_session.execute.return_value.scalar_one_or_none.return_value = b"v"

        assert await sql_store.get("k") == b"v"
        assert "kv_entries" in _compiled(sql_session)

    @pytest.mark.asyncio
    async def test_set_is_upsert(self, sql_store, sql_session):
        await sql_store.set("k", b"v")

        sql = _compiled(sql_session)
        assert "ON CONFLICT" in sql
        assert "DO UPDATE" in sql
        sql_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_if_absent_inserted(self, sql_store, sql_session):
        assert await sql_store.set_if_absent("k", b"v")
        assert "DO NOTHING" in _compiled(sql_session)

    @pytest.mark.asyncio
    async def test_set_if_absent_conflict(self, sql_store, sql_session):
        sql_session.execute.return_value.rowcount = 0

        assert not await sql_store.set_if_absent("k", b"v")

    @pytest.mark.asyncio
    async def test_delete(self, sql_store, sql_session):
        await sql_store.delete("k")

        assert _compiled(sql_session).startswith("DELETE FROM kv_entries")
        sql_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_keys(self, sql_store, sql_session):
        sql_session.execute.return_value.scalars.return_value.all.return_value = ["expiry/1"]

        assert await sql_store.list_keys("expiry/") == ["expiry/1"]
        sql = _compiled(sql_session)
        assert "LIKE" in sql
        assert "ORDER BY" in sql

    @pytest.mark.asyncio
    async def test_driver_error_becomes_store_error(self, sql_store, sql_session):
        sql_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        with pytest.raises(StoreError) as exc_info:
            await sql_store.get("k")

        assert exc_info.value.operation == "get"
        assert exc_info.value.key == "k"

    @pytest.mark.parametrize("namespace", ["", "x" * 65])
    def test_invalid_namespace(self, namespace):
        with pytest.raises(ValueError):
            SqlKeyValueStore(MagicMock(), namespace=namespace)
