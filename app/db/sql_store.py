"""
SQL Key-Value Store - KeyValueStore over the kv_entries table.

Every call opens its own short session and commits immediately, so each
operation is atomic on its single row and nothing spans keys. Driver errors
never escape: they are logged and re-raised as StoreError.
"""

import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from app.db.models import KVEntry, utc_now
from app.db.store import KeyValueStore
from app.exceptions import StoreError
from app.observability.metrics import metrics

logger = get_logger(__name__)

T = TypeVar("T")


class SqlKeyValueStore(KeyValueStore):
    """PostgreSQL-backed key-value store."""

    atomic_conditional_put = True

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        namespace: str,
    ) -> None:
        if not namespace or len(namespace) > 64:
            raise ValueError(f"Invalid store namespace: {namespace!r}")
        self._session_factory = session_factory
        self.namespace = namespace

    async def _run(
        self,
        operation: str,
        key: str,
        fn: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run fn in a fresh session, translating failures to StoreError."""
        start = time.perf_counter()
        try:
            async with self._session_factory() as session:
                result = await fn(session)
        except SQLAlchemyError as exc:
            metrics.record_store_operation(operation, False, time.perf_counter() - start)
            logger.error(
                "store_operation_failed",
                operation=operation,
                key=key,
                error=str(exc),
            )
            raise StoreError(operation, key, type(exc).__name__) from exc
        metrics.record_store_operation(operation, True, time.perf_counter() - start)
        return result

    async def get(self, key: str) -> bytes | None:
        async def _get(session: AsyncSession) -> bytes | None:
            stmt = select(KVEntry.value).where(
                KVEntry.namespace == self.namespace, KVEntry.key == key
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

        return await self._run("get", key, _get)

    async def set(self, key: str, value: bytes) -> None:
        async def _set(session: AsyncSession) -> None:
            now = utc_now()
            stmt = pg_insert(KVEntry).values(
                namespace=self.namespace, key=key, value=value, updated_at=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[KVEntry.namespace, KVEntry.key],
                set_={"value": value, "updated_at": now},
            )
            await session.execute(stmt)
            await session.commit()

        await self._run("set", key, _set)

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        async def _insert(session: AsyncSession) -> bool:
            stmt = (
                pg_insert(KVEntry)
                .values(namespace=self.namespace, key=key, value=value, updated_at=utc_now())
                .on_conflict_do_nothing(index_elements=[KVEntry.namespace, KVEntry.key])
            )
            result = await session.execute(stmt)
            await session.commit()
            return bool(result.rowcount)  # type: ignore[attr-defined]

        return await self._run("set_if_absent", key, _insert)

    async def delete(self, key: str) -> None:
        async def _delete(session: AsyncSession) -> None:
            stmt = delete(KVEntry).where(
                KVEntry.namespace == self.namespace, KVEntry.key == key
            )
            await session.execute(stmt)
            await session.commit()

        await self._run("delete", key, _delete)

    async def list_keys(self, prefix: str) -> list[str]:
        async def _list(session: AsyncSession) -> list[str]:
            stmt = (
                select(KVEntry.key)
                .where(
                    KVEntry.namespace == self.namespace,
                    KVEntry.key.startswith(prefix, autoescape=True),
                )
                .order_by(KVEntry.key.collate("C"))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

        return await self._run("list", prefix, _list)
