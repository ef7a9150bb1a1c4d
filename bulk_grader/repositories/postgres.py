from __future__ import annotations

from dataclasses import dataclass
import importlib
import json
from typing import Any

from bulk_grader.domain.contracts import Mutator
from bulk_grader.domain.dto import WriteSet
from bulk_grader.repositories.sql_loader import load_sql

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]


SQL_GET_RECORD = load_sql("get_record.sql")
SQL_UPSERT_RECORD = load_sql("upsert_record.sql")
SQL_LOCK_KEY = load_sql("lock_key.sql")
SQL_LOCK_RECORD = load_sql("lock_record.sql")
SQL_DELETE_RECORDS = load_sql("delete_records.sql")
SQL_DELETE_SETS = load_sql("delete_sets.sql")
SQL_DELETE_LISTS = load_sql("delete_lists.sql")
SQL_ADD_SET_MEMBERS = load_sql("add_set_members.sql")
SQL_REMOVE_SET_MEMBERS = load_sql("remove_set_members.sql")
SQL_LIST_SET_MEMBERS = load_sql("list_set_members.sql")
SQL_PUSH_LIST_ITEMS = load_sql("push_list_items.sql")
SQL_POP_LIST_ITEM = load_sql("pop_list_item.sql")
SQL_COUNT_LIST_ITEMS = load_sql("count_list_items.sql")
SQL_RANGE_LIST_ITEMS = load_sql("range_list_items.sql")
SQL_SCAN_RECORDS = load_sql("scan_records.sql")


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None
    min_size: int = 1
    max_size: int = 5

    async def startup(self) -> None:
        if asyncpg_module is None:  # pragma: no cover
            raise RuntimeError("asyncpg is required for postgres record store mode")

        async def _init_connection(conn: Any) -> None:
            await conn.set_type_codec(
                "json",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )
            await conn.set_type_codec(
                "jsonb",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresRecordStore:
    """Record store over three tables: kv_records, kv_set_members, kv_list_items.

    Dequeue relies on DELETE ... FOR UPDATE SKIP LOCKED so concurrent lpop
    callers never receive the same element.
    """

    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def get(self, key: str) -> dict[str, object] | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(SQL_GET_RECORD, key)

    async def set(self, key: str, value: dict[str, object]) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_UPSERT_RECORD, key, value)

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(SQL_DELETE_RECORDS, list(keys))
                await conn.execute(SQL_DELETE_SETS, list(keys))
                await conn.execute(SQL_DELETE_LISTS, list(keys))

    async def modify(self, key: str, mutate: Mutator) -> dict[str, object] | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                # Advisory lock covers the absent-key case where FOR UPDATE has no row to lock.
                await conn.execute(SQL_LOCK_KEY, key)
                current = await conn.fetchval(SQL_LOCK_RECORD, key)
                updated = mutate(current)
                if updated is None:
                    return None
                await conn.execute(SQL_UPSERT_RECORD, key, updated)
                return updated

    async def write_many(self, writes: WriteSet) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for key, value in writes.values.items():
                    await conn.execute(SQL_UPSERT_RECORD, key, value)
                for key, members in writes.set_adds.items():
                    await conn.execute(SQL_ADD_SET_MEMBERS, key, list(members))
                for key, items in writes.list_pushes.items():
                    await conn.execute(SQL_PUSH_LIST_ITEMS, key, list(items))

    async def sadd(self, key: str, *members: str) -> None:
        if not members:
            return
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_ADD_SET_MEMBERS, key, list(members))

    async def srem(self, key: str, *members: str) -> None:
        if not members:
            return
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_REMOVE_SET_MEMBERS, key, list(members))

    async def smembers(self, key: str) -> set[str]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_SET_MEMBERS, key)
        return {row["member"] for row in rows}

    async def rpush(self, key: str, *values: str) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                if values:
                    await conn.execute(SQL_PUSH_LIST_ITEMS, key, list(values))
                count = await conn.fetchval(SQL_COUNT_LIST_ITEMS, key)
        return int(count or 0)

    async def lpop(self, key: str) -> str | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(SQL_POP_LIST_ITEM, key)

    async def llen(self, key: str) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            count = await conn.fetchval(SQL_COUNT_LIST_ITEMS, key)
        return int(count or 0)

    async def lrange(self, key: str) -> list[str]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_RANGE_LIST_ITEMS, key)
        return [row["value"] for row in rows]

    async def scan(self, *, prefix: str, cursor: str | None, count: int) -> tuple[str | None, list[str]]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_SCAN_RECORDS, prefix, cursor or "", count)
        keys = [row["key"] for row in rows]
        next_cursor = keys[-1] if len(keys) == count else None
        return next_cursor, keys
