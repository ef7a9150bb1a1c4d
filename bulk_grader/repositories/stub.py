from __future__ import annotations

import copy
from dataclasses import dataclass, field

from bulk_grader.domain.contracts import Mutator
from bulk_grader.domain.dto import WriteSet


@dataclass
class InMemoryRecordStore:
    """Non-network record store with deterministic behavior for local mode and tests.

    Every operation completes without yielding to the event loop, so each call
    is atomic with respect to other coroutines on the same loop.
    """

    values: dict[str, dict[str, object]] = field(default_factory=dict)
    sets: dict[str, set[str]] = field(default_factory=dict)
    lists: dict[str, list[str]] = field(default_factory=dict)
    lpop_calls: int = 0

    async def get(self, key: str) -> dict[str, object] | None:
        value = self.values.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: dict[str, object]) -> None:
        self.values[key] = copy.deepcopy(value)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self.values.pop(key, None)
            self.sets.pop(key, None)
            self.lists.pop(key, None)

    async def modify(self, key: str, mutate: Mutator) -> dict[str, object] | None:
        current = self.values.get(key)
        updated = mutate(copy.deepcopy(current) if current is not None else None)
        if updated is None:
            return None
        self.values[key] = copy.deepcopy(updated)
        return copy.deepcopy(updated)

    async def write_many(self, writes: WriteSet) -> None:
        for key, value in writes.values.items():
            self.values[key] = copy.deepcopy(value)
        for key, members in writes.set_adds.items():
            self.sets.setdefault(key, set()).update(members)
        for key, items in writes.list_pushes.items():
            self.lists.setdefault(key, []).extend(items)

    async def sadd(self, key: str, *members: str) -> None:
        self.sets.setdefault(key, set()).update(members)

    async def srem(self, key: str, *members: str) -> None:
        existing = self.sets.get(key)
        if existing is None:
            return
        existing.difference_update(members)

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def rpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(values)
        return len(items)

    async def lpop(self, key: str) -> str | None:
        self.lpop_calls += 1
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop(0)

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def lrange(self, key: str) -> list[str]:
        return list(self.lists.get(key, []))

    async def scan(self, *, prefix: str, cursor: str | None, count: int) -> tuple[str | None, list[str]]:
        keys = sorted(key for key in self.values if key.startswith(prefix))
        start = int(cursor) if cursor else 0
        page = keys[start : start + count]
        next_offset = start + count
        next_cursor = str(next_offset) if next_offset < len(keys) else None
        return next_cursor, page
