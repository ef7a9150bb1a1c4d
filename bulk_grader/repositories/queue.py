from __future__ import annotations

from dataclasses import dataclass

from bulk_grader.domain.contracts import RecordStore
from bulk_grader.domain.dto import WriteSet
from bulk_grader.repositories.keys import QUEUE_KEY, batch_submissions_key


@dataclass
class SubmissionQueue:
    """Global FIFO of submission ids plus the per-batch membership sets.

    Duplicate entries are tolerated; the processor's claim guard turns a
    second pop of the same id into a no-op.
    """

    store: RecordStore

    async def enqueue(self, *, submission_id: str, batch_id: str) -> None:
        await self.store.write_many(
            WriteSet(
                set_adds={batch_submissions_key(batch_id): (submission_id,)},
                list_pushes={QUEUE_KEY: (submission_id,)},
            )
        )

    async def dequeue_one(self) -> str | None:
        return await self.store.lpop(QUEUE_KEY)

    async def length(self) -> int:
        return await self.store.llen(QUEUE_KEY)

    async def entries(self) -> list[str]:
        return await self.store.lrange(QUEUE_KEY)

    async def members(self, *, batch_id: str) -> set[str]:
        return await self.store.smembers(batch_submissions_key(batch_id))

    async def adopt(self, *, batch_id: str, submission_ids: list[str]) -> None:
        if submission_ids:
            await self.store.sadd(batch_submissions_key(batch_id), *submission_ids)
