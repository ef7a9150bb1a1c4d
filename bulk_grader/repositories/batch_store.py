from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import time

from pydantic import ValidationError

from bulk_grader.domain.contracts import RecordStore
from bulk_grader.domain.dto import WriteSet
from bulk_grader.domain.ids import new_batch_id
from bulk_grader.lib.records import from_document, to_document
from bulk_grader.lib.records.types import BatchRecord, SubmissionRecord
from bulk_grader.repositories.keys import (
    ALL_BATCHES_KEY,
    QUEUE_KEY,
    SUBMISSION_PREFIX,
    batch_key,
    batch_submissions_key,
    submission_key,
)
from bulk_grader.repositories.queue import SubmissionQueue

logger = logging.getLogger("runtime")

SubmissionMutator = Callable[[SubmissionRecord], SubmissionRecord | None]
BatchMutator = Callable[[BatchRecord], BatchRecord | None]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BatchStore:
    """Typed batch and submission access over a RecordStore."""

    store: RecordStore
    clock: Callable[[], int] = field(default=now_ms)

    @property
    def queue(self) -> SubmissionQueue:
        return SubmissionQueue(store=self.store)

    async def create_batch(
        self,
        *,
        name: str,
        course_name: str | None = None,
        assignment_name: str | None = None,
        course_id: str | None = None,
        assignment_id: str | None = None,
        bundle_version_id: str | None = None,
        rubric_criteria: str | None = None,
    ) -> BatchRecord:
        created_at = self.clock()
        batch = BatchRecord(
            id=new_batch_id(),
            name=name,
            course_name=course_name,
            assignment_name=assignment_name,
            course_id=course_id,
            assignment_id=assignment_id,
            bundle_version_id=bundle_version_id,
            rubric_criteria=rubric_criteria,
            created_at=created_at,
            updated_at=created_at,
        )
        await self.store.write_many(
            WriteSet(
                values={batch_key(batch.id): to_document(batch)},
                set_adds={ALL_BATCHES_KEY: (batch.id,)},
            )
        )
        return batch

    async def get_batch(self, batch_id: str) -> BatchRecord | None:
        document = await self.store.get(batch_key(batch_id))
        if document is None:
            return None
        return from_document(BatchRecord, document)

    async def update_batch(self, batch_id: str, mutate: BatchMutator) -> BatchRecord | None:
        result: BatchRecord | None = None

        def _apply(document: dict[str, object] | None) -> dict[str, object] | None:
            nonlocal result
            if document is None:
                return None
            updated = mutate(from_document(BatchRecord, document))
            if updated is None:
                return None
            result = updated.model_copy(update={"updated_at": self.clock()})
            return to_document(result)

        await self.store.modify(batch_key(batch_id), _apply)
        return result

    async def list_batches(self) -> list[BatchRecord]:
        batches: list[BatchRecord] = []
        for batch_id in await self.store.smembers(ALL_BATCHES_KEY):
            batch = await self.get_batch(batch_id)
            if batch is not None:
                batches.append(batch)
        return sorted(batches, key=lambda item: item.created_at, reverse=True)

    async def delete_batch(self, batch_id: str) -> bool:
        batch = await self.get_batch(batch_id)
        if batch is None:
            return False
        member_ids = await self.store.smembers(batch_submissions_key(batch_id))
        await self.store.delete(
            *(submission_key(item) for item in sorted(member_ids)),
            batch_submissions_key(batch_id),
            batch_key(batch_id),
        )
        await self.store.srem(ALL_BATCHES_KEY, batch_id)
        return True

    async def create_submission(self, submission: SubmissionRecord, *, enqueue: bool = True) -> SubmissionRecord:
        """Write the record, its membership entry and (optionally) its queue entry together."""
        await self.store.write_many(
            WriteSet(
                values={submission_key(submission.id): to_document(submission)},
                set_adds={batch_submissions_key(submission.batch_id): (submission.id,)},
                list_pushes={QUEUE_KEY: (submission.id,)} if enqueue else {},
            )
        )

        def _bump_total(batch: BatchRecord) -> BatchRecord:
            return batch.model_copy(update={"total_submissions": batch.total_submissions + 1})

        await self.update_batch(submission.batch_id, _bump_total)
        return submission

    async def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        document = await self.store.get(submission_key(submission_id))
        if document is None:
            return None
        try:
            return from_document(SubmissionRecord, document)
        except ValidationError:
            logger.warning(
                "submission record failed to load",
                extra={"submission_id": submission_id},
            )
            return None

    async def save_submission(self, submission: SubmissionRecord) -> None:
        await self.store.set(submission_key(submission.id), to_document(submission))

    async def modify_submission(self, submission_id: str, mutate: SubmissionMutator) -> SubmissionRecord | None:
        """Atomic read-modify-write. Returns the stored record, or None when mutate declined."""
        result: SubmissionRecord | None = None

        def _apply(document: dict[str, object] | None) -> dict[str, object] | None:
            nonlocal result
            if document is None:
                return None
            try:
                current = from_document(SubmissionRecord, document)
            except ValidationError:
                return None
            updated = mutate(current)
            if updated is None:
                return None
            result = updated
            return to_document(updated)

        await self.store.modify(submission_key(submission_id), _apply)
        return result

    async def get_submissions(self, submission_ids: list[str]) -> list[SubmissionRecord]:
        # Records that are missing or fail validation are skipped.
        loaded: list[SubmissionRecord] = []
        for submission_id in submission_ids:
            submission = await self.get_submission(submission_id)
            if submission is not None:
                loaded.append(submission)
        return loaded

    async def get_batch_submissions(self, batch_id: str) -> list[SubmissionRecord]:
        member_ids = await self.store.smembers(batch_submissions_key(batch_id))
        submissions = await self.get_submissions(sorted(member_ids))
        return sorted(submissions, key=lambda item: (item.created_at, item.id))

    async def scan_submission_keys(self, *, cursor: str | None, count: int) -> tuple[str | None, list[str]]:
        return await self.store.scan(prefix=SUBMISSION_PREFIX, cursor=cursor, count=count)
