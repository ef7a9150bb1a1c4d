from __future__ import annotations

from dataclasses import dataclass, field

from bulk_grader.clients.grading import LLMGradingClient
from bulk_grader.clients.stub import StubLLMClient, StubStorageClient, StubTranscriptionClient
from bulk_grader.domain.contracts import RecordStore
from bulk_grader.domain.use_cases.context import create_rubric
from bulk_grader.domain.use_cases.submissions import enqueue_submission
from bulk_grader.lib.records.types import BatchRecord, SubmissionRecord
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.repositories.context_store import ContextStore
from bulk_grader.repositories.stub import InMemoryRecordStore
from bulk_grader.workers.fanout import FanoutController, FanoutSettings, InProcessDispatcher
from bulk_grader.workers.processor import SubmissionProcessor

MEDIA_BYTES = b"\x00\x01fake-media-payload"


@dataclass
class FakeClock:
    now: int = 1_700_000_000_000

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@dataclass
class Harness:
    store: RecordStore
    clock: FakeClock
    batches: BatchStore
    contexts: ContextStore
    storage: StubStorageClient
    transcription: StubTranscriptionClient
    llm: StubLLMClient
    processor: SubmissionProcessor
    controller: FanoutController
    uploaded: list[str] = field(default_factory=list)

    async def new_batch(self, **kwargs: object) -> BatchRecord:
        kwargs.setdefault("name", "Week 3 Presentations")
        return await self.batches.create_batch(**kwargs)  # type: ignore[arg-type]

    async def upload(
        self,
        batch: BatchRecord,
        filename: str = "Jane_Doe_Presentation.mp4",
        **kwargs: object,
    ) -> SubmissionRecord:
        file_key = f"batches/{batch.id}/{len(self.uploaded)}-{filename}"
        self.storage.objects[file_key] = MEDIA_BYTES
        self.uploaded.append(file_key)
        submission, _ = await enqueue_submission(
            batches=self.batches,
            batch_id=batch.id,
            file_key=file_key,
            original_filename=filename,
            **kwargs,  # type: ignore[arg-type]
        )
        return submission


def build_harness(
    *,
    settings: FanoutSettings | None = None,
    claim_lease_seconds: int = 600,
    heartbeat_interval_ms: int = 15000,
    store: RecordStore | None = None,
) -> Harness:
    store = store if store is not None else InMemoryRecordStore()
    clock = FakeClock()
    batches = BatchStore(store=store, clock=clock)
    contexts = ContextStore(store=store, clock=clock)
    storage = StubStorageClient()
    transcription = StubTranscriptionClient()
    llm = StubLLMClient()
    processor = SubmissionProcessor(
        worker_id="worker-test",
        batches=batches,
        contexts=contexts,
        storage=storage,
        transcription=transcription,
        grading=LLMGradingClient(llm=llm),
        claim_lease_seconds=claim_lease_seconds,
        heartbeat_interval_ms=heartbeat_interval_ms,
    )
    controller = FanoutController(
        batches=batches,
        dispatcher=InProcessDispatcher(processor=processor),
        settings=settings or FanoutSettings(max_fanout=3, dispatch_grace_ms=2000, drain_budget_ms=60000),
    )
    return Harness(
        store=store,
        clock=clock,
        batches=batches,
        contexts=contexts,
        storage=storage,
        transcription=transcription,
        llm=llm,
        processor=processor,
        controller=controller,
    )


async def seed_bundle_context(harness: Harness, *, rubric_name: str = "Presentation Rubric") -> tuple[str, str]:
    """Create course, assignment and rubric. Returns (assignment_id, rubric_id)."""
    course = await harness.contexts.create_course(name="Climate Policy", course_code="ENV-210", term="Fall")
    assignment = await harness.contexts.create_assignment(
        course_id=course.id,
        name="Policy Pitch",
        instructions="Argue for one climate policy in five minutes.",
    )
    rubric = await create_rubric(
        contexts=harness.contexts,
        course_id=course.id,
        assignment_id=assignment.id,
        name=rubric_name,
        criteria=[
            {"id": "content", "name": "Content Quality", "weight": 2.0},
            {"id": "delivery", "name": "Delivery"},
            {"id": "evidence", "name": "Evidence Strength"},
        ],
    )
    return assignment.id, rubric.id
