from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import os

from bulk_grader.api.handlers.deps import ApiDeps, ReconcileSettings, reconcile_settings_from_env
from bulk_grader.clients.grading import LLMGradingClient
from bulk_grader.clients.stub import StubLLMClient, StubStorageClient, StubTranscriptionClient
from bulk_grader.domain.contracts import (
    Dispatcher,
    GradingClient,
    LLMClient,
    RecordStore,
    StorageClient,
    TextExtractor,
    TranscriptionClient,
)
from bulk_grader.domain.extraction import DocumentTextExtractor
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.repositories.context_store import ContextStore
from bulk_grader.repositories.postgres import AsyncpgPoolManager, PostgresRecordStore
from bulk_grader.repositories.stub import InMemoryRecordStore
from bulk_grader.roles import RuntimeRole
from bulk_grader.workers.fanout import (
    FanoutController,
    FanoutSettings,
    HttpDispatcher,
    InProcessDispatcher,
    fanout_settings_from_env,
)
from bulk_grader.workers.processor import SubmissionProcessor
from bulk_grader.workers.runner import WorkerRuntimeSettings, worker_runtime_settings_from_env


@dataclass
class RuntimeContainer:
    store: RecordStore
    batches: BatchStore
    contexts: ContextStore
    storage: StorageClient
    transcription: TranscriptionClient
    llm: LLMClient
    grading: GradingClient
    extractor: TextExtractor
    processor: SubmissionProcessor
    controller: FanoutController
    api_deps: ApiDeps
    worker_settings: WorkerRuntimeSettings
    fanout_settings: FanoutSettings
    reconcile_settings: ReconcileSettings
    run_worker: bool
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_runtime_container(role: RuntimeRole) -> RuntimeContainer:
    database_url = os.getenv("DATABASE_URL")
    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    store: RecordStore
    if database_url:
        pool_manager = AsyncpgPoolManager(dsn=database_url)
        store = PostgresRecordStore(pool_manager=pool_manager)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        store = InMemoryRecordStore()

    worker_settings = worker_runtime_settings_from_env()
    fanout_settings = fanout_settings_from_env()
    reconcile_settings = reconcile_settings_from_env()

    batches = BatchStore(store=store)
    contexts = ContextStore(store=store)
    storage = StubStorageClient()
    transcription = StubTranscriptionClient()
    llm = StubLLMClient()
    grading = LLMGradingClient(llm=llm)
    extractor = DocumentTextExtractor()
    processor = SubmissionProcessor(
        worker_id=f"{role.name}-{os.getpid()}",
        batches=batches,
        contexts=contexts,
        storage=storage,
        transcription=transcription,
        grading=grading,
        claim_lease_seconds=worker_settings.claim_lease_seconds,
        heartbeat_interval_ms=worker_settings.heartbeat_interval_ms,
    )

    dispatch_url = os.getenv("GRADER_DISPATCH_URL")
    dispatcher: Dispatcher
    if dispatch_url:
        dispatcher = HttpDispatcher(
            base_url=dispatch_url,
            timeout_seconds=float(fanout_settings.dispatch_timeout_seconds),
        )
    else:
        dispatcher = InProcessDispatcher(processor=processor)
    controller = FanoutController(batches=batches, dispatcher=dispatcher, settings=fanout_settings)

    api_deps = ApiDeps(
        batches=batches,
        contexts=contexts,
        storage=storage,
        extractor=extractor,
        processor=processor,
        controller=controller,
        reconcile=reconcile_settings,
    )

    return RuntimeContainer(
        store=store,
        batches=batches,
        contexts=contexts,
        storage=storage,
        transcription=transcription,
        llm=llm,
        grading=grading,
        extractor=extractor,
        processor=processor,
        controller=controller,
        api_deps=api_deps,
        worker_settings=worker_settings,
        fanout_settings=fanout_settings,
        reconcile_settings=reconcile_settings,
        run_worker=role.runs_worker,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
