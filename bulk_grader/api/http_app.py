from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
import asyncio
from collections.abc import Awaitable, Callable, Iterator
import logging

from fastapi import Body, FastAPI, File, Form, HTTPException, Query, Response, UploadFile

from bulk_grader.api.handlers.batches import (
    create_batch_handler,
    delete_batch_handler,
    get_batch_handler,
    list_batches_handler,
    update_expected_uploads_handler,
)
from bulk_grader.api.handlers.context import (
    create_assignment_handler,
    create_course_handler,
    create_rubric_handler,
    get_bundle_handler,
    get_grading_context_handler,
    snapshot_bundle_handler,
    update_rubric_handler,
    upload_document_handler,
)
from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.api.handlers.exports import export_results_handler
from bulk_grader.api.handlers.processing import process_batch_handler, process_now_handler, process_one_handler
from bulk_grader.api.handlers.regrade import list_regrade_versions_handler, regrade_handler
from bulk_grader.api.handlers.status import batch_status_handler
from bulk_grader.api.handlers.submissions import (
    enqueue_handler,
    get_submission_handler,
    list_submissions_handler,
    presign_download_handler,
    presign_upload_handler,
)
from bulk_grader.api.schemas import (
    AssignmentResponse,
    BatchResponse,
    BatchStatusResponse,
    BundleResponse,
    BundleVersionListResponse,
    CourseResponse,
    CreateAssignmentRequest,
    CreateBatchRequest,
    CreateCourseRequest,
    CreateRubricRequest,
    DeleteBatchResponse,
    DocumentResponse,
    EnqueueRequest,
    EnqueueResponse,
    ErrorResponse,
    ExpectedUploadsRequest,
    GradingContextResponse,
    HealthResponse,
    ListBatchesResponse,
    ListSubmissionsResponse,
    PresignDownloadResponse,
    PresignUploadRequest,
    PresignUploadResponse,
    ProcessBatchResponse,
    ProcessNowResponse,
    ProcessOneResponse,
    ProcessRequest,
    ReadyResponse,
    RegradeRequest,
    RegradeResponse,
    RubricResponse,
    SnapshotRequest,
    SnapshotResponse,
    SubmissionDetailResponse,
    UpdateRubricRequest,
    WorkerMetrics,
)
from bulk_grader.domain.errors import (
    DomainDependencyError,
    DomainInvariantError,
    DomainNotFoundError,
    DomainValidationError,
    ExtractionParseError,
)
from bulk_grader.workers.fanout import FanoutController
from bulk_grader.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)

ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except DomainNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (DomainValidationError, ExtractionParseError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DomainInvariantError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except DomainDependencyError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def build_app(
    role: str,
    run_id: str,
    worker_controller: FanoutController | None = None,
    worker_runtime_settings: WorkerRuntimeSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    worker_state: WorkerRuntimeState | None = None
    worker_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker_task, worker_state
        del app
        stop_event: asyncio.Event | None = None

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        if worker_controller is not None:
            settings = worker_runtime_settings or worker_runtime_settings_from_env()
            worker_state = WorkerRuntimeState()
            stop_event = asyncio.Event()
            worker_task = asyncio.create_task(
                run_worker_until_stopped(
                    controller=worker_controller,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    settings=settings,
                    logger=logger,
                    state=worker_state,
                )
            )

        yield

        if stop_event is not None and worker_task is not None:
            stop_event.set()
            await worker_task

        if api_deps is not None:
            await api_deps.controller.wait_inflight()

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="bulk-grader", version="0.1.0", lifespan=lifespan)

    def _deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role, mode="bulk")

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        worker_loop_enabled = worker_controller is not None
        worker_loop_ready = True
        metrics = WorkerMetrics(
            started=False,
            stopped=False,
            ticks_total=0,
            processed_total=0,
            idle_ticks_total=0,
            swept_total=0,
            errors_total=0,
        )
        if worker_loop_enabled:
            worker_loop_ready = (
                worker_state is not None
                and worker_state.started
                and worker_task is not None
                and not worker_task.done()
            )
            if worker_state is not None:
                metrics = WorkerMetrics(
                    started=worker_state.started,
                    stopped=worker_state.stopped,
                    ticks_total=worker_state.ticks_total,
                    processed_total=worker_state.processed_total,
                    idle_ticks_total=worker_state.idle_ticks_total,
                    swept_total=worker_state.swept_total,
                    errors_total=worker_state.errors_total,
                )

        queue_length = 0
        inflight = 0
        if api_deps is not None:
            queue_length = await api_deps.batches.queue.length()
            inflight = api_deps.controller.inflight_count
        return ReadyResponse(
            status="ready",
            role=role,
            mode="bulk",
            worker_loop_enabled=worker_loop_enabled,
            worker_loop_ready=worker_loop_ready,
            worker_metrics=metrics,
            queue_length=queue_length,
            inflight_dispatches=inflight,
        )

    @app.post("/bulk/batches", response_model=BatchResponse, responses=ERROR_RESPONSES, tags=["Batches"])
    async def create_batch(request: CreateBatchRequest) -> BatchResponse:
        with _domain_errors():
            return await create_batch_handler(request=request, api_deps=_deps())

    @app.get("/bulk/batches", response_model=ListBatchesResponse, tags=["Batches"])
    async def list_batches() -> ListBatchesResponse:
        return await list_batches_handler(api_deps=_deps())

    @app.get("/bulk/batches/{batch_id}", response_model=BatchResponse, responses=ERROR_RESPONSES, tags=["Batches"])
    async def get_batch(batch_id: str) -> BatchResponse:
        with _domain_errors():
            return await get_batch_handler(batch_id=batch_id, api_deps=_deps())

    @app.delete(
        "/bulk/batches/{batch_id}",
        response_model=DeleteBatchResponse,
        responses=ERROR_RESPONSES,
        tags=["Batches"],
    )
    async def delete_batch(batch_id: str) -> DeleteBatchResponse:
        with _domain_errors():
            return await delete_batch_handler(batch_id=batch_id, api_deps=_deps())

    @app.post(
        "/bulk/batches/{batch_id}/expected-uploads",
        response_model=BatchResponse,
        responses=ERROR_RESPONSES,
        tags=["Batches"],
    )
    async def update_expected_uploads(batch_id: str, request: ExpectedUploadsRequest) -> BatchResponse:
        with _domain_errors():
            return await update_expected_uploads_handler(
                batch_id=batch_id,
                expected_count=request.expected_count,
                api_deps=_deps(),
            )

    @app.post("/bulk/presign", response_model=PresignUploadResponse, responses=ERROR_RESPONSES, tags=["Uploads"])
    async def presign_upload(request: PresignUploadRequest) -> PresignUploadResponse:
        with _domain_errors():
            return await presign_upload_handler(request=request, api_deps=_deps())

    @app.get("/bulk/presign", response_model=PresignDownloadResponse, responses=ERROR_RESPONSES, tags=["Uploads"])
    async def presign_download(
        key: str | None = Query(default=None),
        action: str = Query(default="download"),
    ) -> PresignDownloadResponse:
        if not key:
            raise HTTPException(status_code=400, detail="key is required")
        if action != "download":
            raise HTTPException(status_code=400, detail="Only action=download is supported for GET requests")
        with _domain_errors():
            return await presign_download_handler(file_key=key, api_deps=_deps())

    @app.post("/bulk/enqueue", response_model=EnqueueResponse, responses=ERROR_RESPONSES, tags=["Submissions"])
    async def enqueue(request: EnqueueRequest) -> EnqueueResponse:
        with _domain_errors():
            return await enqueue_handler(request=request, api_deps=_deps())

    @app.get(
        "/bulk/submissions",
        response_model=ListSubmissionsResponse,
        responses=ERROR_RESPONSES,
        tags=["Submissions"],
    )
    async def list_submissions(batch_id: str | None = Query(default=None)) -> ListSubmissionsResponse:
        if not batch_id:
            raise HTTPException(status_code=400, detail="batch_id is required")
        with _domain_errors():
            return await list_submissions_handler(batch_id=batch_id, api_deps=_deps())

    @app.get(
        "/bulk/submissions/{submission_id}",
        response_model=SubmissionDetailResponse,
        responses=ERROR_RESPONSES,
        tags=["Submissions"],
    )
    async def get_submission(submission_id: str) -> SubmissionDetailResponse:
        with _domain_errors():
            return await get_submission_handler(submission_id=submission_id, api_deps=_deps())

    @app.post("/bulk/process-now", response_model=ProcessNowResponse, tags=["Processing"])
    async def process_now(
        batch_id: str | None = Query(default=None),
        request: ProcessRequest | None = Body(default=None),  # noqa: B008
    ) -> ProcessNowResponse:
        target = batch_id or (request.batch_id if request is not None else None)
        return await process_now_handler(batch_id=target, api_deps=_deps())

    @app.post("/bulk/process-batch", response_model=ProcessBatchResponse, tags=["Processing"])
    async def process_batch(
        batch_id: str | None = Query(default=None),
        request: ProcessRequest | None = Body(default=None),  # noqa: B008
    ) -> ProcessBatchResponse:
        target = batch_id or (request.batch_id if request is not None else None)
        return await process_batch_handler(batch_id=target, api_deps=_deps())

    @app.post("/internal/process-one", response_model=ProcessOneResponse, tags=["Processing"])
    async def process_one() -> ProcessOneResponse:
        return await process_one_handler(api_deps=_deps())

    @app.post("/bulk/regrade", response_model=RegradeResponse, responses=ERROR_RESPONSES, tags=["Processing"])
    async def regrade(request: RegradeRequest) -> RegradeResponse:
        with _domain_errors():
            return await regrade_handler(request=request, api_deps=_deps())

    @app.get(
        "/bulk/regrade",
        response_model=BundleVersionListResponse,
        responses=ERROR_RESPONSES,
        tags=["Processing"],
    )
    async def list_regrade_versions(bundle_id: str | None = Query(default=None)) -> BundleVersionListResponse:
        if not bundle_id:
            raise HTTPException(status_code=400, detail="bundle_id is required")
        with _domain_errors():
            return await list_regrade_versions_handler(bundle_id=bundle_id, api_deps=_deps())

    @app.get("/bulk/status", response_model=BatchStatusResponse, responses=ERROR_RESPONSES, tags=["Batches"])
    async def batch_status(batch_id: str | None = Query(default=None)) -> BatchStatusResponse:
        if not batch_id:
            raise HTTPException(status_code=400, detail="batch_id is required")
        with _domain_errors():
            return await batch_status_handler(batch_id=batch_id, api_deps=_deps())

    @app.get("/bulk/export", responses=ERROR_RESPONSES, tags=["Batches"])
    async def export_results(
        batch_id: str | None = Query(default=None),
        export_format: str = Query(default="csv", alias="format"),
    ) -> Response:
        if not batch_id:
            raise HTTPException(status_code=400, detail="batch_id is required")
        with _domain_errors():
            payload = await export_results_handler(batch_id=batch_id, export_format=export_format, api_deps=_deps())
        return Response(
            content=payload.content,
            media_type=payload.media_type,
            headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
        )

    @app.post("/context/courses", response_model=CourseResponse, responses=ERROR_RESPONSES, tags=["Context"])
    async def create_course(request: CreateCourseRequest) -> CourseResponse:
        with _domain_errors():
            return await create_course_handler(request=request, api_deps=_deps())

    @app.post("/context/assignments", response_model=AssignmentResponse, responses=ERROR_RESPONSES, tags=["Context"])
    async def create_assignment(request: CreateAssignmentRequest) -> AssignmentResponse:
        with _domain_errors():
            return await create_assignment_handler(request=request, api_deps=_deps())

    @app.post("/context/rubrics", response_model=RubricResponse, responses=ERROR_RESPONSES, tags=["Context"])
    async def create_rubric(request: CreateRubricRequest) -> RubricResponse:
        with _domain_errors():
            return await create_rubric_handler(request=request, api_deps=_deps())

    @app.patch("/context/rubrics", response_model=RubricResponse, responses=ERROR_RESPONSES, tags=["Context"])
    async def update_rubric(request: UpdateRubricRequest) -> RubricResponse:
        with _domain_errors():
            return await update_rubric_handler(request=request, api_deps=_deps())

    @app.post("/context/documents", response_model=DocumentResponse, responses=ERROR_RESPONSES, tags=["Context"])
    async def upload_document(
        file: UploadFile = File(...),
        course_id: str = Form(..., min_length=1),
        doc_type: str = Form(default="other", alias="type"),
        assignment_id: str | None = Form(default=None),
    ) -> DocumentResponse:
        file_bytes = await file.read()
        filename = file.filename or "document.txt"
        with _domain_errors():
            return await upload_document_handler(
                filename=filename,
                payload=file_bytes,
                course_id=course_id,
                doc_type=doc_type,
                assignment_id=assignment_id,
                api_deps=_deps(),
            )

    @app.get(
        "/context/bundles",
        response_model=BundleResponse | GradingContextResponse,
        responses=ERROR_RESPONSES,
        tags=["Context"],
    )
    async def get_bundle(
        bundle_id: str | None = Query(default=None),
        assignment_id: str | None = Query(default=None),
        version_id: str | None = Query(default=None),
        versions: bool = Query(default=False),
    ) -> BundleResponse | GradingContextResponse:
        with _domain_errors():
            if version_id:
                return await get_grading_context_handler(version_id=version_id, api_deps=_deps())
            return await get_bundle_handler(
                bundle_id=bundle_id,
                assignment_id=assignment_id,
                include_versions=versions,
                api_deps=_deps(),
            )

    @app.post(
        "/context/bundles/snapshot",
        response_model=SnapshotResponse,
        responses=ERROR_RESPONSES,
        tags=["Context"],
    )
    async def snapshot_bundle(request: SnapshotRequest) -> SnapshotResponse:
        with _domain_errors():
            return await snapshot_bundle_handler(request=request, api_deps=_deps())

    return app
