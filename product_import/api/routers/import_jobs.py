"""
Import job API endpoints.

Routes:
- POST /import-jobs - Create job (JSON, optional first items)
- POST /import-jobs/upload - Create job from a CSV upload
- GET /import-jobs - List recent jobs
- GET /import-jobs/{id} - Job with queue stats and previews
- GET /import-jobs/{id}/items - Item preview
- POST /import-jobs/{id}/items - Append items
- POST /import-jobs/{id}/run - Run one worker pass
- POST /import-jobs/{id}/requeue - Requeue resolved items
- POST /import-jobs/{id}/add-processing - Enable steps and requeue
- POST /import-jobs/{id}/skip - Skip items in bulk
- POST /import-jobs/{id}/reconcile - Reclaim stale leases
- DELETE /import-jobs/{id} - Delete job (optionally downstream rows)

Dependencies: product_import.application.services, product_import.models
System role: Import queue HTTP API
"""

import logging
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from product_import.api.deps import get_import_queue_service, get_import_runner
from product_import.application.parsers import (
    parse_caption_image_input,
    parse_csv,
    parse_existing_behavior,
    parse_json_items,
)
from product_import.application.services import ImportQueueService, ImportRunner
from product_import.boundary.db.models.import_item_model import ImportItemStatus
from product_import.core.exceptions import (
    JobNotFoundError,
    ProductImportException,
    QueueOperationError,
    ValidationError,
)
from product_import.models.import_job import (
    AddProcessingRequest,
    AppendItemsRequest,
    AppendItemsResponse,
    CreateImportJobRequest,
    DeleteJobResponse,
    DownstreamDeleteResponse,
    ImportItemResponse,
    ImportJobDetailResponse,
    ImportJobResponse,
    QueueStatsResponse,
    ReconcileRequest,
    ReconcileResponse,
    RequeueRequest,
    RequeueResponse,
    RunJobRequest,
    RunJobResponse,
    SkipItemsRequest,
    SkipItemsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import-jobs", tags=["import-jobs"])


def _http_error(error: ProductImportException) -> HTTPException:
    """Map a domain error to its HTTP status."""
    if isinstance(error, JobNotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, QueueOperationError):
        return HTTPException(status_code=503, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)


def _check_append_size(count: int, service: ImportQueueService) -> None:
    limit = service.settings.max_append_items
    if count > limit:
        raise HTTPException(status_code=400, detail=f"Too many items (max {limit} per call)")


@router.post("", response_model=ImportJobResponse, status_code=201)
async def create_import_job(
    request: CreateImportJobRequest,
    service: ImportQueueService = Depends(get_import_queue_service),
) -> ImportJobResponse:
    """
    Create an import job, optionally with its first items.

    Raises:
        HTTPException(400): Invalid policy, rows, or too many items
    """
    _check_append_size(len(request.items), service)
    try:
        policy = {
            "existing_behavior": parse_existing_behavior(request.existing_behavior),
            "do_text_embedding": request.do_text_embedding,
            "do_image_captions": request.do_image_captions,
            "do_image_vectors": request.do_image_vectors,
            "caption_image_input": parse_caption_image_input(request.caption_image_input),
        }
        if request.items:
            submission = parse_json_items(request.items)
            job = await service.create_job_with_items(submission.rows, **policy)
        else:
            job = await service.create_job(**policy)
    except ProductImportException as e:
        raise _http_error(e)
    return ImportJobResponse.model_validate(job)


@router.post("/upload", response_model=ImportJobResponse, status_code=201)
async def upload_import_job(
    file: UploadFile = File(...),
    existing_behavior: str | None = Form(default=None),
    do_text_embedding: bool | None = Form(default=None),
    do_image_captions: bool | None = Form(default=None),
    do_image_vectors: bool | None = Form(default=None),
    caption_image_input: str | None = Form(default=None),
    service: ImportQueueService = Depends(get_import_queue_service),
) -> ImportJobResponse:
    """
    Create a job from a CSV file (columns city_code, product_id, product_json).

    Raises:
        HTTPException(400): Unreadable CSV, no data rows or invalid policy
    """
    content = await file.read()
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded")

    try:
        submission = parse_csv(text)
        job = await service.create_job_with_items(
            submission.rows,
            existing_behavior=parse_existing_behavior(existing_behavior),
            do_text_embedding=do_text_embedding,
            do_image_captions=do_image_captions,
            do_image_vectors=do_image_vectors,
            caption_image_input=parse_caption_image_input(caption_image_input),
        )
    except ProductImportException as e:
        raise _http_error(e)

    logger.info(
        "%s:upload_import_job - CSV import job created",
        __name__,
        extra={"job_id": str(job.id), "file_name": file.filename, "rows": len(submission.rows)},
    )
    return ImportJobResponse.model_validate(job)


@router.get("", response_model=list[ImportJobResponse])
async def list_import_jobs(
    limit: int = Query(default=20, ge=1, le=100),
    service: ImportQueueService = Depends(get_import_queue_service),
) -> list[ImportJobResponse]:
    """List the newest jobs first."""
    jobs = await service.list_jobs(limit)
    return [ImportJobResponse.model_validate(job) for job in jobs]


@router.get("/{job_id}", response_model=ImportJobDetailResponse)
async def get_import_job(
    job_id: UUID,
    service: ImportQueueService = Depends(get_import_queue_service),
) -> ImportJobDetailResponse:
    """
    Get a job with queue stats and failed/processing previews.

    Raises:
        HTTPException(404): Job not found
    """
    try:
        detail = await service.get_job_detail(job_id)
    except ProductImportException as e:
        raise _http_error(e)
    return ImportJobDetailResponse(
        job=ImportJobResponse.model_validate(detail["job"]),
        queue_stats=QueueStatsResponse.model_validate(detail["queue_stats"]),
        failed_items=[ImportItemResponse.model_validate(item) for item in detail["failed_items"]],
        processing_items=[ImportItemResponse.model_validate(item) for item in detail["processing_items"]],
    )


@router.get("/{job_id}/items", response_model=list[ImportItemResponse])
async def preview_import_items(
    job_id: UUID,
    limit: int = Query(default=10, ge=1, le=200),
    status: Literal["pending", "processing", "success", "failed", "skipped"] | None = Query(default=None),
    service: ImportQueueService = Depends(get_import_queue_service),
) -> list[ImportItemResponse]:
    """
    Preview a job's items in row order.

    Raises:
        HTTPException(404): Job not found
    """
    try:
        items = await service.items_preview(
            job_id,
            limit=limit,
            status=ImportItemStatus(status) if status else None,
        )
    except ProductImportException as e:
        raise _http_error(e)
    return [ImportItemResponse.model_validate(item) for item in items]


@router.post("/{job_id}/items", response_model=AppendItemsResponse)
async def append_import_items(
    job_id: UUID,
    request: AppendItemsRequest,
    service: ImportQueueService = Depends(get_import_queue_service),
) -> AppendItemsResponse:
    """
    Append items to an existing job.

    Raises:
        HTTPException(400): Empty, too many or invalid rows
        HTTPException(404): Job not found
    """
    if not request.items:
        raise HTTPException(status_code=400, detail="No items")
    _check_append_size(len(request.items), service)
    try:
        submission = parse_json_items(request.items)
        inserted = await service.append_items(job_id, submission.rows)
    except ProductImportException as e:
        raise _http_error(e)
    return AppendItemsResponse(job_id=job_id, inserted=inserted)


@router.post("/{job_id}/run", response_model=RunJobResponse)
async def run_import_job(
    job_id: UUID,
    request: RunJobRequest | None = None,
    runner: ImportRunner = Depends(get_import_runner),
) -> RunJobResponse:
    """
    Run one time-budgeted worker pass.

    Callers poll this endpoint until the job reports completed.

    Raises:
        HTTPException(404): Job not found
        HTTPException(503): Enrichment not configured or store unavailable
    """
    request = request or RunJobRequest()
    try:
        result = await runner.run(job_id, limit=request.limit, time_budget_ms=request.time_budget_ms)
    except ProductImportException as e:
        raise _http_error(e)
    return RunJobResponse(
        job=ImportJobResponse.model_validate(result.job),
        processed=result.processed,
        retried=result.retried,
        released=result.released,
        time_budget_ms=result.time_budget_ms,
        unreported=result.unreported,
    )


@router.post("/{job_id}/requeue", response_model=RequeueResponse)
async def requeue_import_items(
    job_id: UUID,
    request: RequeueRequest,
    service: ImportQueueService = Depends(get_import_queue_service),
) -> RequeueResponse:
    """
    Move failed/skipped/success items back to pending.

    Raises:
        HTTPException(400): Invalid statuses
        HTTPException(404): Job not found
    """
    try:
        result = await service.requeue_items(job_id, request.statuses)
        job = await service.get_job(job_id)
    except ProductImportException as e:
        raise _http_error(e)
    return RequeueResponse(requeued=result.counts, total=result.total, job=ImportJobResponse.model_validate(job))


@router.post("/{job_id}/add-processing", response_model=RequeueResponse)
async def add_processing(
    job_id: UUID,
    request: AddProcessingRequest,
    service: ImportQueueService = Depends(get_import_queue_service),
) -> RequeueResponse:
    """
    Enable additional enrichment steps and requeue resolved items.

    Raises:
        HTTPException(400): No step or no status selected, invalid policy
        HTTPException(404): Job not found
    """
    statuses = []
    if request.include_failed:
        statuses.append(ImportItemStatus.FAILED)
    if request.include_skipped:
        statuses.append(ImportItemStatus.SKIPPED)
    if request.include_success:
        statuses.append(ImportItemStatus.SUCCESS)

    try:
        existing_behavior = (
            parse_existing_behavior(request.existing_behavior) if request.existing_behavior else None
        )
        result = await service.add_processing(
            job_id,
            statuses,
            do_text_embedding=request.do_text_embedding or None,
            do_image_captions=request.do_image_captions or None,
            do_image_vectors=request.do_image_vectors or None,
            existing_behavior=existing_behavior,
            caption_image_input=parse_caption_image_input(request.caption_image_input),
        )
        job = await service.get_job(job_id)
    except ProductImportException as e:
        raise _http_error(e)
    return RequeueResponse(requeued=result.counts, total=result.total, job=ImportJobResponse.model_validate(job))


@router.post("/{job_id}/skip", response_model=SkipItemsResponse)
async def skip_import_items(
    job_id: UUID,
    request: SkipItemsRequest,
    service: ImportQueueService = Depends(get_import_queue_service),
) -> SkipItemsResponse:
    """
    Skip pending or processing items in bulk.

    Raises:
        HTTPException(404): Job not found
    """
    try:
        skipped = await service.mark_skipped_bulk(job_id, request.item_ids, reason="skipped by operator")
        job = await service.get_job(job_id)
    except ProductImportException as e:
        raise _http_error(e)
    return SkipItemsResponse(skipped=skipped, job=ImportJobResponse.model_validate(job))


@router.post("/{job_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_import_job(
    job_id: UUID,
    request: ReconcileRequest | None = None,
    service: ImportQueueService = Depends(get_import_queue_service),
) -> ReconcileResponse:
    """
    Return expired leases to pending.

    Raises:
        HTTPException(404): Job not found
    """
    request = request or ReconcileRequest()
    try:
        await service.get_job(job_id)
        requeued = await service.requeue_stale(job_id, request.stale_seconds)
        job = await service.get_job(job_id)
    except ProductImportException as e:
        raise _http_error(e)
    return ReconcileResponse(requeued=requeued, job=ImportJobResponse.model_validate(job))


@router.delete("/{job_id}", response_model=DeleteJobResponse)
async def delete_import_job(
    job_id: UUID,
    delete_downstream: bool = Query(default=False),
    service: ImportQueueService = Depends(get_import_queue_service),
) -> DeleteJobResponse:
    """
    Delete a job and its items; optionally delete the downstream rows of its products.

    Raises:
        HTTPException(404): Job not found
    """
    try:
        downstream = await service.delete_job(job_id, delete_downstream=delete_downstream)
    except ProductImportException as e:
        raise _http_error(e)
    return DeleteJobResponse(
        deleted=True,
        downstream=DownstreamDeleteResponse(
            product_ids=downstream.product_ids,
            deleted_text=downstream.deleted_text,
            deleted_images=downstream.deleted_images,
        )
        if downstream
        else None,
    )
