import logging
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from product_import.api.deps import get_import_queue_service, get_import_runner
from product_import.api.main import create_app
from product_import.application.services.import_runner import RunResult
from product_import.boundary.db.CRUD.downstream_crud import DownstreamDeleteResult
from product_import.boundary.db.CRUD.import_item_crud import QueueStats, RequeueResult
from product_import.boundary.db.models.import_item_model import ImportItemModel, ImportItemStatus
from product_import.boundary.db.models.import_job_model import (
    CaptionImageInput,
    ExistingBehavior,
    ImportJobModel,
    ImportJobStatus,
)
from product_import.core.exceptions import JobNotFoundError, QueueOperationError, ValidationError

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_job(job_id=None, status=ImportJobStatus.PENDING, **counts) -> ImportJobModel:
    values = {
        "total_count": 0,
        "invalid_count": 0,
        "success_count": 0,
        "failed_count": 0,
        "skipped_count": 0,
    }
    values.update(counts)
    return ImportJobModel(
        id=job_id or uuid.uuid4(),
        status=status,
        existing_behavior=ExistingBehavior.SKIP,
        do_text_embedding=True,
        do_image_captions=True,
        do_image_vectors=True,
        caption_image_input=CaptionImageInput.URL,
        completed_at=None,
        created_at=NOW,
        updated_at=NOW,
        **values,
    )


def make_item(job_id, row_index=2, status=ImportItemStatus.FAILED) -> ImportItemModel:
    return ImportItemModel(
        id=uuid.uuid4(),
        job_id=job_id,
        row_index=row_index,
        city_code="13101",
        product_id=f"P{row_index}",
        product_json="{}",
        status=status,
        attempt_count=1,
        next_retry_at=None,
        claimed_at=None,
        last_error="product_json is not valid JSON",
        error_code="invalid_payload",
        current_step="failed",
        current_step_detail=None,
        updated_at=NOW,
    )


@pytest.fixture
def client(mock_queue_service):
    app = create_app()
    app.dependency_overrides[get_import_queue_service] = lambda: mock_queue_service
    return TestClient(app)


@pytest.fixture
def mock_runner():
    return AsyncMock()


def test_create_job_without_items(client, mock_queue_service):
    job = make_job()
    mock_queue_service.create_job.return_value = job

    response = client.post("/api/v1/import-jobs", json={"existingBehavior": "delete_then_insert", "doImageVectors": False})

    assert response.status_code == 201
    data = response.json()
    assert data["id"] == str(job.id)
    assert data["status"] == "pending"
    assert data["processed_count"] == 0
    kwargs = mock_queue_service.create_job.call_args.kwargs
    assert kwargs["existing_behavior"] == ExistingBehavior.DELETE_THEN_INSERT
    assert kwargs["do_image_vectors"] is False
    assert kwargs["do_text_embedding"] is None
    mock_queue_service.create_job_with_items.assert_not_called()


def test_create_job_with_items(client, mock_queue_service):
    mock_queue_service.create_job_with_items.return_value = make_job(total_count=2, invalid_count=1, failed_count=1)

    response = client.post(
        "/api/v1/import-jobs",
        json={
            "items": [
                {"rowIndex": 2, "productId": "P1", "productJson": '{"id": "P1", "name": "Tea"}'},
                {"rowIndex": 3, "productId": "P2", "productJson": ""},
            ]
        },
    )

    assert response.status_code == 201
    assert response.json()["processed_count"] == 1
    rows = mock_queue_service.create_job_with_items.call_args.args[0]
    assert [row["status"] for row in rows] == ["pending", "failed"]


def test_create_job_rejects_unknown_policy(client, mock_queue_service):
    response = client.post("/api/v1/import-jobs", json={"existing_behavior": "replace"})

    assert response.status_code == 400
    mock_queue_service.create_job.assert_not_called()


def test_create_job_rejects_too_many_items(client, mock_queue_service):
    mock_queue_service.settings = mock_queue_service.settings.model_copy(update={"max_append_items": 1})
    items = [{"row_index": index, "product_json": "{}"} for index in (1, 2)]

    response = client.post("/api/v1/import-jobs", json={"items": items})

    assert response.status_code == 400
    assert "max 1" in response.json()["detail"]


def test_upload_csv(client, mock_queue_service):
    mock_queue_service.create_job_with_items.return_value = make_job(total_count=1)
    content = 'city_code,product_id,product_json\n13101,P1,"{""id"": ""P1"", ""name"": ""Tea""}"\n'

    response = client.post(
        "/api/v1/import-jobs/upload",
        files={"file": ("products.csv", content.encode("utf-8"), "text/csv")},
        data={"caption_image_input": "data_url", "do_image_vectors": "false"},
    )

    assert response.status_code == 201
    call = mock_queue_service.create_job_with_items.call_args
    assert call.args[0][0]["product_id"] == "P1"
    assert call.kwargs["caption_image_input"] == CaptionImageInput.DATA_URL
    assert call.kwargs["do_image_vectors"] is False


def test_upload_csv_logs_created_job(client, mock_queue_service, caplog):
    job = make_job(total_count=1)
    mock_queue_service.create_job_with_items.return_value = job
    content = 'city_code,product_id,product_json\n13101,P1,"{""id"": ""P1"", ""name"": ""Tea""}"\n'

    with caplog.at_level(logging.INFO, logger="product_import.api.routers.import_jobs"):
        response = client.post(
            "/api/v1/import-jobs/upload",
            files={"file": ("products.csv", content.encode("utf-8"), "text/csv")},
        )

    assert response.status_code == 201
    [record] = [r for r in caplog.records if "CSV import job created" in r.getMessage()]
    assert record.getMessage() == "product_import.api.routers.import_jobs:upload_import_job - CSV import job created"
    assert record.job_id == str(job.id)
    assert record.rows == 1


def test_upload_rejects_non_utf8(client, mock_queue_service):
    response = client.post(
        "/api/v1/import-jobs/upload",
        files={"file": ("products.csv", "city_code\n東京".encode("shift_jis"), "text/csv")},
    )

    assert response.status_code == 400


def test_upload_rejects_empty_csv(client, mock_queue_service):
    response = client.post(
        "/api/v1/import-jobs/upload",
        files={"file": ("products.csv", b"city_code,product_id,product_json\n", "text/csv")},
    )

    assert response.status_code == 400


def test_list_jobs(client, mock_queue_service):
    mock_queue_service.list_jobs.return_value = [make_job(), make_job()]

    response = client.get("/api/v1/import-jobs?limit=2")

    assert response.status_code == 200
    assert len(response.json()) == 2
    mock_queue_service.list_jobs.assert_called_once_with(2)


def test_get_job_detail(client, mock_queue_service, job_id):
    mock_queue_service.get_job_detail.return_value = {
        "job": make_job(job_id, status=ImportJobStatus.PROCESSING),
        "queue_stats": QueueStats(pending_ready_count=3, failed_count=1),
        "failed_items": [make_item(job_id)],
        "processing_items": [],
    }

    response = client.get(f"/api/v1/import-jobs/{job_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["job"]["status"] == "processing"
    assert data["queue_stats"]["pending_ready_count"] == 3
    assert data["failed_items"][0]["error_code"] == "invalid_payload"
    assert data["processing_items"] == []


def test_get_job_not_found(client, mock_queue_service, job_id):
    mock_queue_service.get_job_detail.side_effect = JobNotFoundError(str(job_id))

    response = client.get(f"/api/v1/import-jobs/{job_id}")

    assert response.status_code == 404
    assert "not found" in response.json()["detail"].lower()


def test_preview_items_with_status_filter(client, mock_queue_service, job_id):
    mock_queue_service.items_preview.return_value = [make_item(job_id)]

    response = client.get(f"/api/v1/import-jobs/{job_id}/items?status=failed&limit=5")

    assert response.status_code == 200
    assert response.json()[0]["status"] == "failed"
    mock_queue_service.items_preview.assert_called_once_with(job_id, limit=5, status=ImportItemStatus.FAILED)


def test_preview_items_rejects_unknown_status(client, mock_queue_service, job_id):
    response = client.get(f"/api/v1/import-jobs/{job_id}/items?status=done")

    assert response.status_code == 422


def test_append_items(client, mock_queue_service, job_id):
    mock_queue_service.append_items.return_value = 1

    response = client.post(
        f"/api/v1/import-jobs/{job_id}/items",
        json={"items": [{"row_index": 4, "product_json": '{"id": "P4", "name": "Soap"}'}]},
    )

    assert response.status_code == 200
    assert response.json() == {"job_id": str(job_id), "inserted": 1}


def test_append_items_rejects_empty_list(client, mock_queue_service, job_id):
    response = client.post(f"/api/v1/import-jobs/{job_id}/items", json={"items": []})

    assert response.status_code == 400
    mock_queue_service.append_items.assert_not_called()


def test_append_items_maps_store_errors(client, mock_queue_service, job_id):
    mock_queue_service.append_items.side_effect = QueueOperationError("append_items failed", operation="append_items")

    response = client.post(f"/api/v1/import-jobs/{job_id}/items", json={"items": [{"row_index": 1, "product_json": "{}"}]})

    assert response.status_code == 503


def test_run_job(client, mock_runner, job_id):
    mock_runner.run.return_value = RunResult(
        job=make_job(job_id, status=ImportJobStatus.COMPLETED, total_count=2, success_count=2),
        processed=2,
        retried=0,
        released=0,
        time_budget_ms=5000,
    )
    client.app.dependency_overrides[get_import_runner] = lambda: mock_runner

    response = client.post(f"/api/v1/import-jobs/{job_id}/run", json={"limit": 3, "timeBudgetMs": 5000})

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 2
    assert data["unreported"] == 0
    assert data["job"]["status"] == "completed"
    mock_runner.run.assert_called_once_with(job_id, limit=3, time_budget_ms=5000)


def test_run_job_without_body(client, mock_runner, job_id):
    mock_runner.run.return_value = RunResult(job=make_job(job_id), processed=0, retried=0, released=0, time_budget_ms=10_000)
    client.app.dependency_overrides[get_import_runner] = lambda: mock_runner

    response = client.post(f"/api/v1/import-jobs/{job_id}/run")

    assert response.status_code == 200
    mock_runner.run.assert_called_once_with(job_id, limit=None, time_budget_ms=None)


def test_requeue(client, mock_queue_service, job_id):
    mock_queue_service.requeue_items.return_value = RequeueResult(counts={"failed": 2, "skipped": 0})
    mock_queue_service.get_job.return_value = make_job(job_id)

    response = client.post(f"/api/v1/import-jobs/{job_id}/requeue", json={"statuses": ["failed", "skipped"]})

    assert response.status_code == 200
    assert response.json()["total"] == 2
    assert response.json()["requeued"] == {"failed": 2, "skipped": 0}


def test_requeue_rejects_open_status(client, mock_queue_service, job_id):
    response = client.post(f"/api/v1/import-jobs/{job_id}/requeue", json={"statuses": ["pending"]})

    assert response.status_code == 422


def test_add_processing_builds_statuses_from_flags(client, mock_queue_service, job_id):
    mock_queue_service.add_processing.return_value = RequeueResult(counts={"failed": 1, "success": 3})
    mock_queue_service.get_job.return_value = make_job(job_id)

    response = client.post(
        f"/api/v1/import-jobs/{job_id}/add-processing",
        json={"doImageCaptions": True, "includeFailed": True, "includeSkipped": False},
    )

    assert response.status_code == 200
    call = mock_queue_service.add_processing.call_args
    assert call.args == (job_id, [ImportItemStatus.FAILED, ImportItemStatus.SUCCESS])
    assert call.kwargs["do_image_captions"] is True
    assert call.kwargs["do_text_embedding"] is None


def test_add_processing_maps_validation_errors(client, mock_queue_service, job_id):
    mock_queue_service.add_processing.side_effect = ValidationError("No additional processing selected", field="flags")

    response = client.post(f"/api/v1/import-jobs/{job_id}/add-processing", json={})

    assert response.status_code == 400
    assert response.json()["detail"] == "No additional processing selected"


def test_skip_items(client, mock_queue_service, job_id):
    item_id = uuid.uuid4()
    mock_queue_service.mark_skipped_bulk.return_value = 1
    mock_queue_service.get_job.return_value = make_job(job_id, skipped_count=1)

    response = client.post(f"/api/v1/import-jobs/{job_id}/skip", json={"itemIds": [str(item_id)]})

    assert response.status_code == 200
    assert response.json()["skipped"] == 1
    mock_queue_service.mark_skipped_bulk.assert_called_once_with(job_id, [item_id], reason="skipped by operator")


def test_reconcile(client, mock_queue_service, job_id):
    mock_queue_service.requeue_stale.return_value = 2
    mock_queue_service.get_job.return_value = make_job(job_id)

    response = client.post(f"/api/v1/import-jobs/{job_id}/reconcile", json={"staleSeconds": 300})

    assert response.status_code == 200
    assert response.json()["requeued"] == 2
    mock_queue_service.requeue_stale.assert_called_once_with(job_id, 300)


def test_delete_job_with_downstream(client, mock_queue_service, job_id):
    mock_queue_service.delete_job.return_value = DownstreamDeleteResult(product_ids=2, deleted_text=3, deleted_images=4)

    response = client.delete(f"/api/v1/import-jobs/{job_id}?delete_downstream=true")

    assert response.status_code == 200
    assert response.json() == {
        "deleted": True,
        "downstream": {"product_ids": 2, "deleted_text": 3, "deleted_images": 4},
    }
    mock_queue_service.delete_job.assert_called_once_with(job_id, delete_downstream=True)


def test_delete_job_not_found(client, mock_queue_service, job_id):
    mock_queue_service.delete_job.side_effect = JobNotFoundError(str(job_id))

    response = client.delete(f"/api/v1/import-jobs/{job_id}")

    assert response.status_code == 404
