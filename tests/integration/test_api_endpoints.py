from __future__ import annotations

import csv
import io

from fastapi.testclient import TestClient
import pytest

from bulk_grader.api.http_app import build_app
from bulk_grader.roles import validate_role
from bulk_grader.services.bootstrap import RuntimeContainer, build_runtime_container
from tests.integration.api_seed import seed_bundle_version, upload_submission


@pytest.fixture
def container(monkeypatch: pytest.MonkeyPatch) -> RuntimeContainer:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("GRADER_DISPATCH_URL", raising=False)
    return build_runtime_container(validate_role("api"))


def _client(container: RuntimeContainer) -> TestClient:
    app = build_app(
        role="api",
        run_id="integration-api",
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )
    return TestClient(app)


@pytest.mark.integration
def test_health_and_ready(container: RuntimeContainer) -> None:
    with _client(container) as client:
        health = client.get("/health")
        ready = client.get("/ready")

    assert health.json() == {"status": "ok", "role": "api", "mode": "bulk"}
    body = ready.json()
    assert body["worker_loop_enabled"] is False
    assert body["worker_loop_ready"] is True
    assert body["queue_length"] == 0
    assert body["inflight_dispatches"] == 0


@pytest.mark.integration
def test_batch_upload_process_status_and_export_flow(container: RuntimeContainer) -> None:
    with _client(container) as client:
        create_response = client.post("/bulk/batches", json={"name": "Week 3", "rubric_criteria": "Clarity"})
        assert create_response.status_code == 200
        batch_id = create_response.json()["id"]

        expected_response = client.post(f"/bulk/batches/{batch_id}/expected-uploads", json={"expected_count": 2})
        assert expected_response.json()["expected_upload_count"] == 2

        first_id = upload_submission(client=client, container=container, batch_id=batch_id)
        second_id = upload_submission(
            client=client,
            container=container,
            batch_id=batch_id,
            filename="Sam_Lee_Final.mp4",
        )

        duplicate = client.post(
            "/bulk/enqueue",
            json={
                "batch_id": batch_id,
                "submission_id": first_id,
                "file_key": f"batches/{batch_id}/{first_id}.mp4",
                "original_filename": "Jane_Doe_Presentation.mp4",
            },
        )
        assert duplicate.status_code == 200
        assert duplicate.json()["created"] is False

        waiting = client.get("/bulk/status", params={"batch_id": batch_id}).json()
        assert waiting["status"] == "not_started"
        assert waiting["total_count"] == 2
        assert waiting["queue_length"] == 2
        assert waiting["expected_upload_count"] is None

        processed = client.post("/bulk/process-batch", json={"batch_id": batch_id})
        assert processed.status_code == 200
        assert processed.json()["processed"] == 2

        status = client.get("/bulk/status", params={"batch_id": batch_id}).json()
        assert status["status"] == "completed"
        assert status["graded_count"] == 2
        assert status["batch_status"] == "completed"
        assert status["stats"]["ready"] == 2
        assert {item["student_name"] for item in status["submissions"]} == {"Jane Doe", "Sam Lee"}

        listed = client.get("/bulk/submissions", params={"batch_id": batch_id}).json()
        assert {item["id"] for item in listed["items"]} == {first_id, second_id}

        detail = client.get(f"/bulk/submissions/{first_id}").json()
        assert detail["submission"]["status"] == "ready"
        assert detail["submission"]["rubric_evaluation"]["overall_score"] == 70.0
        assert detail["download_url"].startswith("https://storage.invalid/")

        export_response = client.get("/bulk/export", params={"batch_id": batch_id, "format": "csv"})
        assert export_response.status_code == 200
        assert export_response.headers["content-disposition"] == 'attachment; filename="Week_3_results.csv"'
        rows = list(csv.DictReader(io.StringIO(export_response.text)))
        assert [row["Overall Score"] for row in rows] == ["70.0", "70.0"]

        batch = client.get(f"/bulk/batches/{batch_id}").json()
        assert batch["processed_count"] == 2
        assert [item["id"] for item in client.get("/bulk/batches").json()["items"]] == [batch_id]

        deleted = client.delete(f"/bulk/batches/{batch_id}")
        assert deleted.json() == {"success": True, "batch_id": batch_id}
        assert client.get(f"/bulk/batches/{batch_id}").status_code == 404


@pytest.mark.integration
def test_process_now_fans_out_and_internal_process_one(container: RuntimeContainer) -> None:
    with _client(container) as client:
        batch_id = client.post("/bulk/batches", json={"name": "Fanout"}).json()["id"]
        for idx in range(5):
            upload_submission(client=client, container=container, batch_id=batch_id, filename=f"student_{idx}.mp4")

        triggered = client.post("/bulk/process-now", params={"batch_id": batch_id}).json()
        assert triggered["queue_length"] == 5
        assert triggered["dispatched"] == 3
        assert triggered["processed"] == 3

        assert client.post("/internal/process-one").json() == {"processed": 1}
        assert client.post("/internal/process-one").json() == {"processed": 1}
        assert client.post("/internal/process-one").json() == {"processed": 0}

        empty = client.post("/bulk/process-now").json()
        assert empty["dispatched"] == 0


@pytest.mark.integration
def test_regrade_endpoints(container: RuntimeContainer) -> None:
    with _client(container) as client:
        _, bundle_id, version_id = seed_bundle_version(client=client)
        batch_id = client.post("/bulk/batches", json={"name": "Regrade", "bundle_version_id": version_id}).json()["id"]
        submission_id = upload_submission(client=client, container=container, batch_id=batch_id)
        client.post("/bulk/process-batch", json={"batch_id": batch_id})

        unknown = client.post(
            "/bulk/regrade",
            json={"submission_ids": [submission_id], "bundle_version_id": "bv_01HZZZZZZZZZZZZZZZZZZZZZZZ"},
        )
        assert unknown.status_code == 404
        assert client.get(f"/bulk/submissions/{submission_id}").json()["submission"]["status"] == "ready"

        regrade = client.post(
            "/bulk/regrade",
            json={"submission_id": submission_id, "submission_ids": ["sub_missing"], "bundle_version_id": version_id},
        )
        assert regrade.status_code == 200
        body = regrade.json()
        assert body["queued_count"] == 1
        assert body["message"] == "1 submission(s) queued for re-grading with context v1"
        assert {item["submission_id"]: item["error"] for item in body["results"]} == {
            "sub_missing": "Not found",
            submission_id: None,
        }
        reset = client.get(f"/bulk/submissions/{submission_id}").json()["submission"]
        assert reset["status"] == "queued"
        assert reset["rubric_evaluation"] is None

        versions = client.get("/bulk/regrade", params={"bundle_id": bundle_id}).json()
        assert [item["version"] for item in versions["versions"]] == [1]
        assert versions["versions"][0]["rubric_name"] == "Pitch Rubric"

        assert client.post("/bulk/regrade", json={}).status_code == 400


@pytest.mark.integration
def test_context_endpoints(container: RuntimeContainer) -> None:
    with _client(container) as client:
        assignment_id, bundle_id, version_id = seed_bundle_version(client=client)
        course_id = client.get("/context/bundles", params={"bundle_id": bundle_id}).json()["bundle"]["course_id"]

        document = client.post(
            "/context/documents",
            files={"file": ("reading.txt", b"Carbon dividends return revenue to households.", "text/plain")},
            data={"course_id": course_id, "type": "reading"},
        )
        assert document.status_code == 200
        assert document.json()["word_count"] == 6
        assert document.json()["type"] == "reading"

        unsupported = client.post(
            "/context/documents",
            files={"file": ("slides.pptx", b"binary", "application/octet-stream")},
            data={"course_id": course_id},
        )
        assert unsupported.status_code == 400

        rubric_id = client.get("/context/bundles", params={"assignment_id": assignment_id}).json()["bundle"][
            "rubric_id"
        ]
        patched = client.patch("/context/rubrics", json={"rubric_id": rubric_id, "name": "Pitch Rubric v2"})
        assert patched.json()["rubric"]["version"] == 2

        second = client.post("/context/bundles/snapshot", json={"bundle_id": bundle_id}).json()
        assert second["version"] == 2

        first_context = client.get("/context/bundles", params={"version_id": version_id}).json()
        second_context = client.get("/context/bundles", params={"version_id": second["id"]}).json()
        assert '"name": "Pitch Rubric"' in first_context["rubric_json"]
        assert '"name": "Pitch Rubric v2"' in second_context["rubric_json"]

        history = client.get("/context/bundles", params={"bundle_id": bundle_id, "versions": "true"}).json()
        assert [item["version"] for item in history["versions"]] == [2, 1]

        assert client.get("/context/bundles").status_code == 400
        assert client.get("/context/bundles", params={"version_id": "bv_missing"}).status_code == 404


@pytest.mark.integration
def test_validation_and_not_found_responses(container: RuntimeContainer) -> None:
    with _client(container) as client:
        batch_id = client.post("/bulk/batches", json={"name": "Errors"}).json()["id"]

        assert client.post("/bulk/batches", json={"name": ""}).status_code == 422
        assert client.post("/bulk/batches", json={"name": "x", "bundle_version_id": "bv_missing"}).status_code == 404
        assert (
            client.post(
                "/bulk/presign",
                json={"batch_id": batch_id, "filename": "notes.pdf", "content_type": "application/pdf"},
            ).status_code
            == 400
        )
        assert client.get("/bulk/status").status_code == 400
        assert client.get("/bulk/submissions").status_code == 400
        assert client.get("/bulk/export").status_code == 400
        assert client.get("/bulk/status", params={"batch_id": "bat_missing"}).status_code == 404
        assert client.get("/bulk/submissions/sub_missing").status_code == 404
        assert client.get("/bulk/export", params={"batch_id": batch_id, "format": "xlsx"}).status_code == 400
        assert client.get("/bulk/presign", params={"key": "batches/x/y.mp4"}).json()["url"].startswith("https://")
        assert client.get("/bulk/presign", params={"key": "batches/x/y.mp4", "action": "upload"}).status_code == 400


@pytest.mark.integration
def test_routes_fail_closed_without_dependencies() -> None:
    app = build_app(role="api", run_id="no-deps")
    with TestClient(app) as client:
        response = client.get("/bulk/batches")
        ready = client.get("/ready")

    assert response.status_code == 503
    assert ready.json()["queue_length"] == 0
