"""
API tests for the analysis endpoints (JSON, SSE stream and job enqueueing).
"""
import json
import os
import sys
from types import SimpleNamespace

from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.main import app  # noqa: E402
from tests.statement_fixtures import (  # noqa: E402
    NETFLIX_CSV,
    STATEMENT_TEXT,
    offline_env,
    patched_pdf,
    temp_env,
)

client = TestClient(app)


def _pdf_upload(content: bytes = b"%PDF-1.4 fake", name: str = "statement.pdf") -> dict:
    return {"pdf": (name, content, "application/pdf")}


def _sse_events(body: str) -> list:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines() if ": " in line)
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_health_and_root() -> None:
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["message"] == "Subradar API"
    print("✓ Health and root endpoints respond")


def test_csv_endpoint_returns_subscriptions() -> None:
    with offline_env():
        response = client.post(
            "/api/analysis/csv",
            files={"file": ("statement.csv", NETFLIX_CSV.encode("utf-8"), "text/csv")},
        )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["totalSubscriptions"] == 1
    assert body["totalTransactions"] == 3
    assert body["analysisMetadata"]["extractionMethod"] == "csv"

    subscription = body["subscriptions"][0]
    assert subscription["beneficiary"] == "Netflix"
    assert subscription["frequency"] == "monthly"
    assert subscription["averageAmount"] == 45.0
    assert subscription["confidence"] >= 0.5
    assert subscription["nextEstimatedPayment"] == "2024-06-02"
    print("✓ CSV endpoint detects the monthly Netflix subscription")


def test_pdf_endpoint_returns_subscriptions() -> None:
    with offline_env(), patched_pdf([STATEMENT_TEXT]):
        response = client.post("/api/analysis/pdf", files=_pdf_upload())
    assert response.status_code == 200, response.text
    body = response.json()
    assert [s["beneficiary"] for s in body["subscriptions"]] == ["Netflix"]
    assert body["analysisMetadata"]["pdfPages"] == 1
    assert body["analysisMetadata"]["extractionMethod"] == "text"
    print("✓ PDF endpoint detects subscriptions")


def test_invalid_uploads_are_rejected_with_400() -> None:
    with offline_env():
        missing = client.post("/api/analysis/pdf", files={"unrelated": ("a.txt", b"x", "text/plain")})
        wrong_type = client.post("/api/analysis/pdf", files={"pdf": ("notes.txt", b"hello", "text/plain")})
        csv_as_pdf = client.post("/api/analysis/csv", files={"file": ("s.pdf", b"%PDF-1.4", "application/pdf")})
        empty = client.post("/api/analysis/pdf", files=_pdf_upload(b""))

    for response in (missing, wrong_type, csv_as_pdf, empty):
        assert response.status_code == 400, response.text
        assert response.json()["code"] == "invalid_input"
    assert wrong_type.json()["error"].startswith("Invalid file type")
    print("✓ Missing, mistyped and empty uploads return 400")


def test_oversized_upload_is_rejected() -> None:
    with temp_env(MAX_UPLOAD_BYTES="100", SUBSCRIPTION_VALIDATION_ENABLED="false"):
        response = client.post("/api/analysis/pdf", files=_pdf_upload(b"%PDF-1.4 " + b"x" * 200))
    assert response.status_code == 400
    assert response.json()["error"] == "File too large"
    print("✓ Oversized uploads return 400")


def test_extraction_failures_return_422() -> None:
    with offline_env(), patched_pdf([None]):
        scanned = client.post("/api/analysis/pdf", files=_pdf_upload())
    assert scanned.status_code == 422
    assert scanned.json()["code"] == "pdf_not_text"
    assert "scanned" in scanned.json()["details"]

    with offline_env():
        garbage = client.post("/api/analysis/pdf", files=_pdf_upload(b"definitely not a pdf"))
    assert garbage.status_code == 422
    assert garbage.json()["code"] == "pdf_unparsable"
    print("✓ Scanned and unparsable PDFs return 422")


def test_stream_emits_progress_then_complete() -> None:
    with offline_env(), patched_pdf([STATEMENT_TEXT]):
        response = client.post("/api/analysis/pdf/stream", files=_pdf_upload())
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = _sse_events(response.text)
    types = [event_type for event_type, _ in events]
    assert types[0] == "start"
    assert types[-1] == "complete"
    assert types.count("complete") == 1
    assert "error" not in types

    stages = [data["stage"] for event_type, data in events if event_type == "analysis_progress"]
    assert stages[0] == "chunking"
    assert stages[-1] == "complete"

    complete = events[-1][1]
    assert complete["type"] == "complete"
    assert complete["totalSubscriptions"] == 1
    assert complete["subscriptions"][0]["beneficiary"] == "Netflix"
    print(f"✓ Stream emitted {len(events)} events ending in complete")


def test_stream_ends_with_single_error_event() -> None:
    with offline_env(), patched_pdf([None]):
        response = client.post("/api/analysis/pdf/stream", files=_pdf_upload())
    assert response.status_code == 200

    events = _sse_events(response.text)
    types = [event_type for event_type, _ in events]
    assert types[0] == "start"
    assert types[-1] == "error"
    assert types.count("error") == 1
    assert "complete" not in types
    assert events[-1][1]["code"] == "pdf_not_text"
    print("✓ Stream failures end with exactly one error event")


def test_stream_validates_before_opening() -> None:
    with offline_env():
        response = client.post(
            "/api/analysis/pdf/stream",
            files={"pdf": ("notes.txt", b"hello", "text/plain")},
        )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_input"
    print("✓ Stream endpoint rejects bad uploads before streaming")


def test_jobs_endpoint_enqueues_task() -> None:
    import tasks.analysis_tasks as analysis_tasks

    calls = []

    class FakeTask:
        def delay(self, **kwargs):
            calls.append(kwargs)
            return SimpleNamespace(id="task-123")

    original = analysis_tasks.run_statement_analysis
    analysis_tasks.run_statement_analysis = FakeTask()
    try:
        with offline_env():
            response = client.post(
                "/api/analysis/jobs",
                files={"file": ("statement.csv", NETFLIX_CSV.encode("utf-8"), "text/csv")},
            )
            rejected = client.post(
                "/api/analysis/jobs",
                files={"file": ("photo.png", b"\x89PNG", "image/png")},
            )
    finally:
        analysis_tasks.run_statement_analysis = original

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["task_id"] == "task-123"
    assert body["status"] == "queued"
    assert calls[0]["job_id"] == body["job_id"]
    assert calls[0]["kind"] == "csv"
    assert calls[0]["filename"] == "statement.csv"

    assert rejected.status_code == 400
    assert len(calls) == 1
    print("✓ Jobs endpoint enqueues a background analysis")


if __name__ == "__main__":
    test_health_and_root()
    test_csv_endpoint_returns_subscriptions()
    test_pdf_endpoint_returns_subscriptions()
    test_invalid_uploads_are_rejected_with_400()
    test_oversized_upload_is_rejected()
    test_extraction_failures_return_422()
    test_stream_emits_progress_then_complete()
    test_stream_ends_with_single_error_event()
    test_stream_validates_before_opening()
    test_jobs_endpoint_enqueues_task()
    print("\nAll analysis route tests passed.")
