"""
Statement analysis endpoints: synchronous JSON, streamed progress (SSE) and background jobs.
"""
import asyncio
import base64
import logging
import uuid
from typing import AsyncGenerator, Awaitable, Callable, Optional

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import StreamingResponse

from app.config import get_settings
from app.errors import AnalysisError, InputValidationError
from app.routes.events import SSE_HEADERS, sse_event
from app.schemas import AnalysisJobResponse, AnalysisProgress, AnalysisResponse
from app.services.analysis_pipeline import AnalysisPipeline, AnalysisResult, ProgressCallback

logger = logging.getLogger(__name__)

router = APIRouter()

PDF_CONTENT_TYPES = {"application/pdf"}
CSV_CONTENT_TYPES = {"text/csv", "application/csv", "text/plain", "application/vnd.ms-excel"}


def detect_upload_kind(file: UploadFile) -> Optional[str]:
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    filename = (file.filename or "").lower()
    if content_type in PDF_CONTENT_TYPES:
        return "pdf"
    if content_type in CSV_CONTENT_TYPES or filename.endswith(".csv"):
        return "csv"
    return None


async def read_upload(file: Optional[UploadFile], expected_kind: str) -> bytes:
    """
    Validate and read an upload before any processing starts.

    Raises InputValidationError for a missing file, a wrong type, an empty file or
    one larger than the configured ceiling.
    """
    if file is None or not file.filename:
        raise InputValidationError("No file provided", f"Attach a {expected_kind.upper()} statement to the request.")

    kind = detect_upload_kind(file)
    if kind != expected_kind:
        raise InputValidationError(
            f"Invalid file type: {file.content_type or 'unknown'}",
            f"Only {expected_kind.upper()} files are accepted by this endpoint.",
        )

    max_bytes = get_settings().max_upload_bytes
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise InputValidationError(
            "File too large",
            f"Maximum upload size is {max_bytes // (1024 * 1024)}MB.",
        )
    if not content:
        raise InputValidationError("The uploaded file is empty", "Upload a non-empty statement file.")
    return content


async def analysis_event_generator(
    run: Callable[[ProgressCallback], Awaitable[AnalysisResult]],
    filename: str,
) -> AsyncGenerator[str, None]:
    """
    Stream pipeline progress as SSE and finish with exactly one complete or error event.

    Args:
        run: Starts the pipeline with the given progress callback
        filename: Uploaded file name, echoed in the start event

    Yields:
        SSE-formatted event strings
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def on_progress(event: AnalysisProgress) -> None:
        await queue.put(sse_event("analysis_progress", event.model_dump(by_alias=True)))

    yield sse_event("start", {"filename": filename, "message": "Analysis started"})
    yield sse_event("progress", {"message": "File received, extracting transactions", "percentage": 0})

    task = asyncio.create_task(run(on_progress))
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
                continue
            getter.cancel()
            break

        while not queue.empty():
            yield queue.get_nowait()

        try:
            result = task.result()
        except AnalysisError as e:
            logger.info(f"[ANALYSIS_STREAM] {filename}: {e.code} - {e.message}")
            yield sse_event("error", e.to_dict())
            return
        except Exception as e:
            logger.exception(f"[ANALYSIS_STREAM] Unexpected error analyzing {filename}")
            yield sse_event("error", {
                "error": "Failed to analyze statement",
                "code": "internal_error",
                "details": str(e),
            })
            return

        yield sse_event("progress", {"message": "Analysis finished", "percentage": 100})
        yield sse_event("complete", result.to_response().model_dump(by_alias=True, mode="json"))
    finally:
        if not task.done():
            task.cancel()
            logger.info(f"[ANALYSIS_STREAM] Client disconnected, cancelled analysis of {filename}")


@router.post("/pdf", response_model=AnalysisResponse)
async def analyze_pdf(pdf: Optional[UploadFile] = File(None)):
    """Analyze a PDF bank statement and return detected subscriptions."""
    content = await read_upload(pdf, "pdf")
    result = await AnalysisPipeline().analyze_pdf(content)
    return result.to_response()


@router.post("/pdf/stream")
async def analyze_pdf_stream(pdf: Optional[UploadFile] = File(None)):
    """
    Analyze a PDF bank statement, streaming progress via Server-Sent Events.

    Events:
    - start: Upload accepted
    - progress: Coarse progress message with percentage
    - analysis_progress: Pipeline stage (chunking, processing, merging, complete)
      with currentChunk/totalChunks counters
    - complete: Subscriptions, totals and analysisMetadata
    - error: Terminal failure with error, code and details

    Input validation errors are returned as a plain 400 response before the
    stream opens.
    """
    content = await read_upload(pdf, "pdf")
    filename = pdf.filename

    def run(progress: ProgressCallback) -> Awaitable[AnalysisResult]:
        return AnalysisPipeline(progress=progress).analyze_pdf(content)

    return StreamingResponse(
        analysis_event_generator(run, filename),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/csv", response_model=AnalysisResponse)
async def analyze_csv(file: Optional[UploadFile] = File(None)):
    """Analyze a CSV statement export and return detected subscriptions."""
    content = await read_upload(file, "csv")
    result = await AnalysisPipeline().analyze_csv(content)
    return result.to_response()


@router.post("/jobs", response_model=AnalysisJobResponse)
async def enqueue_analysis(file: Optional[UploadFile] = File(None)):
    """
    Enqueue a statement (PDF or CSV) for background analysis.

    Returns immediately; progress and the result are delivered on
    /api/events/analysis/{job_id}.
    """
    from tasks.analysis_tasks import run_statement_analysis

    if file is None or not file.filename:
        raise InputValidationError("No file provided", "Attach a PDF or CSV statement to the request.")
    kind = detect_upload_kind(file)
    if kind is None:
        raise InputValidationError(
            f"Invalid file type: {file.content_type or 'unknown'}",
            "Only PDF and CSV statements are accepted.",
        )
    content = await read_upload(file, kind)

    job_id = str(uuid.uuid4())
    task = run_statement_analysis.delay(
        job_id=job_id,
        kind=kind,
        filename=file.filename,
        content_b64=base64.b64encode(content).decode("ascii"),
    )
    logger.info(f"Enqueued {kind} analysis {job_id} as Celery task {task.id}")
    return AnalysisJobResponse(job_id=job_id, task_id=task.id)
