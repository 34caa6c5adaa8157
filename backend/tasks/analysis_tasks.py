"""
Celery tasks for background statement analysis.
Runs the analysis pipeline and relays progress via Redis Pub/Sub.
"""
import asyncio
import base64
import logging

from celery_app import celery_app
from app.errors import AnalysisError
from app.schemas import AnalysisProgress
from app.services.analysis_pipeline import AnalysisPipeline
from app.services.event_publisher import AnalysisEventPublisher

logger = logging.getLogger(__name__)


async def _run_pipeline(publisher: AnalysisEventPublisher, job_id: str, kind: str, content: bytes) -> dict:
    def on_progress(event: AnalysisProgress) -> None:
        publisher.publish_progress(job_id, event)

    pipeline = AnalysisPipeline(progress=on_progress)
    if kind == "pdf":
        result = await pipeline.analyze_pdf(content)
    else:
        result = await pipeline.analyze_csv(content)
    return result.to_response().model_dump(by_alias=True, mode="json")


@celery_app.task(bind=True, max_retries=0)
def run_statement_analysis(self, job_id: str, kind: str, filename: str, content_b64: str) -> dict:
    """
    Analyze an uploaded statement in the background.

    Args:
        job_id: Analysis job ID (also the SSE channel key)
        kind: "pdf" or "csv"
        filename: Original upload name, for logs and the start event
        content_b64: Base64-encoded file bytes

    Returns:
        Dict with the job ID and subscription count
    """
    publisher = AnalysisEventPublisher()
    try:
        logger.info(f"[ANALYSIS_TASK] Starting {kind} analysis {job_id} ({filename})")
        publisher.publish_started(job_id, filename, kind)

        content = base64.b64decode(content_b64)
        payload = asyncio.run(_run_pipeline(publisher, job_id, kind, content))

        publisher.publish_completed(job_id, payload)
        return {"job_id": job_id, "total_subscriptions": payload["totalSubscriptions"]}

    except AnalysisError as e:
        # Input and extraction failures are final; retrying would fail the same way
        publisher.publish_failed(job_id, e.to_dict())
        return {"job_id": job_id, "error": e.code}

    except Exception as e:
        logger.exception(f"[ANALYSIS_TASK] Unexpected error in analysis {job_id}")
        publisher.publish_failed(job_id, {
            "error": "Failed to analyze statement",
            "code": "internal_error",
            "details": str(e),
        })
        raise

    finally:
        publisher.close()
