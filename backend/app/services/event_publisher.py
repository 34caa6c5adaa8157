"""
Redis Pub/Sub event publisher for background analysis jobs.
Publishes events that are consumed by the SSE endpoint for client notifications.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis

from app.config import get_settings
from app.schemas import AnalysisProgress

logger = logging.getLogger(__name__)

# Stored-event replay order for late subscribers
EVENT_ORDER = ["start", "analysis_progress", "complete", "error"]
TERMINAL_EVENTS = ("complete", "error")


def channel_name(job_id: str) -> str:
    return f"analysis:{job_id}"


def state_key(job_id: str) -> str:
    return f"analysis_state:{job_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AnalysisEventPublisher:
    """
    Publishes analysis job events to Redis Pub/Sub channels.

    Channel format: analysis:{job_id}

    Event types:
    - start: Job picked up by a worker
    - analysis_progress: Pipeline stage update
    - complete: Final subscriptions and metadata
    - error: Terminal failure with code and details
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        """
        Initialize the event publisher.

        Args:
            redis_url: Redis connection URL. If not provided, uses the REDIS_URL setting.
            ttl_seconds: How long the last event of each type is kept for late subscribers.
        """
        settings = get_settings()
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.analysis_event_ttl_seconds
        self._redis: Optional[redis.Redis] = None

    @property
    def redis(self) -> redis.Redis:
        """Lazy-load Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def _publish(self, job_id: str, event_data: dict) -> None:
        """Publish an event to the job channel and store it for late subscribers."""
        try:
            channel = channel_name(job_id)
            message = json.dumps(event_data)

            self.redis.publish(channel, message)

            event_type = event_data.get("type", "")
            pipe = self.redis.pipeline()
            pipe.hset(state_key(job_id), event_type, message)
            pipe.expire(state_key(job_id), self.ttl_seconds)
            pipe.execute()

            logger.debug(f"Published event to {channel}: {event_type}")
        except Exception as e:
            logger.error(f"Failed to publish event: {e}")

    def publish_started(self, job_id: str, filename: str, kind: str) -> None:
        self._publish(job_id, {
            "type": "start",
            "jobId": job_id,
            "filename": filename,
            "kind": kind,
            "timestamp": _now(),
        })
        logger.info(f"Analysis started: {job_id} ({kind}: {filename})")

    def publish_progress(self, job_id: str, progress: AnalysisProgress) -> None:
        self._publish(job_id, {
            "type": "analysis_progress",
            "jobId": job_id,
            **progress.model_dump(by_alias=True),
            "timestamp": _now(),
        })

    def publish_completed(self, job_id: str, payload: dict) -> None:
        """
        Publish the final result.

        Args:
            job_id: The analysis job ID
            payload: AnalysisResponse dumped in JSON mode with camelCase aliases
        """
        self._publish(job_id, {
            "type": "complete",
            "jobId": job_id,
            **payload,
            "timestamp": _now(),
        })
        logger.info(f"Analysis completed: {job_id} - {payload.get('totalSubscriptions', 0)} subscriptions")

    def publish_failed(self, job_id: str, error: dict) -> None:
        self._publish(job_id, {
            "type": "error",
            "jobId": job_id,
            **error,
            "timestamp": _now(),
        })
        logger.error(f"Analysis failed: {job_id} - {error.get('error')}")

    def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            self._redis.close()
            self._redis = None
