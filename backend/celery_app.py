"""
Celery application for background statement analysis jobs.
"""
from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "subradar_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["tasks.analysis_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,
    # Large statements spend most of their time waiting between validation batches
    task_time_limit=900,
    task_soft_time_limit=840,
    # Only the job summary is stored; full results travel over Pub/Sub
    result_expires=settings.analysis_event_ttl_seconds,

    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)


if __name__ == "__main__":
    celery_app.start()
