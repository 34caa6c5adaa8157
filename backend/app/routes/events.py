"""
Server-Sent Events relay for background analysis jobs.

The Celery worker publishes job events on a Redis channel and also keeps the
last event of each type in a hash, so a client that connects late still
receives everything up to the current state.
"""
import asyncio
import json
import logging
from typing import AsyncGenerator, Dict

import redis.asyncio as aioredis
from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from app.config import get_settings
from app.services.event_publisher import EVENT_ORDER, TERMINAL_EVENTS, channel_name, state_key

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_INTERVAL_SECONDS = 15
POLL_TIMEOUT_SECONDS = 1.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def sse_frame(event_type: str, raw_data: str) -> str:
    return f"event: {event_type}\ndata: {raw_data}\n\n"


def sse_event(event_type: str, data: dict) -> str:
    """Format a dict as an SSE frame, stamping it with its event type."""
    return sse_frame(event_type, json.dumps({"type": event_type, **data}))


def event_type_of(raw_data: str) -> str:
    try:
        return json.loads(raw_data).get("type", "message")
    except (json.JSONDecodeError, AttributeError):
        logger.warning(f"[ANALYSIS_SSE] Unreadable event payload: {raw_data!r}")
        return "message"


def replay_stored_events(stored: Dict[str, str]) -> tuple:
    """
    Order stored events for a late subscriber.

    Returns the frames to send and whether a terminal event was among them.
    """
    frames = []
    for event_type in EVENT_ORDER:
        if event_type not in stored:
            continue
        frames.append(sse_frame(event_type, stored[event_type]))
        if event_type in TERMINAL_EVENTS:
            return frames, True
    return frames, False


async def analysis_status_generator(job_id: str) -> AsyncGenerator[str, None]:
    """
    Stream the events of one analysis job until it completes or fails.

    Args:
        job_id: The analysis job ID returned by POST /api/analysis/jobs

    Yields:
        SSE-formatted event strings
    """
    redis_client = aioredis.from_url(get_settings().redis_url, decode_responses=True)
    pubsub = redis_client.pubsub()
    channel = channel_name(job_id)

    try:
        await pubsub.subscribe(channel)
        logger.info(f"[ANALYSIS_SSE] Subscribed to {channel}")
        yield sse_event("connected", {"channel": channel, "jobId": job_id})

        frames, finished = replay_stored_events(await redis_client.hgetall(state_key(job_id)))
        if frames:
            logger.info(f"[ANALYSIS_SSE] Replaying {len(frames)} stored events for {job_id}")
        for frame in frames:
            yield frame
        if finished:
            return

        loop = asyncio.get_running_loop()
        last_heartbeat = loop.time()

        while True:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=POLL_TIMEOUT_SECONDS,
            )
            if message and message["type"] == "message":
                event_type = event_type_of(message["data"])
                yield sse_frame(event_type, message["data"])
                if event_type in TERMINAL_EVENTS:
                    logger.info(f"[ANALYSIS_SSE] Job {job_id} finished with {event_type}")
                    break

            now = loop.time()
            if now - last_heartbeat >= HEARTBEAT_INTERVAL_SECONDS:
                yield sse_event("heartbeat", {"timestamp": now})
                last_heartbeat = now

    except asyncio.CancelledError:
        logger.info(f"[ANALYSIS_SSE] Client left {channel}")
        raise
    except Exception as e:
        logger.error(f"[ANALYSIS_SSE] Relay failed for {channel}: {e}")
        yield sse_event("error", {"error": "Event stream failed", "code": "stream_failed", "details": str(e)})
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
        await redis_client.close()


@router.get("/analysis/{job_id}")
async def stream_analysis_status(job_id: str):
    """
    Stream analysis job updates via Server-Sent Events.

    Events: connected, start, analysis_progress, complete, error and heartbeat
    (every 15 seconds). The connection closes after complete or error.
    """
    return StreamingResponse(
        analysis_status_generator(job_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
