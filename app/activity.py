"""
In-memory activity feed for support events (ticket created, assigned, escalated, ...).
The escalation worker publishes via Redis pub/sub; the API subscribes in a background
thread when the Redis backend is in use.
"""

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import REDIS_URL

logger = logging.getLogger(__name__)

ACTIVITY_CHANNEL = "support_activity"
MAX_EVENTS = 200


@dataclass
class ActivityEvent:
    """A single support activity event."""

    ts: float = field(default_factory=time.time)
    type: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ticket_id(self) -> Optional[str]:
        return self.data.get("ticket_id")


_events: deque[ActivityEvent] = deque(maxlen=MAX_EVENTS)
_lock = threading.Lock()


def emit(event_type: str, data: Optional[dict[str, Any]] = None) -> None:
    """Record an event in this process's feed."""
    with _lock:
        _events.append(ActivityEvent(type=event_type, data=data or {}))


def get_recent(limit: int = 100, ticket_id: Optional[str] = None) -> list[dict]:
    """Most recent events (newest last), optionally only those about one ticket."""
    with _lock:
        events = [e for e in _events if ticket_id is None or e.ticket_id == ticket_id]
    return [{"ts": e.ts, "type": e.type, "data": e.data} for e in events[-limit:]]


def clear() -> None:
    with _lock:
        _events.clear()


def _redis_subscriber_thread() -> None:
    """Daemon thread: append events published by the worker."""
    try:
        import redis
        r = redis.from_url(REDIS_URL, decode_responses=True)
        pubsub = r.pubsub()
        pubsub.subscribe(ACTIVITY_CHANNEL)
        logger.info("Activity subscriber listening on channel %s", ACTIVITY_CHANNEL)
        for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                payload = json.loads(message["data"])
                emit(payload.get("type", "worker_event"), payload.get("data", {}))
            except (TypeError, ValueError) as e:
                logger.warning("Activity message parse error: %s", e)
    except Exception as e:
        logger.warning("Activity Redis subscriber stopped: %s", e)


def start_redis_subscriber() -> None:
    t = threading.Thread(target=_redis_subscriber_thread, name="activity-subscriber", daemon=True)
    t.start()


def publish_event(event_type: str, data: dict[str, Any]) -> None:
    """Publish an event to Redis (worker side); API subscribers add it to their feed."""
    try:
        import redis
        r = redis.from_url(REDIS_URL, decode_responses=True)
        r.publish(ACTIVITY_CHANNEL, json.dumps({"type": event_type, "data": data}))
    except Exception as e:
        logger.warning("Activity publish failed: %s", e)
