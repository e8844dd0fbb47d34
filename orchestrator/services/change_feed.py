"""
Change feed — observer fan-out for every Lead / Task / Rule mutation.

The store publishes a ChangeEvent after each committed write. Consumers
(Redis change log, notifications, tests) subscribe with a callback.
A failing subscriber is logged and never blocks the write that triggered it.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from orchestrator.config import CHANGE_FEED_KEY, CHANGE_FEED_MAX

logger = logging.getLogger('services.change_feed')


@dataclass
class ChangeEvent:
    entity: str                 # 'lead' | 'task' | 'rule'
    entity_id: str
    action: str                 # 'created', 'started', 'failed', 'overdue', ...
    at: datetime
    status: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity': self.entity,
            'entity_id': self.entity_id,
            'action': self.action,
            'status': self.status,
            'at': self.at.isoformat(),
            'data': self.data,
        }


class ChangeFeed:
    """In-process publish/subscribe hub."""

    def __init__(self):
        self._subscribers: List[Callable[[ChangeEvent], None]] = []

    def subscribe(self, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def publish(self, event: ChangeEvent):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.error("Change feed subscriber %r failed on %s %s",
                             callback, event.entity, event.action, exc_info=True)


class RedisChangeLog:
    """
    Subscriber that keeps the most recent changes in a capped Redis list.

    Keys:
        changes:feed → LPUSHed JSON events, trimmed to CHANGE_FEED_MAX
    """

    def __init__(self, redis_client, key: str = CHANGE_FEED_KEY, max_len: int = CHANGE_FEED_MAX):
        self.redis = redis_client
        self.key = key
        self.max_len = max_len

    def __call__(self, event: ChangeEvent):
        try:
            pipe = self.redis.pipeline()
            pipe.lpush(self.key, json.dumps(event.to_dict()))
            pipe.ltrim(self.key, 0, self.max_len - 1)
            pipe.execute()
        except Exception:
            logger.error("Failed to record %s %s in Redis change log",
                         event.entity, event.action, exc_info=True)

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest-first list of recorded change events."""
        try:
            raw = self.redis.lrange(self.key, 0, limit - 1) or []
            return [json.loads(item) for item in raw]
        except Exception:
            logger.error("Failed to read Redis change log", exc_info=True)
            return []
