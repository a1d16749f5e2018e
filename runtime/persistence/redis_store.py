import json
import logging
import os
from datetime import datetime, timezone

import redis

logger = logging.getLogger(__name__)


def _events_prefix():
    return os.getenv("RENDER_EVENTS_KEY_PREFIX", "docrender:events")


class RedisStore:
    """
    Per-script render event stream. Events are appended to a capped Redis
    list so pollers can show what happened since their last poll.
    """

    def __init__(self, redis_client=None, url=None, lazy=False, max_events=200):
        self._redis = redis_client
        self.url = url
        self.lazy = lazy
        self.max_events = max_events

        if not lazy and self._redis is None:
            self._connect()

    # -----------------------------
    # Internal
    # -----------------------------

    def _connect(self):
        if self._redis is None:
            if not self.url:
                raise RuntimeError("Redis URL not provided")

            try:
                self._redis = redis.from_url(
                    self.url,
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                )
                # Test connection
                self._redis.ping()
                logger.info(f"[RedisStore] Connected to Redis (events: {_events_prefix()})")
            except redis.RedisError as e:
                logger.error(f"[RedisStore] Failed to connect to Redis: {e}")
                raise

    @property
    def redis(self):
        if self._redis is None:
            self._connect()
        return self._redis

    def _key(self, script_id):
        return f"{_events_prefix()}:{script_id}"

    # -----------------------------
    # RENDER EVENTS
    # -----------------------------

    def emit_render_event(self, script_id, event, **fields):
        payload = {
            "event": event,
            "script_id": script_id,
            "at": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        key = self._key(script_id)
        try:
            pipe = self.redis.pipeline()
            pipe.rpush(key, json.dumps(payload, default=str))
            pipe.ltrim(key, -self.max_events, -1)
            pipe.execute()
        except redis.RedisError as e:
            # events are best-effort and never raised to the render path
            logger.warning(f"[RedisStore] Failed to emit '{event}' for {script_id}: {e}")

    def recent_render_events(self, script_id, limit=20):
        try:
            raw = self.redis.lrange(self._key(script_id), -limit, -1)
        except redis.RedisError as e:
            logger.warning(f"[RedisStore] Failed to read events for {script_id}: {e}")
            return []
        return [json.loads(item) for item in raw]
