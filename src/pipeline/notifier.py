"""Fire-and-forget user notifications over Redis pub/sub."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from src.core.logger import get_logger
from src.storage.redis_client import get_client


logger = get_logger("loomreach.pipeline.notifier")

_NOTIFICATION_CHANNEL = "loomreach:notifications:{user_id}"


def notification_channel(user_id: str) -> str:
    return _NOTIFICATION_CHANNEL.format(user_id=user_id)


class Notifier:
    def __init__(self, client_provider: Callable[[], Redis] = get_client) -> None:
        self._client_provider = client_provider

    def notify(self, user_id: str, message: str, *, details: Optional[Dict[str, Any]] = None) -> bool:
        payload = {
            "message": message,
            "details": details or {},
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._client_provider().publish(notification_channel(user_id), json.dumps(payload, default=str))
        except RedisError as exc:
            logger.warning("user_notification_failed", user_id=user_id, error=str(exc))
            return False
        return True
