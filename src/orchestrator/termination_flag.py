"""Redis-backed termination flag shared by every worker of one queue."""

from __future__ import annotations

import threading
from typing import Callable

from redis import Redis
from redis.exceptions import RedisError

from src.core.logger import get_logger


logger = get_logger("loomreach.orchestrator.termination_flag")

_TERMINATING_KEY = "loomreach:{queue}:control:terminating"


def terminating_key(queue_name: str) -> str:
    return _TERMINATING_KEY.format(queue=queue_name)


class TerminationFlag:
    """Termination marker mirrored in-process.

    The local mirror keeps workers stopping even while Redis is unreachable.
    """

    def __init__(self, client_provider: Callable[[], Redis], *, queue_name: str) -> None:
        self._client_provider = client_provider
        self._key = terminating_key(queue_name)
        self._local = threading.Event()

    @property
    def key(self) -> str:
        return self._key

    def is_set(self) -> bool:
        if self._local.is_set():
            return True
        try:
            value = self._client_provider().get(self._key)
        except RedisError as exc:
            logger.warning("termination_flag_read_failed", error=str(exc))
            return False
        return str(value).strip().lower() == "true"

    def set(self) -> None:
        self._local.set()
        try:
            self._client_provider().set(self._key, "true")
        except RedisError as exc:
            logger.warning("termination_flag_write_failed", error=str(exc))

    def clear(self) -> None:
        try:
            self._client_provider().delete(self._key)
        except RedisError as exc:
            logger.warning("termination_flag_clear_failed", error=str(exc))
        self._local.clear()
