"""Redis client factory and health checks."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional, Tuple

from redis import Redis

from src.core.config import get_settings


@lru_cache(maxsize=1)
def get_client() -> Redis:
    settings = get_settings()
    return Redis.from_url(settings.redis_url, decode_responses=True)


def reset_client() -> None:
    """Drop the cached client so the next ``get_client`` call reconnects."""

    if get_client.cache_info().currsize:
        try:
            get_client().close()
        except Exception:  # pragma: no cover
            pass
    get_client.cache_clear()


def test_connection() -> Tuple[bool, Optional[str]]:
    try:
        get_client().ping()
        return True, None
    except Exception as exc:  # pragma: no cover
        return False, str(exc)
