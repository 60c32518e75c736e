"""Per-submission staging of uploaded input files, keyed by upload token."""

from __future__ import annotations

from typing import Callable, Dict

from redis import Redis
from redis.exceptions import RedisError

from src.pipeline.errors import BrokerFailure


UPLOAD_KIND_SPREADSHEET = "spreadsheet"
UPLOAD_KIND_OVERLAY = "overlay"
UPLOAD_KINDS = (UPLOAD_KIND_SPREADSHEET, UPLOAD_KIND_OVERLAY)

_STAGING_KEY = "loomreach:uploads:{token}"


def staging_key(token: str) -> str:
    return _STAGING_KEY.format(token=token)


class UploadStaging:
    def __init__(self, client_provider: Callable[[], Redis], *, ttl_seconds: int = 3600) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._client_provider = client_provider
        self._ttl_seconds = ttl_seconds

    def stage(self, token: str, kind: str, path: str) -> None:
        if kind not in UPLOAD_KINDS:
            raise ValueError(f"Unsupported upload kind: {kind}")
        key = staging_key(token)
        try:
            client = self._client_provider()
            client.hset(key, mapping={kind: path})
            client.expire(key, self._ttl_seconds)
        except RedisError as exc:
            raise BrokerFailure(f"upload_staging_unavailable detail={exc}") from exc

    def get(self, token: str) -> Dict[str, str]:
        try:
            return dict(self._client_provider().hgetall(staging_key(token)) or {})
        except RedisError as exc:
            raise BrokerFailure(f"upload_staging_unavailable detail={exc}") from exc

    def consume(self, token: str) -> Dict[str, str]:
        staged = self.get(token)
        try:
            self._client_provider().delete(staging_key(token))
        except RedisError as exc:
            raise BrokerFailure(f"upload_staging_unavailable detail={exc}") from exc
        return staged
