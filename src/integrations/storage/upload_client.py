"""HTTP object-storage client used to publish merged videos."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import httpx

from src.core.config import get_settings
from src.pipeline.errors import UploadFailure


class ObjectStorageClient:
    """PUT files to an object-storage endpoint and return their public URL."""

    def __init__(
        self,
        *,
        base_url: str,
        public_base_url: str = "",
        token: str = "",
        prefix: str = "processed_videos",
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._public_base_url = (public_base_url or base_url).rstrip("/")
        self._token = token.strip()
        self._prefix = prefix.strip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "video/mp4"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _object_key(self, remote_name: str) -> str:
        name = remote_name.strip("/")
        if not self._prefix:
            return name
        return f"{self._prefix}/{name}"

    def upload(self, local_path: str, remote_name: str) -> str:
        if not self._base_url:
            raise UploadFailure("object_storage_base_url_missing")

        path = Path(local_path)
        try:
            content = path.read_bytes()
        except OSError as exc:
            raise UploadFailure(f"object_storage_source_unreadable path={path}") from exc

        key = self._object_key(remote_name)
        url = f"{self._base_url}/{key}"
        try:
            if self._client is not None:
                response = self._client.put(url, headers=self._headers(), content=content)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = client.put(url, headers=self._headers(), content=content)
        except httpx.HTTPError as exc:
            raise UploadFailure(f"object_storage_request_failed detail={exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 200:
                detail = detail[:200] + "..."
            raise UploadFailure(f"object_storage_upload_failed status={response.status_code} detail={detail}")

        return f"{self._public_base_url}/{key}"


@lru_cache(maxsize=1)
def get_object_storage_client() -> ObjectStorageClient:
    settings = get_settings()
    return ObjectStorageClient(
        base_url=settings.object_storage_base_url,
        public_base_url=settings.object_storage_public_base_url,
        token=settings.object_storage_token,
        prefix=settings.object_storage_prefix,
        timeout_seconds=settings.object_storage_timeout_seconds,
    )
