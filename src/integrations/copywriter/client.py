"""HTTP client for the outreach copywriter service."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import httpx

from src.core.config import get_settings


class CopywriterError(RuntimeError):
    """Raised when the copywriter service cannot produce outreach copy."""


@dataclass(frozen=True)
class OutreachCopy:
    subject: str
    html_body: str


class CopywriterClient:
    def __init__(
        self,
        *,
        api_url: str,
        timeout_seconds: int = 30,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_url = api_url.strip()
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._api_url)

    def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        try:
            if self._client is not None:
                return self._client.post(self._api_url, headers=headers, json=payload)
            with httpx.Client(timeout=self._timeout_seconds) as client:
                return client.post(self._api_url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise CopywriterError(f"copywriter_request_failed detail={exc}") from exc

    def generate(self, payload: Dict[str, Any]) -> OutreachCopy:
        if not self.configured:
            raise CopywriterError("copywriter_api_url_missing")

        response = self._post(payload)
        if response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 200:
                detail = detail[:200] + "..."
            raise CopywriterError(f"copywriter_failed status={response.status_code} detail={detail}")

        try:
            body = response.json()
        except Exception as exc:  # pragma: no cover
            raise CopywriterError("copywriter_invalid_json_response") from exc

        if not isinstance(body, dict):
            raise CopywriterError("copywriter_invalid_response_shape")
        subject = str(body.get("subject") or "").strip()
        html_body = str(body.get("cleaned_html") or "").strip()
        if not subject or not html_body:
            raise CopywriterError("copywriter_incomplete_response")
        return OutreachCopy(subject=subject, html_body=html_body)


@lru_cache(maxsize=1)
def get_copywriter_client() -> CopywriterClient:
    settings = get_settings()
    return CopywriterClient(
        api_url=settings.copywriter_api_url,
        timeout_seconds=settings.copywriter_api_timeout_seconds,
    )
