"""Shared mail-provider contracts."""

from __future__ import annotations

from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from src.pipeline.errors import SendFailure


class MailClientError(SendFailure):
    """Raised when a mail provider rejects or cannot deliver a message."""


@dataclass(frozen=True)
class OutgoingMail:
    sender: str
    recipient: str
    subject: str
    html_body: str


class MailSender(Protocol):
    provider: str

    def send(self, mail: OutgoingMail) -> None:
        raise NotImplementedError


def build_mime_message(mail: OutgoingMail) -> MIMEText:
    message = MIMEText(mail.html_body, "html", "utf-8")
    message["From"] = mail.sender
    message["To"] = mail.recipient
    message["Subject"] = mail.subject
    return message


def raise_for_provider_status(response: httpx.Response, *, reason: str) -> None:
    if 200 <= response.status_code < 300:
        return
    detail = response.text.strip()
    if len(detail) > 200:
        detail = detail[:200] + "..."
    raise MailClientError(f"{reason} status={response.status_code} detail={detail}")


class OAuthRefreshingClient:
    """Exchange a stored refresh token for an access token before each send.

    Providers may answer with a new refresh token; it replaces the current one
    and is handed to ``on_refresh_token_rotated`` so it can be stored.
    """

    def __init__(
        self,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        timeout_seconds: int = 20,
        client: Optional[httpx.Client] = None,
        scope: Optional[str] = None,
        on_refresh_token_rotated: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._token_url = token_url
        self._client_id = client_id.strip()
        self._client_secret = client_secret.strip()
        self._refresh_token = refresh_token.strip()
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client
        self._scope = scope
        self._on_refresh_token_rotated = on_refresh_token_rotated

    def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                return self._client.post(url, **kwargs)
            with httpx.Client(timeout=self._timeout_seconds) as client:
                return client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise MailClientError(f"mail_provider_request_failed detail={exc}") from exc

    def access_token(self) -> str:
        if not self._refresh_token:
            raise MailClientError("mail_refresh_token_missing")

        form: Dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": self._refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        if self._scope:
            form["scope"] = self._scope
        response = self._post(self._token_url, data=form)
        raise_for_provider_status(response, reason="mail_token_refresh_failed")

        try:
            body = response.json()
        except Exception as exc:  # pragma: no cover
            raise MailClientError("mail_token_invalid_json_response") from exc

        token = str(body.get("access_token") or "").strip() if isinstance(body, dict) else ""
        if not token:
            raise MailClientError("mail_token_missing_access_token")

        rotated = str(body.get("refresh_token") or "").strip()
        if rotated and rotated != self._refresh_token:
            self._refresh_token = rotated
            if self._on_refresh_token_rotated is not None:
                self._on_refresh_token_rotated(rotated)
        return token
