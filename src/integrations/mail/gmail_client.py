"""Gmail API sender for Google mail accounts."""

from __future__ import annotations

import base64
from typing import Callable, Optional

import httpx

from src.integrations.mail.base import (
    MailClientError,
    OAuthRefreshingClient,
    OutgoingMail,
    build_mime_message,
    raise_for_provider_status,
)


class GmailSender(OAuthRefreshingClient):
    provider = "google"

    def __init__(
        self,
        *,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        token_url: str = "https://oauth2.googleapis.com/token",
        send_url: str = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send",
        timeout_seconds: int = 20,
        client: Optional[httpx.Client] = None,
        on_refresh_token_rotated: Optional[Callable[[str], None]] = None,
    ) -> None:
        super().__init__(
            token_url=token_url,
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            timeout_seconds=timeout_seconds,
            client=client,
            on_refresh_token_rotated=on_refresh_token_rotated,
        )
        self._send_url = send_url

    def send(self, mail: OutgoingMail) -> None:
        if not mail.recipient.strip():
            raise MailClientError("email_recipients_missing")

        raw = base64.urlsafe_b64encode(build_mime_message(mail).as_bytes()).decode("ascii").rstrip("=")
        response = self._post(
            self._send_url,
            headers={
                "Authorization": f"Bearer {self.access_token()}",
                "Content-Type": "application/json",
            },
            json={"raw": raw},
        )
        raise_for_provider_status(response, reason="gmail_send_failed")
