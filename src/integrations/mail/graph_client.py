"""Microsoft Graph sender for Outlook / Microsoft 365 mail accounts."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

import httpx

from src.integrations.mail.base import MailClientError, OAuthRefreshingClient, OutgoingMail, raise_for_provider_status


_GRAPH_SCOPE = "https://graph.microsoft.com/Mail.Send offline_access"


class GraphMailSender(OAuthRefreshingClient):
    provider = "microsoft"

    def __init__(
        self,
        *,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        token_url: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token",
        send_url: str = "https://graph.microsoft.com/v1.0/me/sendMail",
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
            scope=_GRAPH_SCOPE,
        )
        self._send_url = send_url

    @staticmethod
    def build_payload(mail: OutgoingMail) -> Dict[str, Any]:
        return {
            "message": {
                "subject": mail.subject,
                "body": {"contentType": "HTML", "content": mail.html_body},
                "toRecipients": [{"emailAddress": {"address": mail.recipient}}],
                "from": {"emailAddress": {"address": mail.sender}},
            },
            "saveToSentItems": True,
        }

    def send(self, mail: OutgoingMail) -> None:
        if not mail.recipient.strip():
            raise MailClientError("email_recipients_missing")

        response = self._post(
            self._send_url,
            headers={
                "Authorization": f"Bearer {self.access_token()}",
                "Content-Type": "application/json",
            },
            json=self.build_payload(mail),
        )
        raise_for_provider_status(response, reason="graph_send_failed")
