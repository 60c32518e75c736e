"""SMTP sender for IMAP/SMTP mail accounts."""

from __future__ import annotations

import smtplib
import ssl

from src.integrations.mail.base import MailClientError, OutgoingMail, build_mime_message


class SmtpMailSender:
    provider = "imap"

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout_seconds: int = 30,
    ) -> None:
        self._host = host.strip()
        self._port = int(port)
        self._username = username.strip()
        self._password = password
        self._timeout_seconds = max(1, timeout_seconds)

    def send(self, mail: OutgoingMail) -> None:
        if not self._host or not self._port:
            raise MailClientError("smtp_host_missing")
        if not self._username or not self._password:
            raise MailClientError("smtp_credentials_missing")

        message = build_mime_message(mail)
        try:
            if self._port == 465:
                with smtplib.SMTP_SSL(
                    self._host,
                    self._port,
                    timeout=self._timeout_seconds,
                    context=ssl.create_default_context(),
                ) as server:
                    server.login(self._username, self._password)
                    server.sendmail(mail.sender, [mail.recipient], message.as_string())
            else:
                with smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds) as server:
                    server.ehlo()
                    if server.has_extn("starttls"):
                        server.starttls(context=ssl.create_default_context())
                        server.ehlo()
                    server.login(self._username, self._password)
                    server.sendmail(mail.sender, [mail.recipient], message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise MailClientError(f"smtp_send_failed detail={exc}") from exc
