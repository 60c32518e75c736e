"""Build the provider-specific sender for a stored mail account."""

from __future__ import annotations

from functools import partial
from typing import Optional

from sqlalchemy.orm import sessionmaker

from src.core.config import get_settings
from src.core.logger import get_logger
from src.integrations.mail.base import MailClientError, MailSender
from src.integrations.mail.gmail_client import GmailSender
from src.integrations.mail.graph_client import GraphMailSender
from src.integrations.mail.smtp_client import SmtpMailSender
from src.storage.db import session_scope
from src.storage.models import MAIL_PROVIDER_GOOGLE, MAIL_PROVIDER_IMAP, MAIL_PROVIDER_MICROSOFT, MailAccount
from src.storage.security import decrypt_optional, encrypt_token


logger = get_logger("loomreach.integrations.mail")


def persist_rotated_refresh_token(
    account_id: str,
    refresh_token: str,
    *,
    session_factory: Optional[sessionmaker] = None,
) -> bool:
    """Store a refresh token handed back by the provider, encrypted at rest."""

    with session_scope(session_factory) as session:
        account = session.get(MailAccount, account_id)
        if account is None:
            logger.warning("mail_refresh_token_rotation_orphaned", account_id=account_id)
            return False
        account.refresh_token_encrypted = encrypt_token(refresh_token)
        provider = account.provider
    logger.info("mail_refresh_token_rotated", account_id=account_id, provider=provider)
    return True


def build_mail_sender(account: MailAccount, *, session_factory: Optional[sessionmaker] = None) -> MailSender:
    settings = get_settings()
    provider = (account.provider or "").strip().lower()
    on_rotated = partial(persist_rotated_refresh_token, account.id, session_factory=session_factory)

    if provider == MAIL_PROVIDER_GOOGLE:
        return GmailSender(
            refresh_token=decrypt_optional(account.refresh_token_encrypted),
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            token_url=settings.google_token_url,
            send_url=settings.gmail_send_url,
            timeout_seconds=settings.mail_api_timeout_seconds,
            on_refresh_token_rotated=on_rotated,
        )
    if provider == MAIL_PROVIDER_MICROSOFT:
        return GraphMailSender(
            refresh_token=decrypt_optional(account.refresh_token_encrypted),
            client_id=settings.microsoft_client_id,
            client_secret=settings.microsoft_client_secret,
            token_url=settings.microsoft_token_url,
            send_url=settings.microsoft_send_url,
            timeout_seconds=settings.mail_api_timeout_seconds,
            on_refresh_token_rotated=on_rotated,
        )
    if provider == MAIL_PROVIDER_IMAP:
        return SmtpMailSender(
            host=account.smtp_host or "",
            port=int(account.smtp_port or 0),
            username=account.email,
            password=decrypt_optional(account.smtp_password_encrypted),
            timeout_seconds=settings.smtp_timeout_seconds,
        )
    raise MailClientError(f"mail_provider_unsupported provider={provider}")
