"""Outreach email dispatch through the user's highest-priority mail account."""

from __future__ import annotations

from functools import partial
import random
import time
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from src.billing.ledger import EmailWindow, QuotaLedger
from src.core import metrics
from src.core.logger import get_logger
from src.integrations.mail.base import MailSender, OutgoingMail
from src.integrations.mail.factory import build_mail_sender
from src.pipeline.composer import OutreachComposer, SenderIdentity
from src.pipeline.models import ArtifactRecord, DispatchReport
from src.storage.models import (
    MAIL_PROVIDER_GOOGLE,
    MAIL_PROVIDER_IMAP,
    MAIL_PROVIDER_MICROSOFT,
    MailAccount,
    SenderProfile,
)


logger = get_logger("loomreach.pipeline.dispatch")

PROVIDER_PRIORITY: Tuple[str, ...] = (MAIL_PROVIDER_GOOGLE, MAIL_PROVIDER_MICROSOFT, MAIL_PROVIDER_IMAP)


def select_mail_account(session_factory: sessionmaker, user_id: str) -> Optional[MailAccount]:
    """Return the user's account for the first provider in priority order, if any."""

    with session_factory() as session:
        accounts = list(session.scalars(select(MailAccount).where(MailAccount.user_id == user_id)))

    by_provider = {}
    for account in accounts:
        by_provider.setdefault((account.provider or "").strip().lower(), account)
    for provider in PROVIDER_PRIORITY:
        if provider in by_provider:
            return by_provider[provider]
    return None


def load_sender_identity(session_factory: sessionmaker, user_id: str, *, fallback_email: str) -> SenderIdentity:
    with session_factory() as session:
        profile = session.scalar(select(SenderProfile).where(SenderProfile.user_id == user_id))
    if profile is None:
        return SenderIdentity(email=fallback_email)
    return SenderIdentity(
        name=profile.sender_name,
        title=profile.sender_title,
        company=profile.sender_company,
        email=profile.sender_email or fallback_email,
        work_summary=profile.work_summary,
        cta_link=profile.cta_link,
    )


class EmailDispatcher:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        ledger: QuotaLedger,
        composer: OutreachComposer,
        sender_factory: Optional[Callable[[MailAccount], MailSender]] = None,
        delay_range_seconds: Tuple[float, float] = (5.0, 10.0),
        sleeper: Callable[[float], None] = time.sleep,
        delay_picker: Callable[[float, float], float] = random.uniform,
    ) -> None:
        low, high = delay_range_seconds
        if low < 0 or high < low:
            raise ValueError("delay_range_seconds must be a non-negative ascending pair")
        self._session_factory = session_factory
        self._ledger = ledger
        self._composer = composer
        self._sender_factory = sender_factory or partial(build_mail_sender, session_factory=session_factory)
        self._delay_range = (low, high)
        self._sleeper = sleeper
        self._delay_picker = delay_picker

    def select_mail_account(self, user_id: str) -> Optional[MailAccount]:
        return select_mail_account(self._session_factory, user_id)

    def email_capacity(self, user_id: str) -> Tuple[Optional[MailAccount], Optional[EmailWindow]]:
        """Select the account and roll its window, without consuming a slot."""

        account = self.select_mail_account(user_id)
        if account is None:
            return None, None
        return account, self._ledger.check_and_roll_email_window(account.id)

    def dispatch(
        self,
        user_id: str,
        artifacts: Sequence[ArtifactRecord],
        *,
        account: Optional[MailAccount] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> DispatchReport:
        report = DispatchReport()
        if not artifacts:
            return report

        account = account or self.select_mail_account(user_id)
        if account is None:
            logger.warning("email_dispatch_skipped_no_provider", user_id=user_id, artifacts=len(artifacts))
            report.skipped = len(artifacts)
            metrics.record_email(provider="none", status="skipped", count=len(artifacts))
            return report

        report.provider = account.provider
        sender = self._sender_factory(account)
        identity = load_sender_identity(self._session_factory, user_id, fallback_email=account.email)

        pending: List[ArtifactRecord] = list(artifacts)
        for position, artifact in enumerate(pending):
            if should_stop is not None and should_stop():
                report.skipped += len(pending) - position
                logger.info("email_dispatch_stopped", user_id=user_id, remaining=len(pending) - position)
                break

            window = self._ledger.check_and_roll_email_window(account.id)
            if not self._ledger.reserve_email_send(account.id, window.ceiling, today=window.window_date):
                report.halted_by_ceiling = True
                report.skipped += len(pending) - position
                logger.warning(
                    "email_dispatch_ceiling_reached",
                    user_id=user_id,
                    provider=account.provider,
                    ceiling=window.ceiling,
                    remaining=len(pending) - position,
                )
                break

            if report.attempted > 0:
                self._sleeper(self._delay_picker(*self._delay_range))

            report.attempted += 1
            if self._send_one(sender, identity, artifact, account, window, user_id, report):
                report.sent += 1
            else:
                report.failed += 1

        if report.skipped:
            metrics.record_email(provider=account.provider, status="skipped", count=report.skipped)
        logger.info("email_dispatch_completed", user_id=user_id, **report.as_dict())
        return report

    def _send_one(
        self,
        sender: MailSender,
        identity: SenderIdentity,
        artifact: ArtifactRecord,
        account: MailAccount,
        window: EmailWindow,
        user_id: str,
        report: DispatchReport,
    ) -> bool:
        recipient = artifact.row.recipient_email
        try:
            copy = self._composer.compose(identity, artifact)
            sender.send(
                OutgoingMail(
                    sender=account.email,
                    recipient=recipient,
                    subject=copy.subject,
                    html_body=copy.html_body,
                )
            )
        except Exception as exc:
            self._ledger.release_email_send(account.id, today=window.window_date)
            self._ledger.record_send_outcome(user_id, success=False)
            report.failures.append({"recipient": recipient, "reason": str(exc)})
            metrics.record_email(provider=account.provider, status="failed")
            logger.warning(
                "email_send_failed",
                user_id=user_id,
                provider=account.provider,
                row_index=artifact.row.index,
                recipient=recipient,
                error=str(exc),
            )
            return False

        self._ledger.record_send_outcome(user_id, success=True)
        metrics.record_email(provider=account.provider, status="sent")
        logger.info(
            "email_sent",
            user_id=user_id,
            provider=account.provider,
            row_index=artifact.row.index,
            recipient=recipient,
        )
        return True
