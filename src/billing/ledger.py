"""Quota ledger: per-plan video ceilings and tiered daily email ceilings.

Every counter mutation here is a single conditional UPDATE so concurrent jobs
for the same user or mail account cannot lose increments. Reads are only used
to compute the arguments of those conditional updates, never to write back a
value computed in Python.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from src.billing.plans import QuotaConfig, load_quota_config
from src.core.logger import get_logger
from src.storage.db import session_scope
from src.storage.models import MailAccount, MailCount, User


logger = get_logger("loomreach.billing.ledger")

_MAX_COMPARE_AND_SET_ATTEMPTS = 16


@dataclass(frozen=True)
class VideoQuotaDecision:
    allowed: bool
    user_id: str
    plan: str
    ceiling: int
    consumed: int
    requested: int
    permitted_count: int
    remaining: int


@dataclass(frozen=True)
class VideoQuotaCommit:
    user_id: str
    requested: int
    committed: int
    dropped: int
    consumed_after: int
    ceiling: int


@dataclass(frozen=True)
class EmailWindow:
    account_id: str
    window_date: date
    sent_today: int
    total_days_with_sends: int
    ceiling: int
    rolled: bool


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class QuotaLedger:
    """Read and atomically mutate video and email quota counters."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        quota_config: QuotaConfig | None = None,
        today_provider: Callable[[], date] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._quota_config = quota_config
        self._today_provider = today_provider or _utc_today

    @property
    def quota_config(self) -> QuotaConfig:
        if self._quota_config is not None:
            return self._quota_config
        return load_quota_config()

    def today(self) -> date:
        return self._today_provider()

    # Video quota

    def check_video_quota(self, user_id: str, requested: int) -> VideoQuotaDecision:
        if requested < 0:
            raise ValueError("Requested video count must not be negative")

        with self._session_factory() as session:
            row = session.execute(
                select(User.plan, User.videos_count).where(User.id == user_id)
            ).one_or_none()
        if row is None:
            raise LookupError("User not found")

        plan = str(row.plan or "")
        consumed = int(row.videos_count or 0)
        ceiling = self.quota_config.video_ceiling(plan)
        remaining = ceiling - consumed
        if remaining <= 0:
            return VideoQuotaDecision(
                allowed=False,
                user_id=user_id,
                plan=plan,
                ceiling=ceiling,
                consumed=consumed,
                requested=requested,
                permitted_count=0,
                remaining=0,
            )

        return VideoQuotaDecision(
            allowed=True,
            user_id=user_id,
            plan=plan,
            ceiling=ceiling,
            consumed=consumed,
            requested=requested,
            permitted_count=min(requested, remaining),
            remaining=remaining,
        )

    def commit_video_quota(self, user_id: str, actual: int) -> VideoQuotaCommit:
        """Add ``actual`` produced videos, clamped to the plan ceiling.

        The increment is a compare-and-set on the observed count, retried when
        another job committed in between. Whatever does not fit under the
        ceiling is reported as ``dropped``.
        """

        if actual <= 0:
            decision = self.check_video_quota(user_id, 0)
            return VideoQuotaCommit(
                user_id=user_id,
                requested=max(actual, 0),
                committed=0,
                dropped=0,
                consumed_after=decision.consumed,
                ceiling=decision.ceiling,
            )

        for _ in range(_MAX_COMPARE_AND_SET_ATTEMPTS):
            with session_scope(self._session_factory) as session:
                row = session.execute(
                    select(User.plan, User.videos_count).where(User.id == user_id)
                ).one_or_none()
                if row is None:
                    raise LookupError("User not found")

                consumed = int(row.videos_count or 0)
                ceiling = self.quota_config.video_ceiling(row.plan)
                grant = max(0, min(actual, ceiling - consumed))
                if grant == 0:
                    logger.warning(
                        "video_quota_commit_clamped_to_zero",
                        user_id=user_id,
                        requested=actual,
                        consumed=consumed,
                        ceiling=ceiling,
                    )
                    return VideoQuotaCommit(
                        user_id=user_id,
                        requested=actual,
                        committed=0,
                        dropped=actual,
                        consumed_after=consumed,
                        ceiling=ceiling,
                    )

                result = session.execute(
                    update(User)
                    .where(User.id == user_id, User.videos_count == consumed)
                    .values(videos_count=User.videos_count + grant)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue

            if grant < actual:
                logger.warning(
                    "video_quota_commit_clamped",
                    user_id=user_id,
                    requested=actual,
                    committed=grant,
                    ceiling=ceiling,
                )
            return VideoQuotaCommit(
                user_id=user_id,
                requested=actual,
                committed=grant,
                dropped=actual - grant,
                consumed_after=consumed + grant,
                ceiling=ceiling,
            )

        raise RuntimeError("video_quota_commit_contention")

    # Email quota

    def check_and_roll_email_window(self, account_id: str, *, today: Optional[date] = None) -> EmailWindow:
        """Roll the daily window once per calendar day and return today's ceiling."""

        reference_day = today or self.today()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(MailAccount)
                .where(
                    MailAccount.id == account_id,
                    or_(MailAccount.window_date.is_(None), MailAccount.window_date < reference_day),
                )
                .values(
                    window_date=reference_day,
                    sent_today=0,
                    total_days_with_sends=MailAccount.total_days_with_sends
                    + case((MailAccount.sent_today > 0, 1), else_=0),
                )
                .execution_options(synchronize_session=False)
            )
            rolled = result.rowcount == 1

        with self._session_factory() as session:
            row = session.execute(
                select(
                    MailAccount.window_date,
                    MailAccount.sent_today,
                    MailAccount.total_days_with_sends,
                ).where(MailAccount.id == account_id)
            ).one_or_none()
        if row is None:
            raise LookupError("Mail account not found")

        total_days = int(row.total_days_with_sends or 0)
        ceiling = self.quota_config.email_ceiling(total_days)
        if rolled:
            logger.info(
                "email_window_rolled",
                account_id=account_id,
                window_date=reference_day.isoformat(),
                total_days_with_sends=total_days,
                ceiling=ceiling,
            )
        return EmailWindow(
            account_id=account_id,
            window_date=row.window_date,
            sent_today=int(row.sent_today or 0),
            total_days_with_sends=total_days,
            ceiling=ceiling,
            rolled=rolled,
        )

    def reserve_email_send(self, account_id: str, ceiling: int, *, today: Optional[date] = None) -> bool:
        """Take one send slot for today; refused once ``sent_today`` reaches ``ceiling``."""

        reference_day = today or self.today()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(MailAccount)
                .where(
                    MailAccount.id == account_id,
                    MailAccount.window_date == reference_day,
                    MailAccount.sent_today < ceiling,
                )
                .values(sent_today=MailAccount.sent_today + 1)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def release_email_send(self, account_id: str, *, today: Optional[date] = None) -> None:
        """Give back a slot taken by ``reserve_email_send`` when the send failed."""

        reference_day = today or self.today()
        with session_scope(self._session_factory) as session:
            session.execute(
                update(MailAccount)
                .where(
                    MailAccount.id == account_id,
                    MailAccount.window_date == reference_day,
                    MailAccount.sent_today > 0,
                )
                .values(sent_today=MailAccount.sent_today - 1)
                .execution_options(synchronize_session=False)
            )

    def record_send_outcome(self, user_id: str, *, success: bool) -> None:
        column = "success_mails" if success else "failed_mails"
        for _ in range(2):
            try:
                with session_scope(self._session_factory) as session:
                    result = session.execute(
                        update(MailCount)
                        .where(MailCount.user_id == user_id)
                        .values({column: getattr(MailCount, column) + 1})
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        return
                    session.add(
                        MailCount(
                            user_id=user_id,
                            success_mails=1 if success else 0,
                            failed_mails=0 if success else 1,
                        )
                    )
                return
            except IntegrityError:
                # Another sender created the row first; retry as an update.
                continue
