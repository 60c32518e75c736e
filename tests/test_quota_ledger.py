from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from src.billing.ledger import QuotaLedger
from src.storage.models import MailAccount, MailCount, User
from tests.conftest import build_session_factory, seed_mail_account, seed_user


TODAY = date(2026, 10, 19)


def _ledger(session_factory, quota_config) -> QuotaLedger:
    return QuotaLedger(session_factory, quota_config=quota_config, today_provider=lambda: TODAY)


def test_check_video_quota_reports_permitted_count(quota_config) -> None:
    factory = build_session_factory()
    user_id = seed_user(factory, plan="trial", videos_count=7)
    ledger = _ledger(factory, quota_config)

    decision = ledger.check_video_quota(user_id, 5)

    assert decision.allowed is True
    assert decision.ceiling == 10
    assert decision.consumed == 7
    assert decision.remaining == 3
    assert decision.permitted_count == 3


def test_check_video_quota_denies_exhausted_and_unknown_plans(quota_config) -> None:
    factory = build_session_factory()
    exhausted = seed_user(factory, plan="trial", videos_count=10)
    unknown = seed_user(factory, plan="platinum", videos_count=0)
    ledger = _ledger(factory, quota_config)

    assert ledger.check_video_quota(exhausted, 1).allowed is False
    decision = ledger.check_video_quota(unknown, 1)
    assert decision.allowed is False
    assert decision.ceiling == 0

    with pytest.raises(LookupError):
        ledger.check_video_quota("missing-user", 1)


def test_commit_video_quota_clamps_to_ceiling(quota_config) -> None:
    factory = build_session_factory()
    user_id = seed_user(factory, plan="trial", videos_count=8)
    ledger = _ledger(factory, quota_config)

    commit = ledger.commit_video_quota(user_id, 5)

    assert commit.committed == 2
    assert commit.dropped == 3
    assert commit.consumed_after == 10
    with factory() as session:
        assert session.scalar(select(User.videos_count).where(User.id == user_id)) == 10


def test_concurrent_commits_never_exceed_ceiling(tmp_path, quota_config) -> None:
    factory = build_session_factory(tmp_path / "ledger.sqlite")
    user_id = seed_user(factory, plan="trial", videos_count=0)
    ledger = _ledger(factory, quota_config)

    with ThreadPoolExecutor(max_workers=4) as executor:
        commits = list(executor.map(lambda _: ledger.commit_video_quota(user_id, 3), range(6)))

    assert sum(commit.committed for commit in commits) == 10
    with factory() as session:
        assert session.scalar(select(User.videos_count).where(User.id == user_id)) == 10


def test_email_window_rolls_once_per_day(quota_config) -> None:
    factory = build_session_factory()
    user_id = seed_user(factory)
    account_id = seed_mail_account(
        factory,
        user_id,
        sent_today=12,
        total_days_with_sends=3,
        window_date=TODAY - timedelta(days=1),
    )
    ledger = _ledger(factory, quota_config)

    first = ledger.check_and_roll_email_window(account_id)
    second = ledger.check_and_roll_email_window(account_id)

    assert first.rolled is True
    assert first.sent_today == 0
    assert first.total_days_with_sends == 4
    assert first.ceiling == 70
    assert second.rolled is False
    assert second.total_days_with_sends == 4


def test_email_window_roll_without_sends_keeps_day_count(quota_config) -> None:
    factory = build_session_factory()
    user_id = seed_user(factory)
    account_id = seed_mail_account(
        factory,
        user_id,
        sent_today=0,
        total_days_with_sends=2,
        window_date=TODAY - timedelta(days=3),
    )
    ledger = _ledger(factory, quota_config)

    window = ledger.check_and_roll_email_window(account_id)

    assert window.rolled is True
    assert window.total_days_with_sends == 2
    assert window.ceiling == 30


def test_reserve_email_send_refuses_at_ceiling_and_release_returns_slot(quota_config) -> None:
    factory = build_session_factory()
    user_id = seed_user(factory)
    account_id = seed_mail_account(factory, user_id, sent_today=29, window_date=TODAY)
    ledger = _ledger(factory, quota_config)
    window = ledger.check_and_roll_email_window(account_id)

    assert ledger.reserve_email_send(account_id, window.ceiling) is True
    assert ledger.reserve_email_send(account_id, window.ceiling) is False

    ledger.release_email_send(account_id)
    assert ledger.reserve_email_send(account_id, window.ceiling) is True


def test_concurrent_reservations_never_exceed_ceiling(tmp_path, quota_config) -> None:
    factory = build_session_factory(tmp_path / "email.sqlite")
    user_id = seed_user(factory)
    account_id = seed_mail_account(factory, user_id, sent_today=0, window_date=TODAY)
    ledger = _ledger(factory, quota_config)
    ceiling = ledger.check_and_roll_email_window(account_id).ceiling

    with ThreadPoolExecutor(max_workers=8) as executor:
        granted = list(executor.map(lambda _: ledger.reserve_email_send(account_id, ceiling), range(50)))

    assert sum(1 for result in granted if result) == ceiling
    with factory() as session:
        assert session.scalar(select(MailAccount.sent_today).where(MailAccount.id == account_id)) == ceiling


def test_record_send_outcome_creates_and_increments_counters(quota_config) -> None:
    factory = build_session_factory()
    user_id = seed_user(factory)
    ledger = _ledger(factory, quota_config)

    ledger.record_send_outcome(user_id, success=True)
    ledger.record_send_outcome(user_id, success=True)
    ledger.record_send_outcome(user_id, success=False)

    with factory() as session:
        counts = session.scalar(select(MailCount).where(MailCount.user_id == user_id))
    assert counts.success_mails == 2
    assert counts.failed_mails == 1
