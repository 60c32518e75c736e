from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
from pathlib import Path

import pytest
from sqlalchemy import select

from src.billing.ledger import QuotaLedger
from src.pipeline.composer import OutreachComposer
from src.pipeline.dispatch import EmailDispatcher
from src.pipeline.errors import LeaseLost, QuotaExceeded, ValidationError
from src.pipeline.merge_upload import MergeUploadStage
from src.pipeline.notifier import Notifier, notification_channel
from src.pipeline.processor import JobProcessor
from src.storage.models import User, VideoArtifact
from tests.conftest import (
    FakeMailSender,
    FakeMerger,
    FakeRecorder,
    FakeUploader,
    build_session_factory,
    seed_mail_account,
    seed_user,
    write_spreadsheet,
)


@dataclass
class ProcessorHarness:
    processor: JobProcessor
    session_factory: object
    recorder: FakeRecorder
    merger: FakeMerger
    uploader: FakeUploader
    sender: FakeMailSender
    fake_redis: object
    tmp_path: Path


def _build(tmp_path: Path, fake_redis, quota_config, *, recorder: FakeRecorder | None = None) -> ProcessorHarness:
    factory = build_session_factory()
    ledger = QuotaLedger(
        factory,
        quota_config=quota_config,
        today_provider=lambda: datetime.now(timezone.utc).date(),
    )
    recorder = recorder or FakeRecorder()
    merger = FakeMerger()
    uploader = FakeUploader()
    sender = FakeMailSender()
    processor = JobProcessor(
        session_factory=factory,
        ledger=ledger,
        recorder=recorder,
        merge_upload=MergeUploadStage(merger=merger, uploader=uploader, output_dir=str(tmp_path / "merged")),
        dispatcher=EmailDispatcher(
            session_factory=factory,
            ledger=ledger,
            composer=OutreachComposer(),
            sender_factory=lambda account: sender,
            delay_range_seconds=(0.0, 0.0),
            sleeper=lambda seconds: None,
        ),
        notifier=Notifier(lambda: fake_redis),
        work_dir=str(tmp_path / "work"),
        recording_concurrency=2,
    )
    return ProcessorHarness(processor, factory, recorder, merger, uploader, sender, fake_redis, tmp_path)


def _inputs(tmp_path: Path, rows, *, directory: Path | None = None) -> tuple[str, str]:
    directory = directory or tmp_path / "work" / "staged" / "token_abc12345"
    spreadsheet = write_spreadsheet(directory / "leads.xlsx", rows)
    overlay = directory / "overlay.webm"
    overlay.write_bytes(b"camera")
    return str(spreadsheet), str(overlay)


def _three_rows():
    return [
        ("a@example.test", "Alice", "alpha.example.test", "Alpha", "CEO"),
        ("b@example.test", "Bob", "https://beta.example.test", "Beta", "CTO"),
        ("c@example.test", "Cara", "gamma.example.test", "Gamma", "COO"),
    ]


def test_end_to_end_job_produces_artifacts_and_emails(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="trial", camera_position="top-left", camera_size="large")
    seed_mail_account(harness.session_factory, user_id, provider="google")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    outcome = harness.processor.process(
        "job-1",
        {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id, "folder_id": "folder-9"},
    )

    assert outcome.status == "completed"
    assert [result["source_url"] for result in outcome.results] == [
        "https://alpha.example.test",
        "https://beta.example.test",
        "https://gamma.example.test",
    ]
    assert outcome.committed == 3
    assert outcome.dispatch["sent"] == 3
    assert len(harness.sender.sent) == 3
    assert {placement.position for placement in harness.merger.placements} == {"top-left"}

    with harness.session_factory() as session:
        assert session.scalar(select(User.videos_count).where(User.id == user_id)) == 3
        artifacts = list(session.scalars(select(VideoArtifact).order_by(VideoArtifact.row_index)))
    assert [artifact.row_index for artifact in artifacts] == [0, 1, 2]
    assert {artifact.folder_id for artifact in artifacts} == {"folder-9"}
    assert artifacts[1].recipient_email == "b@example.test"

    assert not Path(spreadsheet).exists()
    assert not Path(overlay).exists()
    channel, message = fake_redis.published[-1]
    assert channel == notification_channel(user_id)
    assert "3 videos produced" in json.loads(message)["message"]


def test_rows_are_truncated_to_remaining_quota(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="trial", videos_count=8)
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    outcome = harness.processor.process(
        "job-2",
        {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
    )

    assert outcome.rows_total == 3
    assert outcome.rows_permitted == 2
    assert len(harness.recorder.calls) == 2
    assert outcome.committed == 2
    with harness.session_factory() as session:
        assert session.scalar(select(User.videos_count).where(User.id == user_id)) == 10


def test_requested_count_limits_rows(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    outcome = harness.processor.process(
        "job-3",
        {
            "spreadsheet_path": spreadsheet,
            "overlay_video_path": overlay,
            "user_id": user_id,
            "requested_video_count": 1,
        },
    )

    assert outcome.rows_permitted == 1
    assert len(outcome.results) == 1


def test_no_mail_provider_skips_dispatch(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    outcome = harness.processor.process(
        "job-4",
        {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
    )

    assert outcome.status == "completed"
    assert len(outcome.results) == 3
    assert outcome.dispatch["sent"] == 0
    assert outcome.dispatch["skipped"] == 3
    assert harness.sender.sent == []


def test_failed_recordings_become_partial_results(tmp_path, fake_redis, quota_config) -> None:
    recorder = FakeRecorder(fail_urls={"https://beta.example.test"})
    harness = _build(tmp_path, fake_redis, quota_config, recorder=recorder)
    user_id = seed_user(harness.session_factory, plan="gold")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    outcome = harness.processor.process(
        "job-5",
        {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
    )

    assert outcome.recorded == 2
    assert [result["source_url"] for result in outcome.results] == [
        "https://alpha.example.test",
        "https://gamma.example.test",
    ]
    assert outcome.committed == 2


def test_quota_exhausted_fails_job_and_notifies(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="trial", videos_count=10)
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    with pytest.raises(QuotaExceeded):
        harness.processor.process(
            "job-6",
            {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
        )

    assert harness.recorder.calls == []
    assert "Video limit reached" in json.loads(fake_redis.published[-1][1])["message"]


def test_empty_spreadsheet_is_a_validation_error(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    spreadsheet, overlay = _inputs(tmp_path, [("", "No Email", "site.example.test", "", "")])

    with pytest.raises(ValidationError):
        harness.processor.process(
            "job-7",
            {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
        )


def test_missing_payload_fields_are_rejected(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)

    with pytest.raises(ValidationError):
        harness.processor.process("job-8", {"spreadsheet_path": "leads.xlsx"})


def test_stop_before_recording_ends_job_as_skipped(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    outcome = harness.processor.process(
        "job-9",
        {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
        should_stop=lambda: True,
    )

    assert outcome.status == "skipped"
    assert outcome.stopped_at == "recording"
    assert outcome.results == []
    assert harness.recorder.calls == []
    with harness.session_factory() as session:
        assert session.scalar(select(User.videos_count).where(User.id == user_id)) == 0


def test_staged_inputs_are_removed_with_their_token_dir(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    harness.processor.process(
        "job-10",
        {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
    )

    assert not Path(spreadsheet).parent.exists()
    assert (tmp_path / "work" / "staged").is_dir()
    assert [path.name for path in (tmp_path / "work").iterdir()] == ["staged"]


def test_inputs_outside_staging_dir_are_never_deleted(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    (tmp_path / "work" / "staged").mkdir(parents=True)
    spreadsheet, overlay = _inputs(tmp_path, _three_rows(), directory=tmp_path / "shared")
    broken_sheet, broken_overlay = _inputs(
        tmp_path,
        [("", "No Email", "site.example.test", "", "")],
        directory=tmp_path / "work" / "staged" / ".." / ".." / "other",
    )

    harness.processor.process(
        "job-11",
        {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
    )
    with pytest.raises(ValidationError):
        harness.processor.process(
            "job-12",
            {"spreadsheet_path": broken_sheet, "overlay_video_path": broken_overlay, "user_id": user_id},
        )

    assert Path(spreadsheet).exists()
    assert Path(overlay).exists()
    assert (tmp_path / "other" / "leads.xlsx").exists()
    assert (tmp_path / "other" / "overlay.webm").exists()


def test_lost_lease_before_recording_abandons_job(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    seed_mail_account(harness.session_factory, user_id, provider="google")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    with pytest.raises(LeaseLost):
        harness.processor.process(
            "job-13",
            {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
            heartbeat=lambda: False,
        )

    assert harness.recorder.calls == []
    assert harness.sender.sent == []
    assert fake_redis.published == []
    assert Path(spreadsheet).exists()
    assert Path(overlay).exists()
    with harness.session_factory() as session:
        assert session.scalar(select(User.videos_count).where(User.id == user_id)) == 0


def test_lease_lost_during_recording_commits_no_quota(tmp_path, fake_redis, quota_config) -> None:
    harness = _build(tmp_path, fake_redis, quota_config)
    user_id = seed_user(harness.session_factory, plan="gold")
    spreadsheet, overlay = _inputs(tmp_path, _three_rows())

    with pytest.raises(LeaseLost):
        harness.processor.process(
            "job-14",
            {"spreadsheet_path": spreadsheet, "overlay_video_path": overlay, "user_id": user_id},
            heartbeat=lambda: len(harness.recorder.calls) < 3,
        )

    assert len(harness.recorder.calls) == 3
    assert harness.merger.placements == []
    assert harness.uploader.uploaded == []
    with harness.session_factory() as session:
        assert session.scalar(select(User.videos_count).where(User.id == user_id)) == 0
        assert list(session.scalars(select(VideoArtifact))) == []
    assert [path.name for path in (tmp_path / "work").iterdir()] == ["staged"]
