"""Per-job pipeline: spreadsheet rows to uploaded videos to outreach emails."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import shutil
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from src.billing.ledger import QuotaLedger
from src.core.config import staging_root
from src.core.logger import get_logger
from src.ingestion.spreadsheet import parse_rows
from src.media.base import WebsiteRecorder
from src.pipeline.dispatch import EmailDispatcher
from src.pipeline.errors import LeaseLost, PipelineError, QuotaExceeded, ValidationError
from src.pipeline.merge_upload import MergeUploadStage
from src.pipeline.models import ArtifactRecord, CameraPlacement, DispatchReport, JobPayload
from src.pipeline.notifier import Notifier
from src.pipeline.recording import record_batch
from src.storage.db import session_scope
from src.storage.models import User, VideoArtifact


logger = get_logger("loomreach.pipeline.processor")

OUTCOME_COMPLETED = "completed"
OUTCOME_SKIPPED = "skipped"


@dataclass
class JobOutcome:
    job_id: str
    status: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    rows_total: int = 0
    rows_permitted: int = 0
    recorded: int = 0
    uploaded: int = 0
    committed: int = 0
    dispatch: Optional[Dict[str, Any]] = None
    stopped_at: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "results": list(self.results),
            "rows_total": self.rows_total,
            "rows_permitted": self.rows_permitted,
            "recorded": self.recorded,
            "uploaded": self.uploaded,
            "committed": self.committed,
            "dispatch": self.dispatch,
            "stopped_at": self.stopped_at,
        }


def _never_stop() -> bool:
    return False


def _noop_heartbeat() -> bool:
    return True


class _LeaseGuard:
    """Extends the job lease and remembers once the worker stops owning it."""

    def __init__(self, heartbeat: Callable[[], bool], should_stop: Callable[[], bool]) -> None:
        self._heartbeat = heartbeat
        self._should_stop = should_stop
        self.lost = False

    def beat(self) -> None:
        if self.lost or self._heartbeat():
            return
        self.lost = True
        logger.warning("job_lease_lost")

    def check(self) -> bool:
        self.beat()
        return self.lost or self._should_stop()

    def ensure_owned(self, stage: str) -> None:
        self.beat()
        if self.lost:
            raise LeaseLost(f"job_lease_lost stage={stage}")


def upsert_artifacts(
    session_factory: sessionmaker,
    *,
    user_id: str,
    job_id: str,
    folder_id: Optional[str],
    artifacts: Sequence[ArtifactRecord],
) -> int:
    """Insert or refresh one ``video_artifacts`` row per (user_id, job_id, row_index)."""

    if not artifacts:
        return 0

    with session_scope(session_factory) as session:
        existing = {
            artifact.row_index: artifact
            for artifact in session.scalars(
                select(VideoArtifact).where(
                    VideoArtifact.user_id == user_id,
                    VideoArtifact.job_id == job_id,
                )
            )
        }
        for record in artifacts:
            row = record.row
            target = existing.get(row.index)
            if target is None:
                target = VideoArtifact(user_id=user_id, job_id=job_id, row_index=row.index)
                session.add(target)
            target.folder_id = folder_id
            target.source_url = row.target_url
            target.remote_url = record.remote_url
            target.recipient_email = row.recipient_email
            target.recipient_name = row.recipient_name
            target.recipient_company = row.recipient_company
            target.recipient_title = row.recipient_title
    return len(artifacts)


class JobProcessor:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        ledger: QuotaLedger,
        recorder: WebsiteRecorder,
        merge_upload: MergeUploadStage,
        dispatcher: EmailDispatcher,
        notifier: Notifier,
        work_dir: str,
        recording_concurrency: int = 2,
        delete_inputs: bool = True,
        staging_dir: Optional[str] = None,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._recorder = recorder
        self._merge_upload = merge_upload
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._work_dir = work_dir
        self._recording_concurrency = recording_concurrency
        self._delete_inputs = delete_inputs
        self._staging_dir = Path(staging_dir) if staging_dir else staging_root(work_dir)

    def process(
        self,
        job_id: str,
        payload: Dict[str, Any],
        *,
        heartbeat: Callable[[], bool] = _noop_heartbeat,
        should_stop: Callable[[], bool] = _never_stop,
    ) -> JobOutcome:
        """Run every stage for one job.

        Raises ``ValidationError`` or ``QuotaExceeded`` for jobs that cannot
        start. When ``should_stop`` turns True at a stage boundary the job
        ends early with status ``skipped`` and whatever it produced so far.

        ``heartbeat`` runs between rows and sends. Once it returns False the
        job belongs to another attempt: ``LeaseLost`` is raised before any
        quota is committed, and the inputs are left for that attempt.
        """

        job_payload: Optional[JobPayload] = None
        attempt_dir = Path(self._work_dir) / f"{job_id}-{uuid4().hex[:8]}"
        keep_inputs = False
        try:
            job_payload = JobPayload.from_dict(payload)
            outcome = self._run(
                job_id,
                job_payload,
                attempt_dir=attempt_dir,
                guard=_LeaseGuard(heartbeat, should_stop),
                should_stop=should_stop,
            )
        except LeaseLost:
            keep_inputs = True
            raise
        except PipelineError as exc:
            if job_payload is not None:
                self._notifier.notify(job_payload.user_id, exc.user_message, details={"job_id": job_id})
            raise
        finally:
            shutil.rmtree(attempt_dir, ignore_errors=True)
            if job_payload is not None and not keep_inputs:
                self._cleanup_inputs(job_payload)

        self._notifier.notify(job_payload.user_id, self._summary_message(outcome), details=outcome.as_dict())
        return outcome

    def _run(
        self,
        job_id: str,
        payload: JobPayload,
        *,
        attempt_dir: Path,
        guard: _LeaseGuard,
        should_stop: Callable[[], bool],
    ) -> JobOutcome:
        user_id = payload.user_id
        outcome = JobOutcome(job_id=job_id, status=OUTCOME_COMPLETED)

        if not Path(payload.overlay_video_path).exists():
            raise ValidationError(f"overlay_video_not_found path={payload.overlay_video_path}")
        rows = parse_rows(payload.spreadsheet_path)
        if not rows:
            raise ValidationError("spreadsheet_has_no_valid_rows")
        outcome.rows_total = len(rows)

        requested = min(payload.requested_video_count or len(rows), len(rows))
        try:
            decision = self._ledger.check_video_quota(user_id, requested)
        except LookupError as exc:
            raise ValidationError(f"user_not_found user_id={user_id}") from exc
        if not decision.allowed:
            raise QuotaExceeded(ceiling=decision.ceiling, consumed=decision.consumed, plan=decision.plan)
        rows = rows[:decision.permitted_count]
        outcome.rows_permitted = len(rows)
        logger.info(
            "job_rows_admitted",
            rows_total=outcome.rows_total,
            rows_permitted=len(rows),
            remaining_quota=decision.remaining,
        )

        account, window = self._dispatcher.email_capacity(user_id)
        dispatch_enabled = account is not None and window is not None and window.sent_today < window.ceiling
        if account is not None and not dispatch_enabled:
            logger.warning("email_daily_ceiling_exhausted", provider=account.provider)
        guard.ensure_owned("recording")

        if should_stop():
            return self._stopped(outcome, "recording")
        recordings = record_batch(
            rows,
            recorder=self._recorder,
            output_dir=str(attempt_dir),
            concurrency_limit=self._recording_concurrency,
            should_stop=guard.check,
        )
        outcome.recorded = sum(1 for recording in recordings if recording.succeeded)
        guard.ensure_owned("merge_upload")

        if should_stop():
            for recording in recordings:
                if recording.local_video_path:
                    Path(recording.local_video_path).unlink(missing_ok=True)
            return self._stopped(outcome, "merge_upload")
        artifacts = self._merge_upload.merge_and_upload(
            recordings,
            payload.overlay_video_path,
            placement=self._camera_placement(user_id),
            should_stop=guard.check,
        )
        outcome.uploaded = len(artifacts)
        guard.ensure_owned("commit")

        commit = self._ledger.commit_video_quota(user_id, len(artifacts))
        artifacts = artifacts[:commit.committed]
        outcome.committed = commit.committed
        outcome.results = [artifact.as_result() for artifact in artifacts]

        stopped = should_stop()
        if dispatch_enabled and not stopped:
            report = self._dispatcher.dispatch(user_id, artifacts, account=account, should_stop=guard.check)
        else:
            report = DispatchReport(provider=account.provider if account is not None else None, skipped=len(artifacts))
            if account is None and artifacts:
                logger.warning("email_dispatch_skipped_no_provider", artifacts=len(artifacts))
        outcome.dispatch = report.as_dict()
        guard.beat()
        if guard.lost:
            # Quota is already committed; keep the artifacts and report the job as stopped.
            stopped = True

        upsert_artifacts(
            self._session_factory,
            user_id=user_id,
            job_id=job_id,
            folder_id=payload.folder_id,
            artifacts=artifacts,
        )
        if stopped:
            return self._stopped(outcome, "dispatch")

        logger.info(
            "job_processed",
            uploaded=outcome.uploaded,
            committed=outcome.committed,
            emails_sent=report.sent,
            emails_failed=report.failed,
        )
        return outcome

    def _stopped(self, outcome: JobOutcome, stage: str) -> JobOutcome:
        outcome.status = OUTCOME_SKIPPED
        outcome.stopped_at = stage
        logger.warning("job_stopped_at_boundary", stage=stage, produced=len(outcome.results))
        return outcome

    def _camera_placement(self, user_id: str) -> CameraPlacement:
        with self._session_factory() as session:
            row = session.execute(
                select(User.camera_position, User.camera_size).where(User.id == user_id)
            ).one_or_none()
        if row is None:
            return CameraPlacement()
        return CameraPlacement.from_settings(row.camera_position, row.camera_size)

    @staticmethod
    def _summary_message(outcome: JobOutcome) -> str:
        if outcome.status == OUTCOME_SKIPPED:
            return f"Processing was stopped early: {len(outcome.results)} videos were produced."
        sent = (outcome.dispatch or {}).get("sent", 0)
        return f"{len(outcome.results)} videos produced, {sent} emails sent."

    def _cleanup_inputs(self, payload: JobPayload) -> None:
        if not self._delete_inputs:
            return
        root = self._staging_dir.resolve()
        parents = set()
        for path in (payload.spreadsheet_path, payload.overlay_video_path):
            resolved = Path(path).resolve()
            if root not in resolved.parents:
                logger.warning("job_input_cleanup_refused", path=path)
                continue
            parents.add(resolved.parent)
            try:
                os.remove(resolved)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("job_input_cleanup_failed", path=path, error=str(exc))
        for directory in parents:
            if directory != root:
                try:
                    directory.rmdir()
                except OSError:
                    continue
