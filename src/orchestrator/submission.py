"""Turn staged uploads (or explicit paths) into queued jobs with completion futures."""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional
import uuid

from src.core.logger import get_logger
from src.orchestrator.completion import JobCompletionRegistry
from src.orchestrator.queue import RedisJobQueue
from src.orchestrator.staging import UPLOAD_KIND_OVERLAY, UPLOAD_KIND_SPREADSHEET, UploadStaging
from src.pipeline.errors import ValidationError
from src.pipeline.models import JobPayload


logger = get_logger("loomreach.orchestrator.submission")


@dataclass(frozen=True)
class Submission:
    job_id: str
    future: Future


class JobSubmissionService:
    def __init__(
        self,
        *,
        queue: RedisJobQueue,
        completions: JobCompletionRegistry,
        staging: UploadStaging,
    ) -> None:
        self._queue = queue
        self._completions = completions
        self._staging = staging

    def submit(
        self,
        *,
        user_id: str,
        upload_token: Optional[str] = None,
        spreadsheet_path: Optional[str] = None,
        overlay_video_path: Optional[str] = None,
        requested_video_count: Optional[int] = None,
        folder_id: Optional[str] = None,
    ) -> Submission:
        if upload_token:
            staged = self._staging.get(upload_token)
            spreadsheet_path = spreadsheet_path or staged.get(UPLOAD_KIND_SPREADSHEET)
            overlay_video_path = overlay_video_path or staged.get(UPLOAD_KIND_OVERLAY)
            if not spreadsheet_path or not overlay_video_path:
                raise ValidationError(f"upload_token_incomplete token={upload_token}")

        payload = JobPayload.from_dict(
            {
                "spreadsheet_path": spreadsheet_path,
                "overlay_video_path": overlay_video_path,
                "user_id": user_id,
                "requested_video_count": requested_video_count,
                "folder_id": folder_id,
            }
        )

        job_id = str(uuid.uuid4())
        future = self._completions.register(job_id)
        try:
            self._queue.enqueue(payload.to_dict(), job_id=job_id)
        except Exception:
            self._completions.discard(job_id)
            raise
        if upload_token:
            self._staging.consume(upload_token)

        logger.info("job_submitted", job_id=job_id, user_id=user_id, folder_id=folder_id)
        return Submission(job_id=job_id, future=future)
