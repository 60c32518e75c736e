"""Error taxonomy for the video outreach pipeline."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for pipeline errors."""

    user_message = "Video processing failed."


class ValidationError(PipelineError):
    """Job payload or spreadsheet content is unusable. Never retried."""

    user_message = "The uploaded spreadsheet could not be processed."


class QuotaExceeded(PipelineError):
    """The user's plan has no video quota left. Never retried."""

    def __init__(self, *, ceiling: int, consumed: int, plan: str) -> None:
        self.ceiling = ceiling
        self.consumed = consumed
        self.plan = plan
        super().__init__(f"video_quota_exceeded plan={plan} consumed={consumed} ceiling={ceiling}")

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return f"Video limit reached: your plan allows up to {self.ceiling} videos."


class RecordingFailure(PipelineError):
    """Website recording failed for one row."""


class MergeFailure(PipelineError):
    """Overlay merge failed for one row."""


class UploadFailure(PipelineError):
    """Object storage upload failed for one row."""


class SendFailure(PipelineError):
    """Outreach email could not be delivered to one recipient."""


class BrokerFailure(PipelineError):
    """The queue broker is unreachable; the worker pool must be rebuilt."""


class JobTerminated(PipelineError):
    """Raised into pending completion futures when termination wipes them."""

    user_message = "Processing was stopped by an operator."


class LeaseLost(PipelineError):
    """The worker no longer owns the job; another attempt will redeliver it."""
