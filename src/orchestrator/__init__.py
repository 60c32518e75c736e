"""Job queue, worker pool and termination control for the video pipeline."""

from src.orchestrator.completion import JobCompletionRegistry
from src.orchestrator.queue import ClaimedJob, RedisJobQueue
from src.orchestrator.staging import UploadStaging
from src.orchestrator.submission import JobSubmissionService, Submission
from src.orchestrator.termination import TerminationAck, TerminationController
from src.orchestrator.termination_flag import TerminationFlag
from src.orchestrator.worker_pool import WorkerPool, resolve_pool_size

__all__ = [
    "ClaimedJob",
    "JobCompletionRegistry",
    "JobSubmissionService",
    "RedisJobQueue",
    "Submission",
    "TerminationAck",
    "TerminationController",
    "TerminationFlag",
    "UploadStaging",
    "WorkerPool",
    "resolve_pool_size",
]
