"""Process-wide wiring of the pipeline: queue, workers, termination control."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from src.billing.ledger import QuotaLedger
from src.core.config import get_settings
from src.integrations.copywriter.client import get_copywriter_client
from src.integrations.storage.upload_client import get_object_storage_client
from src.media.merger import get_overlay_merger
from src.media.recorder import get_website_recorder
from src.orchestrator.completion import JobCompletionRegistry
from src.orchestrator.queue import RedisJobQueue
from src.orchestrator.staging import UploadStaging
from src.orchestrator.submission import JobSubmissionService
from src.orchestrator.termination import TerminationController
from src.orchestrator.termination_flag import TerminationFlag
from src.orchestrator.worker_pool import WorkerPool, resolve_pool_size
from src.pipeline.composer import OutreachComposer
from src.pipeline.dispatch import EmailDispatcher
from src.pipeline.merge_upload import MergeUploadStage
from src.pipeline.notifier import Notifier
from src.pipeline.processor import JobProcessor
from src.storage.db import get_session_factory
from src.storage.redis_client import get_client, reset_client
from src.storage.redis_client import test_connection as test_redis_connection


@dataclass(frozen=True)
class PipelineRuntime:
    queue: RedisJobQueue
    completions: JobCompletionRegistry
    staging: UploadStaging
    submissions: JobSubmissionService
    termination_flag: TerminationFlag
    controller: TerminationController
    processor: JobProcessor


def build_job_processor() -> JobProcessor:
    settings = get_settings()
    session_factory = get_session_factory()
    ledger = QuotaLedger(session_factory)
    return JobProcessor(
        session_factory=session_factory,
        ledger=ledger,
        recorder=get_website_recorder(),
        merge_upload=MergeUploadStage(
            merger=get_overlay_merger(),
            uploader=get_object_storage_client(),
            output_dir=settings.work_dir,
            max_workers=settings.merge_upload_max_workers,
        ),
        dispatcher=EmailDispatcher(
            session_factory=session_factory,
            ledger=ledger,
            composer=OutreachComposer(get_copywriter_client()),
            delay_range_seconds=(
                settings.email_send_delay_min_seconds,
                settings.email_send_delay_max_seconds,
            ),
        ),
        notifier=Notifier(get_client),
        work_dir=settings.work_dir,
        recording_concurrency=settings.recording_concurrency,
        delete_inputs=settings.delete_inputs_after_job,
    )


@lru_cache(maxsize=1)
def get_pipeline_runtime() -> PipelineRuntime:
    settings = get_settings()
    queue = RedisJobQueue(
        get_client,
        name=settings.queue_name,
        lease_seconds=settings.queue_lease_seconds,
        max_attempts=settings.queue_max_attempts,
    )
    completions = JobCompletionRegistry()
    staging = UploadStaging(get_client, ttl_seconds=settings.upload_staging_ttl_seconds)
    flag = TerminationFlag(get_client, queue_name=settings.queue_name)
    processor = build_job_processor()
    concurrency = resolve_pool_size(settings.worker_concurrency)

    controller: TerminationController

    def pool_factory(generation: int) -> WorkerPool:
        return WorkerPool(
            queue=queue,
            processor=processor,
            completions=completions,
            termination_flag=flag,
            concurrency=concurrency,
            poll_interval_seconds=settings.worker_poll_interval_seconds,
            on_broker_failure=lambda exc: controller.handle_broker_failure(exc),
            generation=generation,
        )

    controller = TerminationController(
        pool_factory=pool_factory,
        queue=queue,
        completions=completions,
        termination_flag=flag,
        grace_period_seconds=settings.termination_grace_period_seconds,
        reconnect_backoff_seconds=settings.broker_reconnect_backoff_seconds,
        reconnect_backoff_max_seconds=settings.broker_reconnect_backoff_max_seconds,
        broker_check=test_redis_connection,
        broker_reset=reset_client,
    )
    return PipelineRuntime(
        queue=queue,
        completions=completions,
        staging=staging,
        submissions=JobSubmissionService(queue=queue, completions=completions, staging=staging),
        termination_flag=flag,
        controller=controller,
        processor=processor,
    )


def reset_pipeline_runtime() -> None:
    if get_pipeline_runtime.cache_info().currsize:
        get_pipeline_runtime().controller.shutdown(timeout=0)
    get_pipeline_runtime.cache_clear()
