"""Thread worker pool that claims jobs from the queue and runs the processor."""

from __future__ import annotations

import os
import threading
import time
from typing import Callable, List, Optional

from src.core import metrics
from src.core.logger import bind_job_context, clear_job_context, get_logger
from src.core.observability import capture_exception, job_scope
from src.orchestrator.completion import JobCompletionRegistry
from src.orchestrator.queue import ClaimedJob, RedisJobQueue
from src.orchestrator.termination_flag import TerminationFlag
from src.pipeline.errors import BrokerFailure, LeaseLost, PipelineError
from src.pipeline.processor import OUTCOME_SKIPPED, JobOutcome, JobProcessor


logger = get_logger("loomreach.orchestrator.worker_pool")


def resolve_pool_size(configured: int) -> int:
    if configured > 0:
        return configured
    return max(1, (os.cpu_count() or 1) - 1)


class WorkerPool:
    def __init__(
        self,
        *,
        queue: RedisJobQueue,
        processor: JobProcessor,
        completions: JobCompletionRegistry,
        termination_flag: TerminationFlag,
        concurrency: int,
        poll_interval_seconds: float = 1.0,
        on_broker_failure: Optional[Callable[[BrokerFailure], None]] = None,
        generation: int = 1,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self._queue = queue
        self._processor = processor
        self._completions = completions
        self._flag = termination_flag
        self._concurrency = concurrency
        self._poll_interval = max(0.01, poll_interval_seconds)
        self._on_broker_failure = on_broker_failure
        self._generation = generation
        self._closing = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def closing(self) -> bool:
        return self._closing.is_set()

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("worker pool already started")
        for index in range(self._concurrency):
            worker_id = f"{os.getpid()}-g{self._generation}-w{index}"
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker_id,),
                name=f"pipeline-worker-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.info("worker_pool_started", concurrency=self._concurrency, generation=self._generation)

    def close(self) -> None:
        """Stop claiming new jobs; jobs in progress run to their next boundary."""

        self._closing.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        alive = [thread.name for thread in self._threads if thread.is_alive()]
        if alive:
            logger.warning("worker_pool_join_timed_out", alive=alive)
            return False
        return True

    def alive_count(self) -> int:
        return sum(1 for thread in self._threads if thread.is_alive())

    def _worker_loop(self, worker_id: str) -> None:
        while not self._closing.is_set():
            try:
                if self._flag.is_set():
                    self._closing.wait(self._poll_interval)
                    continue
                self._queue.requeue_expired()
                job = self._queue.claim(worker_id)
                if job is None:
                    self._closing.wait(self._poll_interval)
                    continue
                self._run_job(job)
            except BrokerFailure as exc:
                logger.error("worker_broker_failure", worker_id=worker_id, error=str(exc))
                self._closing.set()
                if self._on_broker_failure is not None:
                    # The handler rebuilds this pool, so it cannot run on a pool thread.
                    threading.Thread(
                        target=self._on_broker_failure,
                        args=(exc,),
                        name="broker-failure-handler",
                        daemon=True,
                    ).start()
                return
        logger.info("worker_stopped", worker_id=worker_id)

    def _run_job(self, job: ClaimedJob) -> None:
        user_id = str(job.payload.get("user_id") or "") or None
        bind_job_context(job.job_id, user_id)
        try:
            if self._flag.is_set():
                outcome = JobOutcome(job_id=job.job_id, status=OUTCOME_SKIPPED, stopped_at="claim")
                self._queue.skip(job.job_id, job.worker_id, outcome.as_dict())
                self._completions.resolve(job.job_id, outcome)
                metrics.record_job(status="skipped")
                return

            try:
                with job_scope(job_id=job.job_id, user_id=user_id):
                    outcome = self._processor.process(
                        job.job_id,
                        job.payload,
                        heartbeat=lambda: self._queue.extend_lease(job.job_id, job.worker_id),
                        should_stop=self._should_stop,
                    )
            except BrokerFailure:
                raise
            except LeaseLost as exc:
                # Another attempt owns the job now and settles its completion.
                logger.warning("job_abandoned_lease_lost", error=str(exc))
                metrics.record_job(status="abandoned")
                return
            except PipelineError as exc:
                self._fail(job, exc, reason=exc.user_message)
                return
            except Exception as exc:
                logger.exception("job_processing_crashed", error=str(exc))
                capture_exception(exc)
                self._fail(job, exc, reason="Video processing failed.")
                return

            if outcome.status == OUTCOME_SKIPPED:
                self._queue.skip(job.job_id, job.worker_id, outcome.as_dict())
            else:
                self._queue.complete(job.job_id, job.worker_id, outcome.as_dict())
            self._completions.resolve(job.job_id, outcome)
            metrics.record_job(status=outcome.status)
        finally:
            clear_job_context()

    def _should_stop(self) -> bool:
        return self._closing.is_set() or self._flag.is_set()

    def _fail(self, job: ClaimedJob, exc: BaseException, *, reason: str) -> None:
        logger.warning("job_failed", error=str(exc), reason=reason)
        self._queue.fail(job.job_id, job.worker_id, reason=reason)
        self._completions.reject(job.job_id, exc)
        metrics.record_job(status="failed")
