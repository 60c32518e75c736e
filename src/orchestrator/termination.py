"""Cooperative termination and restart of the worker pool.

``request_termination`` walks ``running -> draining -> wiped -> rebuilding ->
running``: raise the flag, close the pool and wait for workers up to the grace
period, purge this queue's namespace, reject pending completions, check the
broker (reconnecting with capped exponential backoff until it answers), start
a fresh pool and lower the flag.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import threading
from typing import Callable, Optional, Tuple

from src.core import metrics
from src.core.logger import get_logger
from src.core.observability import capture_exception
from src.orchestrator.completion import JobCompletionRegistry
from src.orchestrator.queue import RedisJobQueue
from src.orchestrator.termination_flag import TerminationFlag
from src.orchestrator.worker_pool import WorkerPool
from src.pipeline.errors import BrokerFailure, JobTerminated


logger = get_logger("loomreach.orchestrator.termination")

STATE_STOPPED = "stopped"
STATE_RUNNING = "running"
STATE_DRAINING = "draining"
STATE_WIPED = "wiped"
STATE_REBUILDING = "rebuilding"


@dataclass(frozen=True)
class TerminationAck:
    accepted: bool
    state: str
    reason: str
    requested_at: str


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TerminationController:
    def __init__(
        self,
        *,
        pool_factory: Callable[[int], WorkerPool],
        queue: RedisJobQueue,
        completions: JobCompletionRegistry,
        termination_flag: TerminationFlag,
        grace_period_seconds: float = 10.0,
        broker_check: Callable[[], Tuple[bool, Optional[str]]],
        broker_reset: Callable[[], None],
        reconnect_backoff_seconds: float = 1.0,
        reconnect_backoff_max_seconds: float = 30.0,
    ) -> None:
        if grace_period_seconds < 0:
            raise ValueError("grace_period_seconds must not be negative")
        if reconnect_backoff_seconds <= 0:
            raise ValueError("reconnect_backoff_seconds must be positive")
        self._pool_factory = pool_factory
        self._queue = queue
        self._completions = completions
        self._flag = termination_flag
        self._grace_period = grace_period_seconds
        self._broker_check = broker_check
        self._broker_reset = broker_reset
        self._reconnect_backoff = reconnect_backoff_seconds
        self._reconnect_backoff_max = max(reconnect_backoff_max_seconds, reconnect_backoff_seconds)
        self._stopping = threading.Event()
        self._lock = threading.Lock()
        self._state = STATE_STOPPED
        self._pool: Optional[WorkerPool] = None
        self._generation = 0
        self._restart_done = threading.Event()
        self._restart_done.set()

    @property
    def state(self) -> str:
        return self._state

    @property
    def pool(self) -> Optional[WorkerPool]:
        return self._pool

    @property
    def generation(self) -> int:
        return self._generation

    def _set_state(self, state: str) -> None:
        logger.info("termination_state_changed", previous=self._state, state=state)
        self._state = state

    def _build_pool(self) -> WorkerPool:
        self._generation += 1
        pool = self._pool_factory(self._generation)
        pool.start()
        return pool

    def start(self) -> None:
        with self._lock:
            if self._state != STATE_STOPPED:
                return
            self._stopping.clear()
            self._pool = self._build_pool()
            self._set_state(STATE_RUNNING)

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        self._stopping.set()
        with self._lock:
            pool = self._pool
            self._pool = None
            self._set_state(STATE_STOPPED)
        if pool is None:
            return True
        pool.close()
        return pool.join(self._grace_period if timeout is None else timeout)

    def request_termination(self, reason: str = "operator", *, wait: bool = True) -> TerminationAck:
        """Start the restart sequence unless one is already underway."""

        with self._lock:
            if self._state != STATE_RUNNING:
                logger.info("termination_request_ignored", reason=reason, state=self._state)
                return TerminationAck(
                    accepted=False,
                    state=self._state,
                    reason=reason,
                    requested_at=_utc_now_iso(),
                )
            self._set_state(STATE_DRAINING)
            self._restart_done.clear()

        self._flag.set()
        logger.warning("termination_requested", reason=reason)
        ack = TerminationAck(accepted=True, state=STATE_DRAINING, reason=reason, requested_at=_utc_now_iso())
        if wait:
            self._restart(reason)
        else:
            threading.Thread(
                target=self._restart,
                args=(reason,),
                name="termination-restart",
                daemon=True,
            ).start()
        return ack

    def handle_broker_failure(self, error: BrokerFailure) -> TerminationAck:
        logger.error("broker_failure_detected", error=str(error))
        capture_exception(error)
        return self.request_termination("broker_failure", wait=True)

    def wait_until_running(self, timeout: Optional[float] = None) -> bool:
        return self._restart_done.wait(timeout)

    def _restart(self, reason: str) -> None:
        try:
            pool = self._pool
            if pool is not None:
                pool.close()
                drained = pool.join(self._grace_period)
                logger.info("termination_pool_drained", drained=drained)

            try:
                purged = self._queue.purge()
            except BrokerFailure as exc:
                purged = 0
                logger.error("termination_purge_failed", error=str(exc))
            rejected = self._completions.reject_all(JobTerminated("job_terminated"))
            self._set_state(STATE_WIPED)
            logger.warning("termination_queue_wiped", purged_keys=purged, rejected_futures=rejected)

            self._set_state(STATE_REBUILDING)
            restarted = False
            if self._await_broker():
                with self._lock:
                    if not self._stopping.is_set():
                        self._pool = self._build_pool()
                        self._flag.clear()
                        self._set_state(STATE_RUNNING)
                        restarted = True
            if not restarted:
                with self._lock:
                    self._set_state(STATE_STOPPED)
                self._flag.clear()
                logger.warning("termination_restart_abandoned", reason=reason)
                return
            metrics.record_termination(reason=reason)
            logger.info("termination_restart_completed", reason=reason, generation=self._generation)
        finally:
            self._restart_done.set()

    def _await_broker(self) -> bool:
        """Retry the broker until it answers; False when shutdown interrupts the wait."""

        delay = self._reconnect_backoff
        attempts = 0
        while True:
            healthy, error = self._broker_check()
            if healthy:
                if attempts:
                    logger.info("termination_broker_reconnected", attempts=attempts)
                return True
            attempts += 1
            logger.warning(
                "termination_broker_reconnecting",
                error=error,
                attempt=attempts,
                retry_in_seconds=delay,
            )
            self._broker_reset()
            if self._stopping.wait(delay):
                return False
            delay = min(delay * 2, self._reconnect_backoff_max)
