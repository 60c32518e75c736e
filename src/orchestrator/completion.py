"""One-shot completion futures keyed by job id."""

from __future__ import annotations

from concurrent.futures import Future
import threading
from typing import Any, Dict, Optional


class JobCompletionRegistry:
    """Hand out a future per job id and settle it exactly once.

    Futures are registered before the job is enqueued so a fast worker can
    never resolve a job nobody is waiting on yet.
    """

    def __init__(self) -> None:
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def register(self, job_id: str) -> Future:
        with self._lock:
            if job_id in self._futures:
                raise ValueError(f"completion_already_registered job_id={job_id}")
            future: Future = Future()
            self._futures[job_id] = future
            return future

    def get(self, job_id: str) -> Optional[Future]:
        with self._lock:
            return self._futures.get(job_id)

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._futures.pop(job_id, None)

    def _pop(self, job_id: str) -> Optional[Future]:
        with self._lock:
            return self._futures.pop(job_id, None)

    def resolve(self, job_id: str, result: Any) -> bool:
        future = self._pop(job_id)
        if future is None or future.done():
            return False
        future.set_result(result)
        return True

    def reject(self, job_id: str, error: BaseException) -> bool:
        future = self._pop(job_id)
        if future is None or future.done():
            return False
        future.set_exception(error)
        return True

    def reject_all(self, error: BaseException) -> int:
        with self._lock:
            pending = list(self._futures.values())
            self._futures.clear()
        rejected = 0
        for future in pending:
            if not future.done():
                future.set_exception(error)
                rejected += 1
        return rejected

    def pending_count(self) -> int:
        with self._lock:
            return len(self._futures)
