"""Durable Redis job queue with leases, redelivery and a dead-letter list.

Layout under ``loomreach:queue:{name}``::

    :wait      list of queued job ids (claimed from the tail)
    :active    list of claimed job ids
    :leases    sorted set job id -> lease deadline (epoch seconds)
    :dead      list of dead-lettered job ids
    :job:{id}  hash with payload, state, attempts, owner and result

A job is owned by the worker recorded in its hash for as long as its lease
is held. Acknowledgements from any other worker are ignored.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import uuid

from redis import Redis
from redis.exceptions import RedisError

from src.core.logger import get_logger
from src.pipeline.errors import BrokerFailure


logger = get_logger("loomreach.orchestrator.queue")

JOB_STATE_QUEUED = "queued"
JOB_STATE_ACTIVE = "active"
JOB_STATE_COMPLETED = "completed"
JOB_STATE_FAILED = "failed"
JOB_STATE_SKIPPED = "skipped"

_NAMESPACE = "loomreach:queue:{name}"
_FINISHED_JOB_TTL_SECONDS = 7 * 24 * 3600


def queue_namespace(name: str) -> str:
    return _NAMESPACE.format(name=name)


@dataclass(frozen=True)
class ClaimedJob:
    job_id: str
    payload: Dict[str, Any]
    attempts: int
    worker_id: str


@contextmanager
def _broker_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise BrokerFailure(f"queue_broker_unavailable operation={operation} detail={exc}") from exc


class RedisJobQueue:
    def __init__(
        self,
        client_provider: Callable[[], Redis],
        *,
        name: str,
        lease_seconds: int = 300,
        max_attempts: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client_provider = client_provider
        self._name = name
        self._lease_seconds = lease_seconds
        self._max_attempts = max_attempts
        self._clock = clock
        self._prefix = queue_namespace(name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        return self._prefix

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _key(self, suffix: str) -> str:
        return f"{self._prefix}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    def _client(self) -> Redis:
        return self._client_provider()

    def enqueue(self, payload: Dict[str, Any], *, job_id: Optional[str] = None) -> str:
        job_id = job_id or str(uuid.uuid4())
        with _broker_errors("enqueue"):
            client = self._client()
            client.hset(
                self._job_key(job_id),
                mapping={
                    "id": job_id,
                    "payload": json.dumps(payload, sort_keys=True),
                    "state": JOB_STATE_QUEUED,
                    "attempts": 0,
                    "worker_id": "",
                    "submitted_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            client.lpush(self._key("wait"), job_id)
        logger.info("job_enqueued", job_id=job_id, queue=self._name)
        return job_id

    def claim(self, worker_id: str) -> Optional[ClaimedJob]:
        with _broker_errors("claim"):
            client = self._client()
            while True:
                job_id = client.rpoplpush(self._key("wait"), self._key("active"))
                if job_id is None:
                    return None
                client.zadd(self._key("leases"), {job_id: self._clock() + self._lease_seconds})
                job_key = self._job_key(job_id)
                raw_payload = client.hget(job_key, "payload")
                if raw_payload is None:
                    # Hash removed by a purge that raced the claim.
                    client.zrem(self._key("leases"), job_id)
                    client.lrem(self._key("active"), 0, job_id)
                    continue

                attempts = int(client.hincrby(job_key, "attempts", 1))
                client.hset(job_key, mapping={"state": JOB_STATE_ACTIVE, "worker_id": worker_id})
                break

        logger.info("job_claimed", job_id=job_id, worker_id=worker_id, attempts=attempts)
        return ClaimedJob(
            job_id=job_id,
            payload=json.loads(raw_payload),
            attempts=attempts,
            worker_id=worker_id,
        )

    def _owned_by(self, client: Redis, job_id: str, worker_id: str) -> bool:
        job_key = self._job_key(job_id)
        return (
            client.hget(job_key, "worker_id") == worker_id
            and client.hget(job_key, "state") == JOB_STATE_ACTIVE
        )

    def extend_lease(self, job_id: str, worker_id: str) -> bool:
        with _broker_errors("extend_lease"):
            client = self._client()
            if not self._owned_by(client, job_id, worker_id):
                logger.warning("job_lease_extend_ignored", job_id=job_id, worker_id=worker_id)
                return False
            updated = client.zadd(
                self._key("leases"),
                {job_id: self._clock() + self._lease_seconds},
                xx=True,
                ch=True,
            )
        return bool(updated)

    def _finish(self, job_id: str, worker_id: str, state: str, fields: Dict[str, Any]) -> bool:
        with _broker_errors(state):
            client = self._client()
            if not self._owned_by(client, job_id, worker_id):
                logger.warning("job_ack_ignored", job_id=job_id, worker_id=worker_id, state=state)
                return False
            if int(client.zrem(self._key("leases"), job_id)) != 1:
                # Lease already reclaimed by requeue_expired.
                logger.warning("job_ack_lost_lease", job_id=job_id, worker_id=worker_id, state=state)
                return False

            job_key = self._job_key(job_id)
            client.lrem(self._key("active"), 0, job_id)
            client.hset(
                job_key,
                mapping={
                    **fields,
                    "state": state,
                    "finished_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            if state == JOB_STATE_FAILED:
                client.lpush(self._key("dead"), job_id)
            client.expire(job_key, _FINISHED_JOB_TTL_SECONDS)
        logger.info("job_finished", job_id=job_id, worker_id=worker_id, state=state)
        return True

    def complete(self, job_id: str, worker_id: str, result: Dict[str, Any]) -> bool:
        return self._finish(job_id, worker_id, JOB_STATE_COMPLETED, {"result": json.dumps(result, default=str)})

    def skip(self, job_id: str, worker_id: str, result: Dict[str, Any]) -> bool:
        return self._finish(job_id, worker_id, JOB_STATE_SKIPPED, {"result": json.dumps(result, default=str)})

    def fail(self, job_id: str, worker_id: str, *, reason: str) -> bool:
        return self._finish(job_id, worker_id, JOB_STATE_FAILED, {"error": reason})

    def requeue_expired(self, *, now: Optional[float] = None) -> Tuple[List[str], List[str]]:
        """Redeliver jobs whose lease ran out, or dead-letter them once attempts are spent.

        Jobs left in the active list without a lease and not yet marked active
        (a claimer that died between taking the job and leasing it) first
        receive a fresh lease and are reclaimed once that one runs out.
        """

        reference = self._clock() if now is None else now
        requeued: List[str] = []
        dead_lettered: List[str] = []
        with _broker_errors("requeue_expired"):
            client = self._client()
            orphaned = self._lease_orphans(client, reference)
            for job_id in client.zrangebyscore(self._key("leases"), "-inf", reference):
                if int(client.zrem(self._key("leases"), job_id)) != 1:
                    continue
                client.lrem(self._key("active"), 0, job_id)
                job_key = self._job_key(job_id)
                attempts = int(client.hget(job_key, "attempts") or 0)
                if attempts >= self._max_attempts:
                    client.hset(
                        job_key,
                        mapping={"state": JOB_STATE_FAILED, "worker_id": "", "error": "lease_expired"},
                    )
                    client.lpush(self._key("dead"), job_id)
                    dead_lettered.append(job_id)
                    continue
                client.hset(job_key, mapping={"state": JOB_STATE_QUEUED, "worker_id": ""})
                client.rpush(self._key("wait"), job_id)
                requeued.append(job_id)

        if orphaned:
            logger.warning("job_orphans_leased", queue=self._name, job_ids=orphaned)
        if requeued or dead_lettered:
            logger.warning(
                "job_leases_expired",
                queue=self._name,
                requeued=requeued,
                dead_lettered=dead_lettered,
            )
        return requeued, dead_lettered

    def _lease_orphans(self, client: Redis, reference: float) -> List[str]:
        orphaned: List[str] = []
        for job_id in client.lrange(self._key("active"), 0, -1):
            if client.zscore(self._key("leases"), job_id) is not None:
                continue
            # Active jobs are mid-ack or mid-requeue and drop their lease first.
            if client.hget(self._job_key(job_id), "state") == JOB_STATE_ACTIVE:
                continue
            # nx keeps a lease written by a claimer that is still running.
            if client.zadd(self._key("leases"), {job_id: reference + self._lease_seconds}, nx=True):
                orphaned.append(job_id)
        return orphaned

    def purge(self) -> int:
        """Delete every key under this queue's namespace and nothing else."""

        removed = 0
        with _broker_errors("purge"):
            client = self._client()
            keys = list(client.scan_iter(match=f"{self._prefix}:*"))
            for key in keys:
                removed += int(client.delete(key))
        logger.warning("job_queue_purged", queue=self._name, removed_keys=removed)
        return removed

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with _broker_errors("get_job"):
            raw = self._client().hgetall(self._job_key(job_id))
        if not raw:
            return None

        job: Dict[str, Any] = {
            "id": raw.get("id", job_id),
            "state": raw.get("state"),
            "attempts": int(raw.get("attempts") or 0),
            "submitted_at": raw.get("submitted_at"),
            "finished_at": raw.get("finished_at"),
            "error": raw.get("error"),
            "payload": json.loads(raw["payload"]) if raw.get("payload") else None,
            "result": json.loads(raw["result"]) if raw.get("result") else None,
        }
        return job

    def counts(self) -> Dict[str, int]:
        with _broker_errors("counts"):
            client = self._client()
            return {
                "waiting": int(client.llen(self._key("wait"))),
                "active": int(client.llen(self._key("active"))),
                "dead": int(client.llen(self._key("dead"))),
            }
