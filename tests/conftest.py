from __future__ import annotations

from fnmatch import fnmatch
from pathlib import Path
import shutil
import threading
import time
from typing import Dict, Iterable, List, Optional, Sequence, Set
import uuid

from openpyxl import Workbook
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.billing.plans import QuotaConfig
from src.pipeline.errors import MergeFailure, RecordingFailure, SendFailure
from src.storage.db import Base, load_models
from src.storage.models import MailAccount, User


class FakeRedis:
    """Thread-safe in-memory subset of the redis-py client used by the pipeline."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._strings: Dict[str, str] = {}
        self._lists: Dict[str, List[str]] = {}
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        self.published: List[tuple[str, str]] = []
        self.expirations: Dict[str, int] = {}
        self.broken = False

    def _check(self) -> None:
        if self.broken:
            raise RedisConnectionError("fake redis is down")

    def _all_keys(self) -> Set[str]:
        return set(self._strings) | set(self._lists) | set(self._hashes) | set(self._zsets)

    def ping(self) -> bool:
        self._check()
        return True

    def close(self) -> None:
        return None

    def get(self, key: str):
        with self._lock:
            self._check()
            return self._strings.get(key)

    def set(self, key: str, value, nx: bool = False, ex: int | None = None):
        with self._lock:
            self._check()
            if nx and key in self._strings:
                return False
            self._strings[key] = str(value)
            if ex is not None:
                self.expirations[key] = ex
            return True

    def delete(self, *keys: str) -> int:
        with self._lock:
            self._check()
            removed = 0
            for key in keys:
                for store in (self._strings, self._lists, self._hashes, self._zsets):
                    if store.pop(key, None) is not None:
                        removed += 1
            return removed

    def exists(self, key: str) -> int:
        with self._lock:
            self._check()
            return 1 if key in self._all_keys() else 0

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            self._check()
            self.expirations[key] = seconds
            return key in self._all_keys()

    def scan_iter(self, match: str = "*"):
        with self._lock:
            self._check()
            keys = sorted(key for key in self._all_keys() if fnmatch(key, match))
        return iter(keys)

    def lpush(self, name: str, *values) -> int:
        with self._lock:
            self._check()
            items = self._lists.setdefault(name, [])
            for value in values:
                items.insert(0, str(value))
            return len(items)

    def rpush(self, name: str, *values) -> int:
        with self._lock:
            self._check()
            items = self._lists.setdefault(name, [])
            items.extend(str(value) for value in values)
            return len(items)

    def rpoplpush(self, src: str, dst: str):
        with self._lock:
            self._check()
            items = self._lists.get(src)
            if not items:
                return None
            value = items.pop()
            if not items:
                self._lists.pop(src, None)
            self._lists.setdefault(dst, []).insert(0, value)
            return value

    def lrem(self, name: str, count: int, value) -> int:
        with self._lock:
            self._check()
            items = self._lists.get(name, [])
            kept = [item for item in items if item != str(value)]
            removed = len(items) - len(kept)
            if kept:
                self._lists[name] = kept
            else:
                self._lists.pop(name, None)
            return removed

    def llen(self, name: str) -> int:
        with self._lock:
            self._check()
            return len(self._lists.get(name, []))

    def lrange(self, name: str, start: int, end: int) -> List[str]:
        with self._lock:
            self._check()
            items = self._lists.get(name, [])
            stop = None if end == -1 else end + 1
            return list(items[start:stop])

    def zadd(
        self, name: str, mapping: Dict[str, float], nx: bool = False, xx: bool = False, ch: bool = False
    ) -> int:
        with self._lock:
            self._check()
            zset = self._zsets.setdefault(name, {})
            changed = 0
            for member, score in mapping.items():
                exists = member in zset
                if nx and exists:
                    continue
                if xx and not exists:
                    continue
                if not exists or zset[member] != float(score):
                    changed += 1
                zset[member] = float(score)
            if not zset:
                self._zsets.pop(name, None)
            return changed

    def zrem(self, name: str, *members: str) -> int:
        with self._lock:
            self._check()
            zset = self._zsets.get(name, {})
            removed = 0
            for member in members:
                if zset.pop(member, None) is not None:
                    removed += 1
            if not zset:
                self._zsets.pop(name, None)
            return removed

    def zrangebyscore(self, name: str, min_score, max_score) -> List[str]:
        with self._lock:
            self._check()
            low = float("-inf") if min_score == "-inf" else float(min_score)
            high = float("inf") if max_score == "+inf" else float(max_score)
            zset = self._zsets.get(name, {})
            return [member for member, score in sorted(zset.items(), key=lambda item: item[1]) if low <= score <= high]

    def zscore(self, name: str, member: str):
        with self._lock:
            self._check()
            return self._zsets.get(name, {}).get(member)

    def hset(self, name: str, key: str | None = None, value=None, mapping: Dict | None = None) -> int:
        with self._lock:
            self._check()
            target = self._hashes.setdefault(name, {})
            updates = dict(mapping or {})
            if key is not None:
                updates[key] = value
            added = 0
            for field_name, field_value in updates.items():
                if field_name not in target:
                    added += 1
                target[field_name] = str(field_value)
            return added

    def hget(self, name: str, key: str):
        with self._lock:
            self._check()
            return self._hashes.get(name, {}).get(key)

    def hgetall(self, name: str) -> Dict[str, str]:
        with self._lock:
            self._check()
            return dict(self._hashes.get(name, {}))

    def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        with self._lock:
            self._check()
            target = self._hashes.setdefault(name, {})
            value = int(target.get(key, 0)) + amount
            target[key] = str(value)
            return value

    def publish(self, channel: str, message: str) -> int:
        with self._lock:
            self._check()
            self.published.append((channel, message))
            return 0


class FakeRecorder:
    def __init__(self, *, fail_urls: Iterable[str] = (), delay_seconds: float = 0.0) -> None:
        self.fail_urls = set(fail_urls)
        self.delay_seconds = delay_seconds
        self.calls: List[str] = []
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    def record(self, url: str, output_dir: str) -> str:
        with self._lock:
            self.calls.append(url)
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.delay_seconds:
                time.sleep(self.delay_seconds)
            if url in self.fail_urls:
                raise RecordingFailure(f"website_recording_failed url={url}")
            target = Path(output_dir)
            target.mkdir(parents=True, exist_ok=True)
            path = target / f"web_{uuid.uuid4().hex}.webm"
            path.write_bytes(b"website-video")
            return str(path)
        finally:
            with self._lock:
                self._in_flight -= 1


class FakeMerger:
    def __init__(self, *, fail_inputs: Iterable[str] = ()) -> None:
        self.fail_inputs = set(fail_inputs)
        self.placements = []

    def merge(self, base_path: str, overlay_path: str, output_path: str, placement) -> None:
        self.placements.append(placement)
        if base_path in self.fail_inputs:
            raise MergeFailure("ffmpeg_merge_failed rc=1")
        shutil.copyfile(base_path, output_path)


class FakeUploader:
    def __init__(self) -> None:
        self.uploaded: List[str] = []
        self._lock = threading.Lock()

    def upload(self, local_path: str, remote_name: str) -> str:
        assert Path(local_path).exists()
        with self._lock:
            self.uploaded.append(remote_name)
        return f"https://cdn.example.test/processed_videos/{remote_name}"


class FakeMailSender:
    provider = "google"

    def __init__(self, *, fail_recipients: Iterable[str] = ()) -> None:
        self.fail_recipients = set(fail_recipients)
        self.sent = []
        self._lock = threading.Lock()

    def send(self, mail) -> None:
        if mail.recipient in self.fail_recipients:
            raise SendFailure(f"gmail_send_failed status=400 recipient={mail.recipient}")
        with self._lock:
            self.sent.append(mail)


def build_session_factory(db_path: Optional[Path] = None) -> sessionmaker:
    load_models()
    if db_path is None:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    else:
        engine = create_engine(
            f"sqlite+pysqlite:///{db_path}",
            connect_args={"check_same_thread": False, "timeout": 30},
            future=True,
        )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def seed_user(
    session_factory: sessionmaker,
    *,
    plan: str = "gold",
    videos_count: int = 0,
    camera_position: str = "bottom-right",
    camera_size: str = "medium",
) -> str:
    user_id = str(uuid.uuid4())
    with session_factory() as session:
        session.add(
            User(
                id=user_id,
                email=f"{user_id[:8]}@example.test",
                plan=plan,
                videos_count=videos_count,
                camera_position=camera_position,
                camera_size=camera_size,
            )
        )
        session.commit()
    return user_id


def seed_mail_account(
    session_factory: sessionmaker,
    user_id: str,
    *,
    provider: str = "google",
    sent_today: int = 0,
    total_days_with_sends: int = 0,
    window_date=None,
) -> str:
    account_id = str(uuid.uuid4())
    with session_factory() as session:
        session.add(
            MailAccount(
                id=account_id,
                user_id=user_id,
                provider=provider,
                email=f"{provider}-sender@example.test",
                refresh_token_encrypted=None,
                sent_today=sent_today,
                total_days_with_sends=total_days_with_sends,
                window_date=window_date,
            )
        )
        session.commit()
    return account_id


def write_spreadsheet(path: Path, rows: Sequence[Sequence[object]], header: Sequence[str] | None = None) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(list(header or ("Email", "Name", "Website-Url", "Client-Company", "Client-Designation")))
    for row in rows:
        sheet.append(list(row))
    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(str(path))
    return path


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def quota_config() -> QuotaConfig:
    return QuotaConfig.model_validate(
        {
            "plans": {
                "silver": {"max_videos": 2000},
                "gold": {"max_videos": 5000},
                "trial": {"max_videos": 10},
            },
            "email_limits": {
                "default_limit": 500,
                "tiers": [
                    {"days": 3, "limit": 30},
                    {"days": 7, "limit": 70},
                    {"days": 14, "limit": 200},
                ],
            },
        }
    )
