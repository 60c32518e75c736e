"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_jobs_total: Dict[str, int] = defaultdict(int)
_rows_total: Dict[Tuple[str, str], int] = defaultdict(int)
_emails_total: Dict[Tuple[str, str], int] = defaultdict(int)
_terminations_total: Dict[str, int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_job(*, status: str) -> None:
    with _lock:
        _jobs_total[_normalize_label(status)] += 1


def record_rows(*, stage: str, outcome: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        key = (_normalize_label(stage), _normalize_label(outcome))
        _rows_total[key] += int(count)


def record_email(*, provider: str, status: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        key = (_normalize_label(provider), _normalize_label(status))
        _emails_total[key] += int(count)


def record_termination(*, reason: str) -> None:
    with _lock:
        _terminations_total[_normalize_label(reason)] += 1


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        jobs_total = dict(_jobs_total)
        rows_total = dict(_rows_total)
        emails_total = dict(_emails_total)
        terminations_total = dict(_terminations_total)

    lines = [
        "# HELP loomreach_build_info Build metadata.",
        "# TYPE loomreach_build_info gauge",
        (
            f'loomreach_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP loomreach_process_uptime_seconds Process uptime in seconds.",
        "# TYPE loomreach_process_uptime_seconds gauge",
        f"loomreach_process_uptime_seconds {uptime:.6f}",
        "# HELP loomreach_http_requests_total Total HTTP requests.",
        "# TYPE loomreach_http_requests_total counter",
    ]

    for (method, path, status), value in sorted(http_total.items()):
        lines.append(
            (
                f'loomreach_http_requests_total{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}",status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP loomreach_http_request_duration_seconds Request duration summary.",
            "# TYPE loomreach_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'loomreach_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'loomreach_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP loomreach_jobs_total Jobs resolved by terminal status.",
            "# TYPE loomreach_jobs_total counter",
        ]
    )
    for status, value in sorted(jobs_total.items()):
        lines.append(f'loomreach_jobs_total{{status="{_escape_label(status)}"}} {value}')

    lines.extend(
        [
            "# HELP loomreach_rows_total Spreadsheet rows by pipeline stage and outcome.",
            "# TYPE loomreach_rows_total counter",
        ]
    )
    for (stage, outcome), value in sorted(rows_total.items()):
        lines.append(
            f'loomreach_rows_total{{stage="{_escape_label(stage)}",outcome="{_escape_label(outcome)}"}} {value}'
        )

    lines.extend(
        [
            "# HELP loomreach_emails_total Outreach emails by provider and status.",
            "# TYPE loomreach_emails_total counter",
        ]
    )
    for (provider, status), value in sorted(emails_total.items()):
        lines.append(
            (
                f'loomreach_emails_total{{provider="{_escape_label(provider)}",'
                f'status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP loomreach_terminations_total Pipeline stop-and-rebuild cycles.",
            "# TYPE loomreach_terminations_total counter",
        ]
    )
    for reason, value in sorted(terminations_total.items()):
        lines.append(f'loomreach_terminations_total{{reason="{_escape_label(reason)}"}} {value}')

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _jobs_total.clear()
        _rows_total.clear()
        _emails_total.clear()
        _terminations_total.clear()
    _started_at = time.time()
