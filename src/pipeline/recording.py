"""Batch recorder: record many websites with a bounded number in flight."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from src.core import metrics
from src.core.logger import get_logger
from src.media.base import WebsiteRecorder
from src.pipeline.models import RecordingResult, Row


logger = get_logger("loomreach.pipeline.recording")


def _record_one(recorder: WebsiteRecorder, row: Row, output_dir: str) -> RecordingResult:
    try:
        path = recorder.record(row.target_url, output_dir)
    except Exception as exc:
        logger.warning(
            "website_recording_row_failed",
            row_index=row.index,
            url=row.target_url,
            error=str(exc),
        )
        return RecordingResult(row=row, local_video_path=None)
    return RecordingResult(row=row, local_video_path=path)


def record_batch(
    rows: Sequence[Row],
    *,
    recorder: WebsiteRecorder,
    output_dir: str,
    concurrency_limit: int,
    should_stop: Optional[Callable[[], bool]] = None,
) -> List[RecordingResult]:
    """Record ``rows`` in sequential chunks of ``concurrency_limit``.

    Results keep the input order and pair every recording with its row. A
    failed recording yields ``local_video_path=None`` instead of raising. The
    stop check runs before each chunk; once it returns True the results
    gathered so far are returned.
    """

    if concurrency_limit <= 0:
        raise ValueError("concurrency_limit must be positive")

    results: List[RecordingResult] = []
    for start in range(0, len(rows), concurrency_limit):
        if should_stop is not None and should_stop():
            logger.info(
                "website_recording_batch_stopped",
                recorded=len(results),
                remaining=len(rows) - start,
            )
            break

        chunk = rows[start:start + concurrency_limit]
        with ThreadPoolExecutor(max_workers=len(chunk), thread_name_prefix="recorder") as executor:
            futures = [executor.submit(_record_one, recorder, row, output_dir) for row in chunk]
            results.extend(future.result() for future in futures)

    succeeded = sum(1 for result in results if result.succeeded)
    metrics.record_rows(stage="record", outcome="success", count=succeeded)
    metrics.record_rows(stage="record", outcome="failure", count=len(results) - succeeded)
    logger.info("website_recording_batch_completed", total=len(results), succeeded=succeeded)
    return results
