"""Merge each recording with the camera overlay, upload it and clean up."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import os
from pathlib import Path
from typing import Callable, List, Optional, Sequence
import uuid

from src.core import metrics
from src.core.logger import get_logger
from src.media.base import ArtifactUploader, OverlayMerger
from src.pipeline.models import ArtifactRecord, CameraPlacement, RecordingResult


logger = get_logger("loomreach.pipeline.merge_upload")


def _remove_quietly(path: Optional[str]) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("artifact_cleanup_failed", path=path, error=str(exc))


class MergeUploadStage:
    def __init__(
        self,
        *,
        merger: OverlayMerger,
        uploader: ArtifactUploader,
        output_dir: str,
        max_workers: int = 4,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self._merger = merger
        self._uploader = uploader
        self._output_dir = output_dir
        self._max_workers = max_workers

    def _process_one(
        self,
        recording: RecordingResult,
        overlay_path: str,
        placement: CameraPlacement,
        should_stop: Optional[Callable[[], bool]],
    ) -> Optional[ArtifactRecord]:
        row = recording.row
        merged_name = f"merged_{uuid.uuid4().hex}.mp4"
        merged_path = str(Path(self._output_dir) / merged_name)
        try:
            if should_stop is not None and should_stop():
                logger.info("merge_upload_row_skipped", row_index=row.index, reason="terminating")
                metrics.record_rows(stage="merge_upload", outcome="skipped")
                return None
            self._merger.merge(recording.local_video_path or "", overlay_path, merged_path, placement)
            remote_url = self._uploader.upload(merged_path, merged_name)
        except Exception as exc:
            logger.warning(
                "merge_upload_row_failed",
                row_index=row.index,
                url=row.target_url,
                error=str(exc),
            )
            metrics.record_rows(stage="merge_upload", outcome="failure")
            return None
        finally:
            _remove_quietly(recording.local_video_path)
            _remove_quietly(merged_path)

        metrics.record_rows(stage="merge_upload", outcome="success")
        return ArtifactRecord(row=row, remote_url=remote_url)

    def merge_and_upload(
        self,
        recordings: Sequence[RecordingResult],
        overlay_path: str,
        *,
        placement: CameraPlacement,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[ArtifactRecord]:
        """Return artifacts for rows that merged and uploaded, in input order."""

        Path(self._output_dir).mkdir(parents=True, exist_ok=True)
        successful = [recording for recording in recordings if recording.succeeded]
        if not successful:
            return []

        workers = min(self._max_workers, len(successful))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="merge-upload") as executor:
            futures = [
                executor.submit(self._process_one, recording, overlay_path, placement, should_stop)
                for recording in successful
            ]
            outcomes = [future.result() for future in futures]

        artifacts = [artifact for artifact in outcomes if artifact is not None]
        logger.info(
            "merge_upload_completed",
            attempted=len(successful),
            uploaded=len(artifacts),
        )
        return artifacts
