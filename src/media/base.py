"""Capability contracts for website recording, overlay merging and upload."""

from __future__ import annotations

from typing import Protocol

from src.pipeline.models import CameraPlacement


class WebsiteRecorder(Protocol):
    def record(self, url: str, output_dir: str) -> str:
        """Record ``url`` into ``output_dir`` and return the local video path.

        Raises ``RecordingFailure`` on timeout, navigation error or browser crash.
        """
        raise NotImplementedError


class OverlayMerger(Protocol):
    def merge(self, base_path: str, overlay_path: str, output_path: str, placement: CameraPlacement) -> None:
        """Write ``base_path`` with ``overlay_path`` composited on top. Raises ``MergeFailure``."""
        raise NotImplementedError


class ArtifactUploader(Protocol):
    def upload(self, local_path: str, remote_name: str) -> str:
        """Upload and return the public URL. Raises ``UploadFailure``."""
        raise NotImplementedError
