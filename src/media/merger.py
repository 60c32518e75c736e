"""ffmpeg overlay merge: composite the camera recording onto the website video."""

from __future__ import annotations

from pathlib import Path
import subprocess
from typing import List

from src.core.config import get_settings
from src.core.logger import get_logger
from src.pipeline.errors import MergeFailure
from src.pipeline.models import CameraPlacement


logger = get_logger("loomreach.media.merger")

_MARGIN = 10
_SIZE_DIVISORS = {
    "small": 5,
    "medium": 4,
    "large": 3,
    "extra-large": 2,
}
_POSITION_EXPRESSIONS = {
    "top-left": f"{_MARGIN}:{_MARGIN}",
    "top-right": f"W-w-{_MARGIN}:{_MARGIN}",
    "bottom-left": f"{_MARGIN}:H-h-{_MARGIN}",
    "bottom-right": f"W-w-{_MARGIN}:H-h-{_MARGIN}",
}


def build_overlay_filter(placement: CameraPlacement) -> str:
    divisor = _SIZE_DIVISORS.get(placement.size, 4)
    position = _POSITION_EXPRESSIONS.get(placement.position, _POSITION_EXPRESSIONS["bottom-right"])
    return f"[1:v]scale=iw/{divisor}:ih/{divisor}[cam];[0:v][cam]overlay={position}[out]"


def build_merge_command(
    *,
    ffmpeg_binary: str,
    base_path: str,
    overlay_path: str,
    output_path: str,
    placement: CameraPlacement,
) -> List[str]:
    return [
        ffmpeg_binary,
        "-y",
        "-i", base_path,
        "-i", overlay_path,
        "-filter_complex", build_overlay_filter(placement),
        "-map", "[out]",
        # The camera recording carries the presenter's voice.
        "-map", "1:a?",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        output_path,
    ]


class FfmpegOverlayMerger:
    def __init__(self, *, ffmpeg_binary: str = "ffmpeg", timeout_seconds: int = 600) -> None:
        self._ffmpeg_binary = ffmpeg_binary
        self._timeout_seconds = max(1, timeout_seconds)

    def merge(self, base_path: str, overlay_path: str, output_path: str, placement: CameraPlacement) -> None:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        args = build_merge_command(
            ffmpeg_binary=self._ffmpeg_binary,
            base_path=base_path,
            overlay_path=overlay_path,
            output_path=output_path,
            placement=placement,
        )

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise MergeFailure(f"ffmpeg_merge_failed detail={exc}") from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise MergeFailure(f"ffmpeg_merge_failed rc={result.returncode} detail={stderr[-300:]}")
        if not Path(output_path).exists():
            raise MergeFailure("ffmpeg_merge_output_missing")

        logger.info("overlay_merge_completed", output_path=output_path, position=placement.position)


def get_overlay_merger() -> FfmpegOverlayMerger:
    settings = get_settings()
    return FfmpegOverlayMerger(
        ffmpeg_binary=settings.ffmpeg_binary,
        timeout_seconds=settings.ffmpeg_timeout_seconds,
    )
