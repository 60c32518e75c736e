"""Headless-browser website recorder backed by Playwright."""

from __future__ import annotations

from pathlib import Path
import shutil
import tempfile
import uuid

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from src.core.config import get_settings
from src.core.logger import get_logger
from src.pipeline.errors import RecordingFailure


logger = get_logger("loomreach.media.recorder")

# Scroll to the bottom of the page and back up, pausing briefly at each end.
_SMOOTH_SCROLL_SCRIPT = """
async () => {
  const sleep = (ms) => new Promise((resolve) => setTimeout(resolve, ms));
  const totalHeight = document.body ? document.body.scrollHeight : 0;
  const step = window.innerHeight / 1.3;
  let position = 0;
  while (position < totalHeight) {
    window.scrollBy(0, step);
    await sleep(150);
    position += step;
  }
  await sleep(800);
  while (position > 0) {
    window.scrollBy(0, -step);
    await sleep(150);
    position -= step;
  }
}
"""


class PlaywrightWebsiteRecorder:
    """Record one website per call.

    Each call owns its own Playwright driver and browser, so calls can run on
    separate threads of the batch recorder's pool.
    """

    def __init__(
        self,
        *,
        navigation_timeout_seconds: int = 45,
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 720,
    ) -> None:
        self._navigation_timeout_ms = max(1, navigation_timeout_seconds) * 1000
        self._headless = headless
        self._viewport = {"width": viewport_width, "height": viewport_height}

    def record(self, url: str, output_dir: str) -> str:
        target_dir = Path(output_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        output_path = target_dir / f"web_{uuid.uuid4().hex}.webm"
        scratch_dir = tempfile.mkdtemp(prefix="recording-", dir=str(target_dir))

        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(
                    headless=self._headless,
                    args=["--disable-gpu", "--no-sandbox", "--disable-setuid-sandbox"],
                )
                try:
                    context = browser.new_context(
                        viewport=self._viewport,
                        record_video_dir=scratch_dir,
                        record_video_size=self._viewport,
                    )
                    page = context.new_page()
                    logger.info("website_recording_started", url=url)
                    page.goto(url, wait_until="load", timeout=self._navigation_timeout_ms)
                    page.evaluate(_SMOOTH_SCROLL_SCRIPT)
                    page.wait_for_timeout(800)
                    video = page.video
                    context.close()
                    if video is None:
                        raise RecordingFailure(f"website_recording_missing_video url={url}")
                    video.save_as(str(output_path))
                finally:
                    browser.close()
        except PlaywrightError as exc:
            raise RecordingFailure(f"website_recording_failed url={url} detail={exc}") from exc
        finally:
            shutil.rmtree(scratch_dir, ignore_errors=True)

        logger.info("website_recording_saved", url=url, path=str(output_path))
        return str(output_path)


def get_website_recorder() -> PlaywrightWebsiteRecorder:
    settings = get_settings()
    return PlaywrightWebsiteRecorder(
        navigation_timeout_seconds=settings.recording_navigation_timeout_seconds,
        headless=settings.recording_headless,
        viewport_width=settings.recording_viewport_width,
        viewport_height=settings.recording_viewport_height,
    )
