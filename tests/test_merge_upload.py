from __future__ import annotations

from pathlib import Path

from src.pipeline.merge_upload import MergeUploadStage
from src.pipeline.models import CameraPlacement, RecordingResult, Row
from tests.conftest import FakeMerger, FakeUploader


def _recording(tmp_path: Path, index: int, *, missing: bool = False) -> RecordingResult:
    row = Row(index=index, target_url=f"https://site-{index}.example.test", recipient_email=f"r{index}@example.test")
    if missing:
        return RecordingResult(row=row, local_video_path=None)
    path = tmp_path / f"recording-{index}.webm"
    path.write_bytes(b"video")
    return RecordingResult(row=row, local_video_path=str(path))


def test_merge_and_upload_keeps_order_and_cleans_files(tmp_path) -> None:
    output_dir = tmp_path / "out"
    recordings = [_recording(tmp_path, index) for index in range(4)]
    uploader = FakeUploader()
    merger = FakeMerger()
    stage = MergeUploadStage(merger=merger, uploader=uploader, output_dir=str(output_dir), max_workers=3)
    placement = CameraPlacement(position="top-left", size="small")

    artifacts = stage.merge_and_upload(recordings, str(tmp_path / "overlay.webm"), placement=placement)

    assert [artifact.row.index for artifact in artifacts] == [0, 1, 2, 3]
    assert all(artifact.remote_url.startswith("https://cdn.example.test/") for artifact in artifacts)
    assert all(not Path(recording.local_video_path).exists() for recording in recordings)
    assert list(output_dir.iterdir()) == []
    assert set(merger.placements) == {placement}


def test_failed_rows_are_dropped_and_still_cleaned(tmp_path) -> None:
    recordings = [_recording(tmp_path, 0), _recording(tmp_path, 1), _recording(tmp_path, 2, missing=True)]
    merger = FakeMerger(fail_inputs={recordings[1].local_video_path})
    stage = MergeUploadStage(merger=merger, uploader=FakeUploader(), output_dir=str(tmp_path / "out"))

    artifacts = stage.merge_and_upload(recordings, "overlay.webm", placement=CameraPlacement())

    assert [artifact.row.index for artifact in artifacts] == [0]
    assert not Path(recordings[1].local_video_path).exists()


def test_stop_check_skips_rows_and_removes_recordings(tmp_path) -> None:
    recordings = [_recording(tmp_path, index) for index in range(3)]
    uploader = FakeUploader()
    stage = MergeUploadStage(merger=FakeMerger(), uploader=uploader, output_dir=str(tmp_path / "out"))

    artifacts = stage.merge_and_upload(
        recordings,
        "overlay.webm",
        placement=CameraPlacement(),
        should_stop=lambda: True,
    )

    assert artifacts == []
    assert uploader.uploaded == []
    assert all(not Path(recording.local_video_path).exists() for recording in recordings)
