"""Value objects passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.pipeline.errors import ValidationError


CAMERA_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right")
CAMERA_SIZES = ("small", "medium", "large", "extra-large")


@dataclass(frozen=True)
class Row:
    index: int
    target_url: str
    recipient_email: str
    recipient_name: str = ""
    recipient_company: str = ""
    recipient_title: str = ""


@dataclass(frozen=True)
class RecordingResult:
    row: Row
    local_video_path: Optional[str]

    @property
    def succeeded(self) -> bool:
        return self.local_video_path is not None


@dataclass(frozen=True)
class ArtifactRecord:
    row: Row
    remote_url: str

    def as_result(self) -> Dict[str, Any]:
        return {"source_url": self.row.target_url, "remote_url": self.remote_url}


@dataclass(frozen=True)
class CameraPlacement:
    position: str = "bottom-right"
    size: str = "medium"

    @classmethod
    def from_settings(cls, position: str | None, size: str | None) -> "CameraPlacement":
        normalized_position = (position or "").strip().lower()
        normalized_size = (size or "").strip().lower()
        return cls(
            position=normalized_position if normalized_position in CAMERA_POSITIONS else "bottom-right",
            size=normalized_size if normalized_size in CAMERA_SIZES else "medium",
        )


@dataclass(frozen=True)
class JobPayload:
    spreadsheet_path: str
    overlay_video_path: str
    user_id: str
    requested_video_count: Optional[int] = None
    folder_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobPayload":
        missing = [
            name
            for name in ("spreadsheet_path", "overlay_video_path", "user_id")
            if not str(data.get(name) or "").strip()
        ]
        if missing:
            raise ValidationError(f"job_payload_missing_fields fields={','.join(missing)}")

        raw_count = data.get("requested_video_count")
        requested: Optional[int] = None
        if raw_count is not None:
            try:
                requested = int(raw_count)
            except (TypeError, ValueError) as exc:
                raise ValidationError("job_payload_invalid_requested_video_count") from exc
            if requested <= 0:
                raise ValidationError("job_payload_invalid_requested_video_count")

        folder_id = str(data.get("folder_id") or "").strip() or None
        return cls(
            spreadsheet_path=str(data["spreadsheet_path"]).strip(),
            overlay_video_path=str(data["overlay_video_path"]).strip(),
            user_id=str(data["user_id"]).strip(),
            requested_video_count=requested,
            folder_id=folder_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spreadsheet_path": self.spreadsheet_path,
            "overlay_video_path": self.overlay_video_path,
            "user_id": self.user_id,
            "requested_video_count": self.requested_video_count,
            "folder_id": self.folder_id,
        }


@dataclass
class DispatchReport:
    provider: Optional[str] = None
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    halted_by_ceiling: bool = False
    failures: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "attempted": self.attempted,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "halted_by_ceiling": self.halted_by_ceiling,
        }
