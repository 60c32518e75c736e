"""Plan video ceilings and tiered daily email limits loaded from YAML."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field, field_validator

from src.core.config import get_settings


class PlanLimits(BaseModel):
    max_videos: int = Field(default=0, ge=0)


class EmailLimitTier(BaseModel):
    days: int = Field(ge=0)
    limit: int = Field(ge=0)


class EmailLimits(BaseModel):
    default_limit: int = Field(default=500, ge=0)
    tiers: List[EmailLimitTier] = Field(default_factory=list)

    @field_validator("tiers")
    @classmethod
    def _sort_tiers(cls, value: List[EmailLimitTier]) -> List[EmailLimitTier]:
        return sorted(value, key=lambda tier: tier.days)


class QuotaConfig(BaseModel):
    plans: Dict[str, PlanLimits] = Field(default_factory=dict)
    email_limits: EmailLimits = Field(default_factory=EmailLimits)

    @field_validator("plans", mode="before")
    @classmethod
    def _normalize_plan_names(cls, value: Any) -> Dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        return {str(name).strip().lower(): limits for name, limits in value.items() if str(name).strip()}

    def video_ceiling(self, plan: str | None) -> int:
        limits = self.plans.get((plan or "").strip().lower())
        if limits is None:
            return 0
        return limits.max_videos

    def email_ceiling(self, total_days_with_sends: int) -> int:
        for tier in self.email_limits.tiers:
            if total_days_with_sends <= tier.days:
                return tier.limit
        return self.email_limits.default_limit


def _resolve_quota_path() -> Path:
    settings = get_settings()
    configured = Path(settings.quotas_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


@lru_cache(maxsize=1)
def load_quota_config() -> QuotaConfig:
    path = _resolve_quota_path()
    with path.open("r", encoding="utf-8") as file:
        content = yaml.safe_load(file) or {}
    if not isinstance(content, dict):
        raise ValueError("Invalid quotas file format")
    return QuotaConfig.model_validate(content)
