"""Pydantic schemas for pipeline endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadStagedResponse(BaseModel):
    upload_token: str
    kind: str
    size_bytes: int


class JobSubmitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1, max_length=36)
    upload_token: str = Field(min_length=8, max_length=64)
    requested_video_count: Optional[int] = Field(default=None, ge=1)
    folder_id: Optional[str] = Field(default=None, max_length=64)


class JobSubmitResponse(BaseModel):
    job_id: str
    state: str


class JobStatusResponse(BaseModel):
    job_id: str
    state: Optional[str]
    attempts: int
    submitted_at: Optional[str]
    finished_at: Optional[str]
    error: Optional[str]
    results: List[Dict[str, Any]]
    summary: Optional[Dict[str, Any]]


class TerminationRequest(BaseModel):
    reason: str = Field(default="operator", min_length=1, max_length=64)


class TerminationResponse(BaseModel):
    accepted: bool
    state: str
    reason: str
    requested_at: str


class PipelineStateResponse(BaseModel):
    state: str
    generation: int
    terminating: bool
    pending_completions: int
    workers_alive: int
    queue: Dict[str, int]
