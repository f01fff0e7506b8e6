"""Pydantic models for the public API."""
from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from analysis_types import ApiProvider


class AnalyzeRequest(BaseModel):
    image_data: str = Field(..., min_length=1, description="data:image/...;base64,... URI")

    @field_validator("image_data")
    @classmethod
    def _data_uri(cls, value: str) -> str:
        if not value.startswith("data:image/"):
            raise ValueError("image_data must be a data:image/ URI")
        header, sep, payload = value.partition(",")
        if not sep or "base64" not in header:
            raise ValueError("image_data must be base64 encoded")
        if not payload:
            raise ValueError("image_data cannot be empty")
        return value

    def image_bytes(self) -> bytes:
        payload = self.image_data.partition(",")[2]
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("image_data is not valid base64") from exc


class SettingsUpdate(BaseModel):
    frame_interval: Optional[int] = Field(None, ge=1)
    confidence_threshold: Optional[float] = Field(None, ge=0, le=100)
    enable_age_analysis: Optional[bool] = None
    enable_gender_analysis: Optional[bool] = None
    enable_emotion_analysis: Optional[bool] = None
    auto_capture: Optional[bool] = None
    api_provider: Optional[ApiProvider] = None
    auto_stop_timeout_minutes: Optional[int] = Field(None, ge=0)


class DetectedPersonOut(BaseModel):
    id: int
    capture_id: int
    age_range: str | None = None
    gender: str | None = None
    emotion: str | None = None
    confidence: int | None = None
    bounding_box: Dict[str, float] | None = None


class CaptureOut(BaseModel):
    id: int
    timestamp: datetime
    provider: ApiProvider | None = None
    people_count: int
    average_age: float | None = None
    male_percentage: int | None = None
    female_percentage: int | None = None
    primary_emotion: str | None = None
    primary_emotion_percentage: int | None = None
    engagement_score: int | None = None
    attention_time: float | None = None
    raw_data: Dict[str, Any] | None = None


class CaptureDetailOut(CaptureOut):
    detected_people: List[DetectedPersonOut] = []


class UsageOut(BaseModel):
    provider: ApiProvider
    start_date: datetime
    reset_date: datetime
    count: int
    monthly_limit: int
    reached_limit: bool
    minute_count: int | None = None
    per_minute_limit: int | None = None


class QuotaRejectionOut(BaseModel):
    detail: str
    provider: ApiProvider
    outcome: str
    usage: UsageOut
