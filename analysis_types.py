"""Canonical, provider-independent data model for crowd analysis."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ApiProvider(str, Enum):
    """Closed set of supported vision providers."""

    AWS = "aws"
    FACEPP = "facepp"


EMOTION_TYPES = (
    "HAPPY",
    "SAD",
    "ANGRY",
    "CALM",
    "SURPRISED",
    "DISGUSTED",
    "FEAR",
    "CONFUSED",
    "UNKNOWN",
)

GENDER_VALUES = ("Male", "Female", "Unknown")


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class BoundingBox(BaseModel):
    """Face rectangle in unit-square coordinates, top-left origin."""

    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @field_validator("left", "top", "width", "height", mode="before")
    @classmethod
    def _unit_square(cls, value: Any) -> float:
        return _clamp(float(value or 0.0), 0.0, 1.0)


class AgeRange(BaseModel):
    low: float
    high: float

    @model_validator(mode="after")
    def _ordered(self) -> "AgeRange":
        if self.low > self.high:
            self.low, self.high = self.high, self.low
        return self

    @property
    def midpoint(self) -> float:
        return (self.low + self.high) / 2


class Gender(BaseModel):
    value: str = "Unknown"
    confidence: float = 0.0

    @field_validator("value", mode="before")
    @classmethod
    def _known_value(cls, value: Any) -> str:
        return value if value in GENDER_VALUES else "Unknown"


class Emotion(BaseModel):
    type: str = "UNKNOWN"
    confidence: float = 0.0

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, value: Any) -> str:
        value = str(value or "").upper()
        return value if value in EMOTION_TYPES else "UNKNOWN"


class BooleanAttribute(BaseModel):
    value: bool = False
    confidence: float = 0.0


class Pose(BaseModel):
    roll: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0


class ImageQuality(BaseModel):
    brightness: float = 0.0
    sharpness: float = 0.0


class DetectedFace(BaseModel):
    """A single face after normalization, regardless of which vendor saw it."""

    id: str
    bounding_box: BoundingBox
    confidence: float
    age_range: Optional[AgeRange] = None
    gender: Optional[Gender] = None
    emotions: Optional[List[Emotion]] = None
    smile: Optional[BooleanAttribute] = None
    eyes_open: Optional[BooleanAttribute] = None
    mouth_open: Optional[BooleanAttribute] = None
    eyeglasses: Optional[BooleanAttribute] = None
    sunglasses: Optional[BooleanAttribute] = None
    beard: Optional[BooleanAttribute] = None
    mustache: Optional[BooleanAttribute] = None
    pose: Optional[Pose] = None
    quality: Optional[ImageQuality] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _percent(cls, value: Any) -> float:
        return _clamp(float(value or 0.0), 0.0, 100.0)

    def primary_emotion(self) -> Optional[Emotion]:
        """Highest-confidence emotion; the earliest entry wins a tie."""
        if not self.emotions:
            return None
        best = self.emotions[0]
        for emotion in self.emotions[1:]:
            if emotion.confidence > best.confidence:
                best = emotion
        return best

    def ranked_emotions(self) -> List[Emotion]:
        """Emotions ordered by confidence, highest first, ties in list order."""
        return sorted(self.emotions or [], key=lambda e: e.confidence, reverse=True)


class AggregateStats(BaseModel):
    people_count: int = 0
    average_age: Optional[float] = None
    male_percentage: Optional[int] = None
    female_percentage: Optional[int] = None
    primary_emotion: Optional[str] = None
    primary_emotion_percentage: Optional[int] = None


class EngagementResult(BaseModel):
    engagement_score: Optional[int] = None
    attention_time: Optional[float] = None


class FrameAnalysis(BaseModel):
    """Aggregate report for one frame.  Never mutated after construction."""

    model_config = ConfigDict(frozen=True)

    faces: Tuple[DetectedFace, ...] = ()
    people_count: int = 0
    average_age: Optional[float] = None
    male_percentage: Optional[int] = None
    female_percentage: Optional[int] = None
    primary_emotion: Optional[str] = None
    primary_emotion_percentage: Optional[int] = None
    engagement_score: Optional[int] = Field(None, ge=0, le=100)
    attention_time: Optional[float] = Field(None, ge=0, le=5)
    provider: Optional[ApiProvider] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw_provider_response: Optional[Any] = None

    @model_validator(mode="after")
    def _count_matches_faces(self) -> "FrameAnalysis":
        if self.people_count != len(self.faces):
            raise ValueError("people_count must equal the number of faces")
        return self


class AnalysisSettings(BaseModel):
    """User-tunable analysis settings (persisted by the capture store)."""

    frame_interval: int = Field(7, ge=1)
    confidence_threshold: float = Field(80, ge=0, le=100)
    enable_age_analysis: bool = True
    enable_gender_analysis: bool = True
    enable_emotion_analysis: bool = True
    auto_capture: bool = True
    api_provider: ApiProvider = ApiProvider.AWS
    auto_stop_timeout_minutes: Optional[int] = 1


__all__ = [
    "ApiProvider",
    "EMOTION_TYPES",
    "GENDER_VALUES",
    "round_half_up",
    "BoundingBox",
    "AgeRange",
    "Gender",
    "Emotion",
    "BooleanAttribute",
    "Pose",
    "ImageQuality",
    "DetectedFace",
    "AggregateStats",
    "EngagementResult",
    "FrameAnalysis",
    "AnalysisSettings",
]
