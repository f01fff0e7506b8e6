"""
Engagement heuristics for a single frame.

Each face is scored on its own starting from a baseline of 40, adjusted by
eye state, expression, head pose and emotion, then clamped to 0-100. The
frame score is the half-up rounded mean of the per-face scores.

Attention time is an estimate in seconds (0-5) of how long each face holds
its attention, averaged over the frame and rounded to one decimal.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional

from analysis_types import DetectedFace, EngagementResult, round_half_up

logger = logging.getLogger(__name__)

BASELINE = 40.0

EYES_OPEN_BONUS = 15.0
EYES_CLOSED_PENALTY = -20.0
SMILE_BONUS = 12.0
MOUTH_OPEN_BONUS = 5.0

PRIMARY_EMOTION_WEIGHTS = {
    "HAPPY": 20.0,
    "SURPRISED": 15.0,
    "CALM": 10.0,
    "NEUTRAL": 10.0,
    "SAD": 5.0,
    "ANGRY": -10.0,
    "DISGUSTED": -10.0,
    "FEAR": -10.0,
}
SECONDARY_EMOTION_WEIGHTS = {
    "HAPPY": 5.0,
    "SURPRISED": 5.0,
    "ANGRY": -5.0,
    "DISGUSTED": -5.0,
    "FEAR": -5.0,
}
SECONDARY_EMOTION_MIN_CONFIDENCE = 15.0

ATTENTION_EYES_OPEN = 2.0
ATTENTION_EMOTION_WEIGHTS = {"HAPPY": 1.5, "SURPRISED": 1.5, "CALM": 1.0}
ATTENTION_YAW_WEIGHT = 1.5
MAX_ATTENTION_SECONDS = 5.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _yaw_points(yaw: float) -> float:
    yaw = abs(yaw)
    if yaw < 10:
        return 15.0
    if yaw < 25:
        return 8.0
    if yaw > 45:
        return -15.0
    return 0.0


def _pitch_points(pitch: float) -> float:
    pitch = abs(pitch)
    if pitch < 15:
        return 5.0
    if pitch > 30:
        return -10.0
    return 0.0


def _roll_points(roll: float) -> float:
    return -5.0 if abs(roll) > 30 else 0.0


class EngagementScorer:
    """Scores engagement and attention time from a list of faces."""

    def score(self, faces: List[DetectedFace]) -> EngagementResult:
        if not faces:
            return EngagementResult()

        face_scores = [self.face_score(face) for face in faces]
        attention = [self.face_attention(face) for face in faces]

        engagement = round_half_up(sum(face_scores) / len(face_scores))
        attention_time = math.floor(sum(attention) / len(attention) * 10 + 0.5) / 10

        logger.debug(
            "Engagement %d%%, attention %.1fs over %d faces", engagement, attention_time, len(faces)
        )
        return EngagementResult(engagement_score=engagement, attention_time=attention_time)

    def face_score(self, face: DetectedFace) -> float:
        """Unrounded engagement for one face, clamped to 0-100."""
        score = BASELINE

        if face.eyes_open is not None:
            if face.eyes_open.value:
                score += EYES_OPEN_BONUS * face.eyes_open.confidence / 100
            else:
                score += EYES_CLOSED_PENALTY

        if face.smile is not None and face.smile.value:
            score += SMILE_BONUS * face.smile.confidence / 100

        if face.mouth_open is not None and face.mouth_open.value:
            score += MOUTH_OPEN_BONUS * face.mouth_open.confidence / 100

        if face.pose is not None:
            score += _yaw_points(face.pose.yaw)
            score += _pitch_points(face.pose.pitch)
            score += _roll_points(face.pose.roll)

        ranked = face.ranked_emotions()
        if ranked:
            # Stable sort, so ranked[0] is primary_emotion().
            primary = ranked[0]
            score += PRIMARY_EMOTION_WEIGHTS.get(primary.type, 0.0) * primary.confidence / 100
        if len(ranked) > 1:
            secondary = ranked[1]
            if secondary.confidence > SECONDARY_EMOTION_MIN_CONFIDENCE:
                score += (
                    SECONDARY_EMOTION_WEIGHTS.get(secondary.type, 0.0) * secondary.confidence / 100
                )

        return _clamp(score, 0.0, 100.0)

    def face_attention(self, face: DetectedFace) -> float:
        """Estimated attention for one face in seconds, clamped to 0-5."""
        seconds = 0.0
        if face.eyes_open is not None and face.eyes_open.value:
            seconds += ATTENTION_EYES_OPEN

        primary = face.primary_emotion()
        if primary is not None:
            seconds += ATTENTION_EMOTION_WEIGHTS.get(primary.type, 0.0) * primary.confidence / 100

        if face.pose is not None:
            seconds += max(0.0, 1 - abs(face.pose.yaw) / 45) * ATTENTION_YAW_WEIGHT

        return _clamp(seconds, 0.0, MAX_ATTENTION_SECONDS)


__all__ = ["EngagementScorer"]
