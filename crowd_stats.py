"""
Frame-level crowd statistics.

Turns a list of canonical faces into the demographic and emotion figures shown
on the dashboard:

- average_age: mean of each face's age-range midpoint
- male_percentage / female_percentage: share among faces whose gender is known,
  each rounded on its own (the pair may sum to 99 or 101)
- primary_emotion: the most common per-face primary emotion
- primary_emotion_percentage: that emotion's count over the whole headcount
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from analysis_types import AggregateStats, DetectedFace, round_half_up

logger = logging.getLogger(__name__)


class AggregationEngine:
    """Computes :class:`AggregateStats` for one frame."""

    def summarize(self, faces: List[DetectedFace]) -> AggregateStats:
        people_count = len(faces)
        if people_count == 0:
            return AggregateStats(people_count=0)

        male_pct, female_pct = self.gender_split(faces)
        emotion, emotion_count = self.dominant_emotion(faces)
        emotion_pct = None
        if emotion is not None:
            emotion_pct = round_half_up(emotion_count / people_count * 100)

        stats = AggregateStats(
            people_count=people_count,
            average_age=self.average_age(faces),
            male_percentage=male_pct,
            female_percentage=female_pct,
            primary_emotion=emotion,
            primary_emotion_percentage=emotion_pct,
        )
        logger.debug("Aggregated %d faces: %s", people_count, stats)
        return stats

    @staticmethod
    def average_age(faces: Iterable[DetectedFace]) -> Optional[float]:
        midpoints = [f.age_range.midpoint for f in faces if f.age_range is not None]
        if not midpoints:
            return None
        return sum(midpoints) / len(midpoints)

    @staticmethod
    def gender_split(faces: Iterable[DetectedFace]) -> Tuple[Optional[int], Optional[int]]:
        male = female = 0
        for face in faces:
            if face.gender is None:
                continue
            if face.gender.value == "Male":
                male += 1
            elif face.gender.value == "Female":
                female += 1
        known = male + female
        if known == 0:
            return None, None
        return round_half_up(male / known * 100), round_half_up(female / known * 100)

    @staticmethod
    def emotion_tally(faces: Iterable[DetectedFace]) -> Dict[str, int]:
        """Count per-face primary emotions, keyed in first-observed order."""
        tally: Dict[str, int] = {}
        for face in faces:
            primary = face.primary_emotion()
            if primary is not None:
                tally[primary.type] = tally.get(primary.type, 0) + 1
        return tally

    @classmethod
    def dominant_emotion(cls, faces: Iterable[DetectedFace]) -> Tuple[Optional[str], int]:
        # Strict ">" keeps the first emotion observed when counts tie.
        best: Optional[str] = None
        best_count = 0
        for emotion, count in cls.emotion_tally(faces).items():
            if count > best_count:
                best, best_count = emotion, count
        return best, best_count


__all__ = ["AggregationEngine"]
