"""SQLite storage for captures, detected people and analysis settings."""
from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Mapping, Optional

from analysis_types import AnalysisSettings, FrameAnalysis, round_half_up

_SETTINGS_COLUMNS = (
    "frame_interval",
    "confidence_threshold",
    "enable_age_analysis",
    "enable_gender_analysis",
    "enable_emotion_analysis",
    "auto_capture",
    "api_provider",
    "auto_stop_timeout_minutes",
)


class CaptureStore:
    """Handles local storage of analysis captures and settings."""

    def __init__(self, db_path: str = "crowd_captures.db"):
        """Initialize local storage with SQLite database."""
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize SQLite database with required tables."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS captures (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    provider TEXT,
                    people_count INTEGER NOT NULL,
                    average_age REAL,
                    male_percentage INTEGER,
                    female_percentage INTEGER,
                    primary_emotion TEXT,
                    primary_emotion_percentage INTEGER,
                    engagement_score INTEGER,
                    attention_time REAL,
                    raw_data TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS detected_people (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    capture_id INTEGER NOT NULL REFERENCES captures(id),
                    age_range TEXT,
                    gender TEXT,
                    emotion TEXT,
                    confidence INTEGER,
                    bounding_box TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    frame_interval INTEGER NOT NULL,
                    confidence_threshold REAL NOT NULL,
                    enable_age_analysis INTEGER NOT NULL,
                    enable_gender_analysis INTEGER NOT NULL,
                    enable_emotion_analysis INTEGER NOT NULL,
                    auto_capture INTEGER NOT NULL,
                    api_provider TEXT NOT NULL,
                    auto_stop_timeout_minutes INTEGER
                )
            """)

    # ------------------------------------------------------------------
    # Captures
    # ------------------------------------------------------------------
    def create_capture(self, analysis: FrameAnalysis) -> Dict[str, Any]:
        """Store a frame analysis and one row per detected face."""
        raw_data = analysis.model_dump(mode="json")
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("""
                INSERT INTO captures (
                    timestamp, provider, people_count, average_age,
                    male_percentage, female_percentage, primary_emotion,
                    primary_emotion_percentage, engagement_score,
                    attention_time, raw_data
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                analysis.timestamp.isoformat(),
                analysis.provider.value if analysis.provider else None,
                analysis.people_count,
                analysis.average_age,
                analysis.male_percentage,
                analysis.female_percentage,
                analysis.primary_emotion,
                analysis.primary_emotion_percentage,
                analysis.engagement_score,
                analysis.attention_time,
                json.dumps(raw_data),
            ))
            capture_id = cursor.lastrowid

            for face in analysis.faces:
                primary = face.primary_emotion()
                conn.execute("""
                    INSERT INTO detected_people (
                        capture_id, age_range, gender, emotion,
                        confidence, bounding_box
                    ) VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    capture_id,
                    f"{face.age_range.low:g}-{face.age_range.high:g}" if face.age_range else None,
                    face.gender.value if face.gender else None,
                    primary.type if primary else None,
                    round_half_up(face.confidence),
                    face.bounding_box.model_dump_json(),
                ))

        capture = self.get_capture(capture_id)
        if capture is None:
            raise RuntimeError(f"Capture {capture_id} was not found after insert")
        return capture

    def get_capture(self, capture_id: int) -> Optional[Dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT * FROM captures WHERE id = ?", (capture_id,)
            ).fetchone()
        return _capture_from_row(row) if row else None

    def get_all_captures(self) -> List[Dict[str, Any]]:
        """All captures, newest first."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT * FROM captures ORDER BY timestamp DESC, id DESC"
            )
            return [_capture_from_row(row) for row in cursor.fetchall()]

    def get_detected_people(self, capture_id: int) -> List[Dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT * FROM detected_people WHERE capture_id = ? ORDER BY id",
                (capture_id,),
            )
            people = []
            for row in cursor.fetchall():
                person = dict(row)
                person["bounding_box"] = _loads(person["bounding_box"])
                people.append(person)
            return people

    def reset_captures(self) -> None:
        """Delete every capture and restart id numbering."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM detected_people")
            conn.execute("DELETE FROM captures")
            conn.execute(
                "DELETE FROM sqlite_sequence WHERE name IN ('captures', 'detected_people')"
            )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_analysis_settings(self) -> AnalysisSettings:
        """Stored settings, creating the defaults on first use."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM settings WHERE id = 1").fetchone()
        if row is None:
            return self._write_settings(AnalysisSettings())
        data = {column: row[column] for column in _SETTINGS_COLUMNS}
        return AnalysisSettings.model_validate(data)

    def update_analysis_settings(self, changes: Mapping[str, Any]) -> AnalysisSettings:
        """Merge ``changes`` into the stored settings."""
        current = self.get_analysis_settings().model_dump()
        current.update(changes)
        return self._write_settings(AnalysisSettings.model_validate(current))

    def _write_settings(self, settings: AnalysisSettings) -> AnalysisSettings:
        values = settings.model_dump(mode="json")
        placeholders = ", ".join("?" for _ in _SETTINGS_COLUMNS)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO settings (id, {', '.join(_SETTINGS_COLUMNS)}) "
                f"VALUES (1, {placeholders})",
                tuple(values[column] for column in _SETTINGS_COLUMNS),
            )
        return settings


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


def _capture_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    capture = dict(row)
    capture["raw_data"] = _loads(capture["raw_data"])
    return capture


__all__ = ["CaptureStore"]
