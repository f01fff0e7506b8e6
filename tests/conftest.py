import io
import os
import sys
import uuid

import pytest

# Ensure project root is on PYTHONPATH for tests
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from PIL import Image  # noqa: E402

from analysis_types import (  # noqa: E402
    AgeRange,
    BooleanAttribute,
    BoundingBox,
    DetectedFace,
    Emotion,
    Gender,
    Pose,
)
from env import Settings  # noqa: E402


@pytest.fixture
def anyio_backend():
    """Configure the async test backend to use asyncio only."""
    return 'asyncio'


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every file at a temporary directory."""
    return Settings(
        AWS_ACCESS_KEY_ID="test-key",
        AWS_SECRET_ACCESS_KEY="test-secret",
        FACEPP_API_KEY="fpp-key",
        FACEPP_API_SECRET="fpp-secret",
        FACEPP_API_URL="https://facepp.test/facepp/v3/detect",
        USAGE_FILE=str(tmp_path / "api-usage.json"),
        CAPTURE_DB_PATH=str(tmp_path / "captures.db"),
    )


def _encode(fmt: str, size=(64, 48)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=(120, 80, 40)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes():
    return _encode("JPEG")


@pytest.fixture
def png_bytes():
    return _encode("PNG")


@pytest.fixture
def gif_bytes():
    return _encode("GIF")


@pytest.fixture
def make_face():
    """Build a canonical face from a few keyword shortcuts."""

    def _make(
        age=None,
        gender=None,
        emotions=None,
        eyes_open=None,
        smile=None,
        mouth_open=None,
        pose=None,
        confidence=99.0,
    ):
        face = {
            "id": str(uuid.uuid4()),
            "bounding_box": BoundingBox(left=0.1, top=0.1, width=0.2, height=0.3),
            "confidence": confidence,
        }
        if age is not None:
            face["age_range"] = AgeRange(low=age[0], high=age[1])
        if gender is not None:
            face["gender"] = Gender(value=gender, confidence=99.0)
        if emotions is not None:
            face["emotions"] = [Emotion(type=t, confidence=c) for t, c in emotions]
        if eyes_open is not None:
            face["eyes_open"] = BooleanAttribute(value=eyes_open[0], confidence=eyes_open[1])
        if smile is not None:
            face["smile"] = BooleanAttribute(value=smile[0], confidence=smile[1])
        if mouth_open is not None:
            face["mouth_open"] = BooleanAttribute(value=mouth_open[0], confidence=mouth_open[1])
        if pose is not None:
            face["pose"] = Pose(yaw=pose[0], pitch=pose[1], roll=pose[2])
        return DetectedFace(**face)

    return _make
