"""Face++ ``v3/detect`` adapter."""
from __future__ import annotations

import base64
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

import httpx
from pydantic import ValidationError

from analysis_types import (
    AgeRange,
    AnalysisSettings,
    ApiProvider,
    BooleanAttribute,
    BoundingBox,
    DetectedFace,
    Emotion,
    Gender,
    Pose,
)
from env import Settings, get_settings

from .base import FaceAnalysisProvider, as_number, require_list, require_mapping
from .errors import (
    MalformedPayloadError,
    ProviderAuthError,
    ProviderError,
    ProviderFormatError,
    ProviderTransientError,
    ProviderUnknownError,
)

logger = logging.getLogger(__name__)

# Face++ does not report confidences for these, so fixed values are used.
FACE_CONFIDENCE = 100.0
GENDER_CONFIDENCE = 90.0
GLASSES_PRESENT_CONFIDENCE = 90.0
GLASSES_ABSENT_CONFIDENCE = 10.0
AGE_SPREAD = 5

# Order matters: on equal confidence the earlier entry is the primary emotion.
EMOTION_MAP = (
    ("happiness", "HAPPY"),
    ("anger", "ANGRY"),
    ("sadness", "SAD"),
    ("neutral", "CALM"),
    ("surprise", "SURPRISED"),
    ("disgust", "DISGUSTED"),
    ("fear", "FEAR"),
)

_FORMAT_MESSAGES = (
    "IMAGE_ERROR_UNSUPPORTED_FORMAT",
    "INVALID_IMAGE_SIZE",
    "IMAGE_FILE_TOO_LARGE",
    "INVALID_IMAGE_URL",
)
_TRANSIENT_MESSAGES = ("CONCURRENCY_LIMIT_EXCEEDED", "IMAGE_DOWNLOAD_TIMEOUT")


def return_attributes(settings: AnalysisSettings) -> List[str]:
    """Attributes to request.  Age and emotion follow the analysis toggles."""
    attributes = ["gender"]
    if settings.enable_age_analysis:
        attributes.append("age")
    if settings.enable_emotion_analysis:
        attributes.append("emotion")
    attributes.extend(["smiling", "headpose", "eyestatus", "mouthstatus", "glass"])
    return attributes


class FacePlusPlusProvider(FaceAnalysisProvider):
    """Face++ implementation.

    Every face Face++ returns is kept: the confidence threshold is forwarded
    to the vendor but not applied here, and each face gets a synthetic
    confidence of 100.
    """

    name = ApiProvider.FACEPP
    max_image_bytes = 2 * 1024 * 1024

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def detect(self, image_bytes: bytes, settings: AnalysisSettings) -> Dict[str, Any]:
        config = self.settings
        name = self.name.value
        if not config.FACEPP_API_KEY or not config.FACEPP_API_SECRET:
            raise ProviderAuthError(
                "FACEPP_API_KEY and FACEPP_API_SECRET must be set", name
            )

        form = {
            "api_key": config.FACEPP_API_KEY,
            "api_secret": config.FACEPP_API_SECRET,
            "return_attributes": ",".join(return_attributes(settings)),
            "threshold": str(settings.confidence_threshold / 100),
        }
        files = {"image_base64": (None, base64.b64encode(image_bytes).decode("ascii"))}

        try:
            async with httpx.AsyncClient(
                timeout=config.FACEPP_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(config.FACEPP_API_URL, data=form, files=files)
        except httpx.TimeoutException as exc:
            logger.warning("Face++ timed out after %.1fs", config.FACEPP_TIMEOUT_SECONDS)
            raise ProviderTransientError("request timed out", name) from exc
        except httpx.TransportError as exc:
            logger.warning("Face++ unreachable: %s", exc)
            raise ProviderTransientError(str(exc), name) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            raise self._classify(response.status_code, body)
        if not isinstance(body, dict):
            raise MalformedPayloadError("response body is not a JSON object", name)
        logger.debug(
            "Face++ request %s returned %d faces in %sms",
            body.get("request_id"),
            len(body.get("faces") or []),
            body.get("time_used"),
        )
        return body

    def _classify(self, status: int, body: Any) -> ProviderError:
        name = self.name.value
        message = ""
        if isinstance(body, dict):
            message = str(body.get("error_message") or "")
        message = message or f"HTTP {status}"
        logger.error("Face++ returned HTTP %s: %s", status, message)

        if status == 401 or message.startswith("AUTHENTICATION_ERROR"):
            return ProviderAuthError("Face++ rejected the configured API key/secret", name)
        if message.startswith(_TRANSIENT_MESSAGES) or status == 429 or status >= 500:
            return ProviderTransientError(message, name)
        if status == 403 or message.startswith("AUTHORIZATION_ERROR"):
            return ProviderAuthError(message, name)
        if status == 413 or message.startswith(_FORMAT_MESSAGES):
            return ProviderFormatError(message, name)
        return ProviderUnknownError(message, name)

    def normalize(self, raw_payload: Any, confidence_threshold: float) -> List[DetectedFace]:
        """Map Face++ ``faces`` into canonical faces.

        ``confidence_threshold`` is not applied; see the class doc.
        """
        name = self.name.value
        payload = require_mapping(raw_payload, "response", name)
        if "faces" not in payload:
            if payload.get("error_message"):
                raise ProviderUnknownError(str(payload["error_message"]), name)
            raise MalformedPayloadError("response has no 'faces' field", name)
        entries = require_list(payload["faces"], "faces", name)

        faces: List[DetectedFace] = []
        for index, entry in enumerate(entries):
            entry = require_mapping(entry, f"faces[{index}]", name)
            try:
                faces.append(self._to_face(entry))
            except (ValidationError, AttributeError, KeyError, TypeError, ValueError) as exc:
                raise MalformedPayloadError(f"faces[{index}]: {exc}", name) from exc
        return faces

    def _to_face(self, entry: Mapping[str, Any]) -> DetectedFace:
        rect = entry.get("face_rectangle")
        if not isinstance(rect, Mapping):
            raise ValueError("face_rectangle is missing")

        # The rectangle is treated as percent-of-image, per the integration
        # contract.  Face++ documents pixel coordinates; values above 100 end
        # up clamped to the image edge.
        face: Dict[str, Any] = {
            "id": entry.get("face_token") or str(uuid.uuid4()),
            "bounding_box": BoundingBox(
                left=as_number(rect["left"]) / 100,
                top=as_number(rect["top"]) / 100,
                width=as_number(rect["width"]) / 100,
                height=as_number(rect["height"]) / 100,
            ),
            "confidence": FACE_CONFIDENCE,
        }

        attrs = entry.get("attributes") or {}

        age = attrs.get("age")
        if age:
            value = as_number(age["value"])
            face["age_range"] = AgeRange(low=max(0, value - AGE_SPREAD), high=value + AGE_SPREAD)

        gender = attrs.get("gender")
        if gender:
            face["gender"] = Gender(value=gender.get("value"), confidence=GENDER_CONFIDENCE)

        emotion = attrs.get("emotion")
        if emotion:
            face["emotions"] = [
                Emotion(type=canonical, confidence=as_number(emotion.get(bucket)))
                for bucket, canonical in EMOTION_MAP
            ]

        smile = attrs.get("smile")
        if smile:
            value = as_number(smile.get("value"))
            face["smile"] = BooleanAttribute(
                value=value > as_number(smile.get("threshold")), confidence=value
            )

        eyestatus = attrs.get("eyestatus")
        if eyestatus:
            left = _eye_open_mass(eyestatus.get("left_eye_status") or {})
            right = _eye_open_mass(eyestatus.get("right_eye_status") or {})
            face["eyes_open"] = BooleanAttribute(
                value=left > 50 and right > 50, confidence=(left + right) / 2
            )

        mouth = attrs.get("mouthstatus")
        if mouth:
            value = as_number(mouth.get("open"))
            face["mouth_open"] = BooleanAttribute(value=value > 50, confidence=value)

        glass = attrs.get("glass")
        if glass:
            kind = glass.get("value")
            present = kind not in (None, "None")
            confidence = GLASSES_PRESENT_CONFIDENCE if present else GLASSES_ABSENT_CONFIDENCE
            face["eyeglasses"] = BooleanAttribute(value=kind == "Normal", confidence=confidence)
            face["sunglasses"] = BooleanAttribute(value=kind == "Dark", confidence=confidence)

        headpose = attrs.get("headpose")
        if headpose:
            face["pose"] = Pose(
                pitch=as_number(headpose.get("pitch_angle")),
                roll=as_number(headpose.get("roll_angle")),
                yaw=as_number(headpose.get("yaw_angle")),
            )

        return DetectedFace(**face)


def _eye_open_mass(eye: Mapping[str, Any]) -> float:
    return as_number(eye.get("no_glass_eye_open")) + as_number(eye.get("normal_glass_eye_open"))


__all__ = ["FacePlusPlusProvider", "EMOTION_MAP", "return_attributes"]
