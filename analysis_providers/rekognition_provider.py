from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)
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
    ImageQuality,
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

# Everything is fetched on every call.  Display toggles only hide attributes
# later on, so they cannot lower what a Rekognition call costs.
REQUESTED_ATTRIBUTES = [
    "DEFAULT",
    "AGE_RANGE",
    "GENDER",
    "EMOTIONS",
    "SMILE",
    "EYEGLASSES",
    "SUNGLASSES",
    "BEARD",
    "MUSTACHE",
    "EYES_OPEN",
    "MOUTH_OPEN",
]

_AUTH_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "ExpiredTokenException",
}
_FORMAT_CODES = {
    "InvalidImageFormatException",
    "ImageTooLargeException",
    "InvalidParameterException",
}
_TRANSIENT_CODES = {
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "InternalServerError",
    "ServiceUnavailableException",
}

_BOOLEAN_FIELDS = {
    "Smile": "smile",
    "EyesOpen": "eyes_open",
    "MouthOpen": "mouth_open",
    "Eyeglasses": "eyeglasses",
    "Sunglasses": "sunglasses",
    "Beard": "beard",
    "Mustache": "mustache",
}

DEFAULT_REGION = "us-east-1"


def resolve_region(value: Optional[str]) -> str:
    """Return a usable region name.

    Deployments have been seen with the STS endpoint description pasted into
    ``AWS_REGION``; anything that does not look like ``xx-yyyy-N`` falls back
    to ``us-east-1``.
    """
    if not value or " " in value or "://" in value or "-" not in value:
        return DEFAULT_REGION
    return value


class RekognitionProvider(FaceAnalysisProvider):
    """AWS Rekognition ``DetectFaces`` adapter."""

    name = ApiProvider.AWS
    max_image_bytes = 5 * 1024 * 1024

    def __init__(self, client: Any = None, settings: Optional[Settings] = None) -> None:
        self._client = client
        self._settings = settings

    @property
    def client(self) -> Any:
        if self._client is None:
            settings = self._settings or get_settings()
            region = resolve_region(settings.AWS_REGION)
            if region != settings.AWS_REGION:
                logger.warning("AWS_REGION %r is not a region name, using %s", settings.AWS_REGION, region)
            self._client = boto3.client(
                "rekognition",
                region_name=region,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            )
            logger.info(
                "Rekognition client created for %s (credentials configured: %s)",
                region,
                bool(settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY),
            )
        return self._client

    async def detect(self, image_bytes: bytes, settings: AnalysisSettings) -> Dict[str, Any]:
        """Call ``DetectFaces``.  Relies on botocore's default timeouts."""
        try:
            response = await asyncio.to_thread(
                self.client.detect_faces,
                Image={"Bytes": image_bytes},
                Attributes=REQUESTED_ATTRIBUTES,
            )
        except ProviderError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        response = dict(response)
        response.pop("ResponseMetadata", None)
        return response

    def _classify(self, exc: Exception) -> ProviderError:
        name = self.name.value
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            code = error.get("Code", "")
            message = error.get("Message") or str(exc)
            logger.error("Rekognition returned %s: %s", code, message)
            if code in _AUTH_CODES:
                return ProviderAuthError("AWS rejected the configured credentials", name)
            if code == "ImageTooLargeException":
                return ProviderFormatError("image exceeds the Rekognition size limit", name)
            if code in _FORMAT_CODES:
                return ProviderFormatError(message, name)
            if code in _TRANSIENT_CODES:
                return ProviderTransientError(message, name)
            return ProviderUnknownError(f"{code}: {message}" if code else message, name)
        if isinstance(exc, NoCredentialsError):
            return ProviderAuthError("AWS credentials are not configured", name)
        if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
            logger.warning("Rekognition unreachable: %s", exc)
            return ProviderTransientError(str(exc), name)
        if isinstance(exc, BotoCoreError):
            return ProviderUnknownError(str(exc), name)
        logger.exception("Unexpected error calling Rekognition")
        return ProviderUnknownError(str(exc), name)

    def normalize(self, raw_payload: Any, confidence_threshold: float) -> List[DetectedFace]:
        """Map ``FaceDetails`` into canonical faces, dropping low-confidence ones.

        The threshold is applied on each detection's own ``Confidence`` before
        any attribute is looked at.
        """
        name = self.name.value
        payload = require_mapping(raw_payload, "response", name)
        details = require_list(payload.get("FaceDetails", []), "FaceDetails", name)

        faces: List[DetectedFace] = []
        for index, detail in enumerate(details):
            detail = require_mapping(detail, f"FaceDetails[{index}]", name)
            try:
                if as_number(detail.get("Confidence")) < confidence_threshold:
                    continue
                faces.append(self._to_face(detail))
            except (ValidationError, AttributeError, TypeError, ValueError) as exc:
                raise MalformedPayloadError(f"FaceDetails[{index}]: {exc}", name) from exc
        return faces

    def _to_face(self, detail: Mapping[str, Any]) -> DetectedFace:
        box = detail.get("BoundingBox") or {}
        face: Dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "bounding_box": BoundingBox(
                left=as_number(box.get("Left")),
                top=as_number(box.get("Top")),
                width=as_number(box.get("Width")),
                height=as_number(box.get("Height")),
            ),
            "confidence": as_number(detail.get("Confidence")),
        }

        age = detail.get("AgeRange")
        if age:
            face["age_range"] = AgeRange(low=as_number(age.get("Low")), high=as_number(age.get("High")))

        gender = detail.get("Gender")
        if gender:
            face["gender"] = Gender(
                value=gender.get("Value") or "Unknown",
                confidence=as_number(gender.get("Confidence")),
            )

        emotions = detail.get("Emotions")
        if emotions:
            face["emotions"] = [
                Emotion(type=e.get("Type") or "UNKNOWN", confidence=as_number(e.get("Confidence")))
                for e in emotions
            ]

        for vendor_key, field in _BOOLEAN_FIELDS.items():
            attr = detail.get(vendor_key)
            if attr:
                face[field] = BooleanAttribute(
                    value=bool(attr.get("Value", False)),
                    confidence=as_number(attr.get("Confidence")),
                )

        pose = detail.get("Pose")
        if pose:
            face["pose"] = Pose(
                roll=as_number(pose.get("Roll")),
                yaw=as_number(pose.get("Yaw")),
                pitch=as_number(pose.get("Pitch")),
            )

        quality = detail.get("Quality")
        if quality:
            face["quality"] = ImageQuality(
                brightness=as_number(quality.get("Brightness")),
                sharpness=as_number(quality.get("Sharpness")),
            )

        return DetectedFace(**face)


__all__ = ["RekognitionProvider", "REQUESTED_ATTRIBUTES", "resolve_region"]
