from __future__ import annotations

import io
from typing import Any, Dict, List, Mapping, Protocol, Tuple

from PIL import Image, UnidentifiedImageError

from analysis_types import AnalysisSettings, ApiProvider, DetectedFace

from .errors import MalformedPayloadError, ProviderFormatError

SUPPORTED_IMAGE_FORMATS = ("JPEG", "PNG")


class FaceAnalysisProvider(Protocol):
    """Common interface for face analysis backends.

    A provider is split in two halves.  ``detect`` performs the network call
    and returns the vendor payload untouched (it is kept for audit/export),
    while ``normalize`` is a pure function mapping that payload into the
    canonical :class:`DetectedFace` list.  ``normalize`` must accept an empty
    detection set and must raise :class:`MalformedPayloadError` for anything
    it cannot interpret; it never returns a partial list.
    """

    name: ApiProvider
    max_image_bytes: int

    async def detect(self, image_bytes: bytes, settings: AnalysisSettings) -> Dict[str, Any]:
        """Send the image to the vendor and return its raw JSON payload."""
        raise NotImplementedError

    def normalize(self, raw_payload: Any, confidence_threshold: float) -> List[DetectedFace]:
        """Map a raw vendor payload into canonical faces."""
        raise NotImplementedError


def check_image(image_bytes: bytes, provider: FaceAnalysisProvider) -> Tuple[str, int, int]:
    """Validate that ``image_bytes`` is something ``provider`` will accept.

    Returns ``(format, width, height)``.  Raises :class:`ProviderFormatError`
    for empty, undecodable, unsupported or oversized images.
    """
    name = provider.name.value
    if not image_bytes:
        raise ProviderFormatError("image is empty", name)
    if len(image_bytes) > provider.max_image_bytes:
        raise ProviderFormatError(
            f"image is {len(image_bytes)} bytes, limit is {provider.max_image_bytes}", name
        )
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            fmt = (img.format or "").upper()
            width, height = img.size
    except (UnidentifiedImageError, OSError) as exc:
        raise ProviderFormatError("image could not be decoded", name) from exc
    if fmt not in SUPPORTED_IMAGE_FORMATS:
        raise ProviderFormatError(f"{fmt or 'unknown'} images are not supported", name)
    return fmt, width, height


def as_number(value: Any) -> float:
    """Vendor numeric field as float; absent (``None``) reads as 0."""
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {value!r}")
    return float(value)


def require_mapping(value: Any, what: str, provider: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise MalformedPayloadError(f"{what} is not an object", provider)
    return value


def require_list(value: Any, what: str, provider: str) -> List[Any]:
    if not isinstance(value, list):
        raise MalformedPayloadError(f"{what} is not a list", provider)
    return value


__all__ = [
    "FaceAnalysisProvider",
    "SUPPORTED_IMAGE_FORMATS",
    "check_image",
    "as_number",
    "require_mapping",
    "require_list",
]
