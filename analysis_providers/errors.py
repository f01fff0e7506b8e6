"""Exception taxonomy shared by all provider adapters.

Quota and rate-limit rejections are not exceptions: the usage gate
reports those as :class:`services.usage_tracker.QuotaOutcome` values before
any provider is contacted.
"""
from __future__ import annotations

from typing import Optional


class ProviderError(Exception):
    """Base class for failures raised while talking to a vision provider."""

    category = "provider error"

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        prefix = f"[{self.provider}] " if self.provider else ""
        return f"{prefix}{self.category}: {self.message}"


class ProviderAuthError(ProviderError):
    """Credentials are missing or were rejected by the vendor."""

    category = "authentication failed"


class ProviderFormatError(ProviderError):
    """The image format or size is not accepted by the vendor."""

    category = "unsupported image"


class ProviderTransientError(ProviderError):
    """Network failure, timeout or throttling; the caller may retry."""

    category = "provider temporarily unavailable"


class ProviderUnknownError(ProviderError):
    """Anything else.  The vendor's own message is kept verbatim."""

    category = "provider error"


class MalformedPayloadError(ProviderUnknownError):
    """The vendor answered, but not with the payload shape we expect."""

    category = "unexpected provider response"


__all__ = [
    "ProviderError",
    "ProviderAuthError",
    "ProviderFormatError",
    "ProviderTransientError",
    "ProviderUnknownError",
    "MalformedPayloadError",
]
