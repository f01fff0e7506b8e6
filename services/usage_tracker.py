"""Monthly quota and per-minute rate limiting for the vision providers.

Each provider has a :class:`UsageRecord` holding a monthly window and, for
rate-limited providers, a one-minute window.  The whole document is loaded,
checked, mutated and saved under one lock per call, so two concurrent requests
cannot both spend the last unit of quota.

The on-disk shape is the one the dashboard has always read::

    {"aws": {"provider": "aws", "startDate": ..., "resetDate": ...,
             "count": 0, "reachedLimit": false},
     "facepp": {..., "minuteStartTime": ..., "minuteCount": 0}}
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from analysis_types import ApiProvider
from env import Settings, get_settings

logger = logging.getLogger(__name__)

MINUTE_WINDOW_SECONDS = 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def first_of_next_month(moment: datetime) -> datetime:
    """Midnight on the first day of the month after ``moment``."""
    year = moment.year + (1 if moment.month == 12 else 0)
    month = moment.month % 12 + 1
    return datetime(year, month, 1, tzinfo=moment.tzinfo or timezone.utc)


class QuotaOutcome(str, Enum):
    ACCEPTED = "accepted"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"


class UsageRecord(BaseModel):
    """Usage counters for one provider."""

    model_config = ConfigDict(populate_by_name=True)

    provider: ApiProvider
    window_start: datetime = Field(alias="startDate")
    window_reset_at: datetime = Field(alias="resetDate")
    count: int = Field(0, ge=0)
    reached_limit: bool = Field(False, alias="reachedLimit")
    minute_window_start: Optional[datetime] = Field(None, alias="minuteStartTime")
    minute_count: Optional[int] = Field(None, alias="minuteCount", ge=0)

    @field_validator("window_start", "window_reset_at", "minute_window_start")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class QuotaRejection(BaseModel):
    """Returned instead of an analysis when the usage gate refuses a call."""

    provider: ApiProvider
    outcome: QuotaOutcome
    usage: UsageRecord


@dataclass(frozen=True)
class ProviderLimits:
    monthly_limit: int
    per_minute_limit: Optional[int] = None

    @property
    def rate_limited(self) -> bool:
        return self.per_minute_limit is not None


def limits_from_settings(settings: Optional[Settings] = None) -> Dict[ApiProvider, ProviderLimits]:
    settings = settings or get_settings()
    return {
        ApiProvider.AWS: ProviderLimits(monthly_limit=settings.AWS_MONTHLY_LIMIT),
        ApiProvider.FACEPP: ProviderLimits(
            monthly_limit=settings.FACEPP_MONTHLY_LIMIT,
            per_minute_limit=settings.FACEPP_RATE_LIMIT_PER_MINUTE,
        ),
    }


class UsageStore(Protocol):
    """Loads and saves the whole usage document."""

    def load(self) -> Dict[str, Any]:
        raise NotImplementedError

    def save(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError


class InMemoryUsageStore:
    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = json.loads(json.dumps(data or {}))
        self.saves = 0

    def load(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self.data))

    def save(self, data: Dict[str, Any]) -> None:
        self.data = json.loads(json.dumps(data))
        self.saves += 1


class JsonFileUsageStore:
    """Usage document kept in a JSON file, replaced atomically on save."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Unreadable usage file %s, starting from defaults: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.error("Usage file %s does not hold an object, starting from defaults", self.path)
            return {}
        return data

    def save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class UsageGate:
    """Decides whether a provider call may go ahead and records it if so."""

    def __init__(
        self,
        store: UsageStore,
        limits: Optional[Mapping[ApiProvider, ProviderLimits]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.limits = dict(limits if limits is not None else limits_from_settings())
        self.clock = clock or utc_now
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------
    def _default_record(self, provider: ApiProvider, now: datetime) -> UsageRecord:
        record = UsageRecord(
            provider=provider,
            window_start=now,
            window_reset_at=first_of_next_month(now),
        )
        if self._limits_for(provider).rate_limited:
            record.minute_window_start = now
            record.minute_count = 0
        return record

    def _limits_for(self, provider: ApiProvider) -> ProviderLimits:
        try:
            return self.limits[provider]
        except KeyError:
            raise ValueError(f"No usage limits configured for provider {provider.value!r}") from None

    def _load(self, now: datetime) -> Dict[ApiProvider, UsageRecord]:
        """Load every record, resetting expired monthly windows.

        Anything missing or unparseable is replaced by defaults.  The
        document is saved again whenever it had to be changed.
        """
        raw = self.store.load()
        records: Dict[ApiProvider, UsageRecord] = {}
        changed = False
        for provider in self.limits:
            entry = raw.get(provider.value)
            record = None
            if entry is not None:
                try:
                    record = UsageRecord.model_validate(entry)
                except ValidationError as exc:
                    logger.error("Discarding invalid usage record for %s: %s", provider.value, exc)
                else:
                    if record.provider is not provider:
                        logger.error(
                            "Discarding usage record for %s filed under %s",
                            record.provider.value,
                            provider.value,
                        )
                        record = None
            if record is None:
                record = self._default_record(provider, now)
                changed = True
            elif record.window_reset_at <= now:
                logger.info(
                    "Monthly window for %s ended at %s, resetting count %d",
                    provider.value,
                    record.window_reset_at.isoformat(),
                    record.count,
                )
                record.window_start = now
                record.window_reset_at = first_of_next_month(now)
                record.count = 0
                record.reached_limit = False
                changed = True
            records[provider] = record
        if changed:
            self._save(records)
        return records

    def _save(self, records: Mapping[ApiProvider, UsageRecord]) -> None:
        self.store.save({p.value: r.to_document() for p, r in records.items()})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def consume(self, provider: ApiProvider) -> QuotaOutcome:
        """Try to spend one unit of ``provider``'s quota."""
        limits = self._limits_for(provider)
        with self._lock:
            now = self.clock()
            records = self._load(now)
            record = records[provider]

            if record.reached_limit:
                return QuotaOutcome.QUOTA_EXCEEDED

            if record.count >= limits.monthly_limit:
                record.reached_limit = True
                self._save(records)
                logger.warning(
                    "%s monthly limit of %d reached", provider.value, limits.monthly_limit
                )
                return QuotaOutcome.QUOTA_EXCEEDED

            if limits.rate_limited:
                started = record.minute_window_start or now
                if (now - started).total_seconds() >= MINUTE_WINDOW_SECONDS:
                    record.minute_window_start = now
                    record.minute_count = 1
                elif (record.minute_count or 0) >= limits.per_minute_limit:
                    logger.info(
                        "%s rate limit of %d/min reached", provider.value, limits.per_minute_limit
                    )
                    return QuotaOutcome.RATE_LIMITED
                else:
                    if record.minute_window_start is None:
                        record.minute_window_start = now
                    record.minute_count = (record.minute_count or 0) + 1

            record.count += 1
            self._save(records)
            return QuotaOutcome.ACCEPTED

    def try_consume(self, provider: ApiProvider) -> bool:
        return self.consume(provider) is QuotaOutcome.ACCEPTED

    def current_usage(self) -> List[UsageRecord]:
        with self._lock:
            return list(self._load(self.clock()).values())

    def usage_for(self, provider: ApiProvider) -> UsageRecord:
        with self._lock:
            return self._load(self.clock())[provider]

    def reset(self, provider: ApiProvider) -> UsageRecord:
        """Clear ``provider``'s counters and start a fresh monthly window."""
        self._limits_for(provider)
        with self._lock:
            now = self.clock()
            records = self._load(now)
            records[provider] = self._default_record(provider, now)
            self._save(records)
            logger.info("Usage counters for %s reset", provider.value)
            return records[provider]


__all__ = [
    "QuotaOutcome",
    "QuotaRejection",
    "UsageRecord",
    "ProviderLimits",
    "UsageStore",
    "InMemoryUsageStore",
    "JsonFileUsageStore",
    "UsageGate",
    "first_of_next_month",
    "limits_from_settings",
]
