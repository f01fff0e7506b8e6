import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from analysis_types import ApiProvider
from services.usage_tracker import (
    InMemoryUsageStore,
    JsonFileUsageStore,
    ProviderLimits,
    QuotaOutcome,
    UsageGate,
    first_of_next_month,
    limits_from_settings,
)

START = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryUsageStore()


def make_gate(store, clock, monthly=5, per_minute=None):
    limits = {
        ApiProvider.AWS: ProviderLimits(monthly_limit=monthly),
        ApiProvider.FACEPP: ProviderLimits(monthly_limit=monthly, per_minute_limit=per_minute or 2),
    }
    return UsageGate(store, limits, clock=clock)


def test_first_of_next_month():
    assert first_of_next_month(START) == datetime(2025, 4, 1, tzinfo=timezone.utc)
    december = datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc)
    assert first_of_next_month(december) == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_monthly_quota_of_five(store, clock):
    gate = make_gate(store, clock, monthly=5)

    for expected in range(1, 6):
        assert gate.try_consume(ApiProvider.AWS) is True
        assert store.data["aws"]["count"] == expected

    assert gate.consume(ApiProvider.AWS) is QuotaOutcome.QUOTA_EXCEEDED
    assert store.data["aws"]["reachedLimit"] is True

    saves = store.saves
    assert gate.try_consume(ApiProvider.AWS) is False
    assert store.data["aws"]["count"] == 5
    assert store.saves == saves


def test_rate_limit_leaves_monthly_count_alone(store, clock):
    gate = make_gate(store, clock, monthly=100, per_minute=2)

    assert gate.consume(ApiProvider.FACEPP) is QuotaOutcome.ACCEPTED
    clock.advance(seconds=10)
    assert gate.consume(ApiProvider.FACEPP) is QuotaOutcome.ACCEPTED
    clock.advance(seconds=10)
    assert gate.consume(ApiProvider.FACEPP) is QuotaOutcome.RATE_LIMITED
    assert store.data["facepp"]["count"] == 2
    assert store.data["facepp"]["minuteCount"] == 2

    clock.advance(seconds=60)
    assert gate.consume(ApiProvider.FACEPP) is QuotaOutcome.ACCEPTED
    assert store.data["facepp"]["count"] == 3
    assert store.data["facepp"]["minuteCount"] == 1


def test_monthly_check_runs_before_minute_bucket(store, clock):
    gate = make_gate(store, clock, monthly=1, per_minute=5)

    assert gate.consume(ApiProvider.FACEPP) is QuotaOutcome.ACCEPTED
    assert gate.consume(ApiProvider.FACEPP) is QuotaOutcome.QUOTA_EXCEEDED
    assert store.data["facepp"]["minuteCount"] == 1


def test_aws_has_no_minute_window(store, clock):
    gate = make_gate(store, clock, monthly=100)

    for _ in range(10):
        assert gate.try_consume(ApiProvider.AWS)

    assert "minuteCount" not in store.data["aws"]
    assert "minuteStartTime" not in store.data["aws"]


def test_expired_window_resets_on_read(store, clock):
    gate = make_gate(store, clock, monthly=5)
    for _ in range(6):
        gate.consume(ApiProvider.AWS)
    assert store.data["aws"]["reachedLimit"] is True

    clock.now = datetime(2025, 4, 1, tzinfo=timezone.utc)
    usage = {record.provider: record for record in gate.current_usage()}

    assert usage[ApiProvider.AWS].count == 0
    assert usage[ApiProvider.AWS].reached_limit is False
    assert usage[ApiProvider.AWS].window_start == clock.now
    assert usage[ApiProvider.AWS].window_reset_at == datetime(2025, 5, 1, tzinfo=timezone.utc)
    # persisted even though nothing was consumed
    assert store.data["aws"]["count"] == 0
    assert store.data["aws"]["reachedLimit"] is False


def test_window_does_not_reset_mid_month(store, clock):
    gate = make_gate(store, clock, monthly=5)
    gate.consume(ApiProvider.AWS)

    clock.now = datetime(2025, 3, 31, 23, 59, 59, tzinfo=timezone.utc)

    assert gate.usage_for(ApiProvider.AWS).count == 1


def test_reads_legacy_document(clock):
    store = InMemoryUsageStore({
        "aws": {
            "provider": "aws",
            "startDate": "2025-03-01T08:00:00.000Z",
            "resetDate": "2025-04-01T00:00:00.000Z",
            "count": 42,
            "reachedLimit": False,
        },
        "facepp": {
            "provider": "facepp",
            "startDate": "2025-03-01T08:00:00.000Z",
            "resetDate": "2025-04-01T00:00:00.000Z",
            "count": 7,
            "reachedLimit": False,
            "minuteStartTime": "2025-03-14T09:29:50.000Z",
            "minuteCount": 2,
        },
    })
    gate = make_gate(store, clock, monthly=1000, per_minute=2)

    assert gate.usage_for(ApiProvider.AWS).count == 42
    assert gate.consume(ApiProvider.FACEPP) is QuotaOutcome.RATE_LIMITED
    assert gate.consume(ApiProvider.AWS) is QuotaOutcome.ACCEPTED
    assert store.data["aws"]["count"] == 43


def test_reset_clears_counters(store, clock):
    gate = make_gate(store, clock, monthly=2, per_minute=5)
    for _ in range(3):
        gate.consume(ApiProvider.FACEPP)
    assert store.data["facepp"]["reachedLimit"] is True

    record = gate.reset(ApiProvider.FACEPP)

    assert record.count == 0
    assert record.reached_limit is False
    assert record.minute_count == 0
    assert gate.try_consume(ApiProvider.FACEPP) is True


def test_concurrent_consumers_never_overspend(store, clock):
    gate = make_gate(store, clock, monthly=50)
    results = []

    def worker():
        for _ in range(20):
            results.append(gate.try_consume(ApiProvider.AWS))

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 50
    assert store.data["aws"]["count"] == 50


def test_json_store_round_trip(tmp_path, clock):
    path = tmp_path / "api-usage.json"
    gate = make_gate(JsonFileUsageStore(path), clock)

    gate.consume(ApiProvider.AWS)
    gate.consume(ApiProvider.AWS)

    data = json.loads(path.read_text())
    assert data["aws"]["count"] == 2
    assert set(data) == {"aws", "facepp"}
    assert list(tmp_path.iterdir()) == [path]

    restarted = make_gate(JsonFileUsageStore(path), clock)
    assert restarted.usage_for(ApiProvider.AWS).count == 2


def test_corrupt_file_falls_back_to_defaults(tmp_path, clock, caplog):
    path = tmp_path / "api-usage.json"
    path.write_text("{not json")
    gate = make_gate(JsonFileUsageStore(path), clock)

    with caplog.at_level("ERROR"):
        assert gate.usage_for(ApiProvider.FACEPP).count == 0

    assert "Unreadable usage file" in caplog.text
    data = json.loads(path.read_text())
    assert data["facepp"]["count"] == 0
    assert data["facepp"]["minuteCount"] == 0


def test_invalid_record_is_replaced(clock, caplog):
    store = InMemoryUsageStore({"aws": {"provider": "aws", "count": "lots"}})
    gate = make_gate(store, clock)

    with caplog.at_level("ERROR"):
        assert gate.usage_for(ApiProvider.AWS).count == 0
    assert "Discarding invalid usage record for aws" in caplog.text


def test_record_under_wrong_key_is_replaced(clock, caplog):
    misfiled = {
        "provider": "facepp",
        "startDate": START.isoformat(),
        "resetDate": first_of_next_month(START).isoformat(),
        "count": 4,
        "reachedLimit": False,
        "minuteStartTime": START.isoformat(),
        "minuteCount": 1,
    }
    store = InMemoryUsageStore({"aws": misfiled})
    gate = make_gate(store, clock)

    with caplog.at_level("ERROR"):
        usage = gate.current_usage()

    assert [record.provider for record in usage] == [ApiProvider.AWS, ApiProvider.FACEPP]
    assert usage[0].count == 0
    assert usage[0].minute_count is None
    assert store.data["aws"]["provider"] == "aws"
    assert "Discarding usage record for facepp filed under aws" in caplog.text


def test_limits_from_settings(settings):
    limits = limits_from_settings(settings)

    assert limits[ApiProvider.AWS] == ProviderLimits(monthly_limit=1000)
    assert limits[ApiProvider.FACEPP] == ProviderLimits(monthly_limit=30000, per_minute_limit=20)
