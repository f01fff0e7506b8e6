"""FastAPI dependency providers.

Tests swap these out through ``app.dependency_overrides``.
"""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from crowd_analysis import AnalysisCoordinator, build_coordinator
from env import get_settings
from services.local_storage import CaptureStore
from services.usage_tracker import UsageGate


@lru_cache()
def get_capture_store() -> CaptureStore:
    return CaptureStore(get_settings().CAPTURE_DB_PATH)


@lru_cache()
def get_coordinator() -> AnalysisCoordinator:
    return build_coordinator(get_settings())


def get_usage_gate(coordinator: AnalysisCoordinator = Depends(get_coordinator)) -> UsageGate:
    return coordinator.usage_gate
