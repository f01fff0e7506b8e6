from __future__ import annotations

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from analysis_providers.errors import (
    ProviderError,
    ProviderFormatError,
    ProviderTransientError,
)
from analysis_types import ApiProvider
from api.dependencies import get_capture_store, get_coordinator, get_usage_gate
from api.schemas import AnalyzeRequest, CaptureOut, QuotaRejectionOut, UsageOut
from crowd_analysis import AnalysisCoordinator
from services.local_storage import CaptureStore
from services.usage_tracker import QuotaOutcome, QuotaRejection, UsageGate, UsageRecord

router = APIRouter(prefix="/api", tags=["analysis"])

logger = logging.getLogger(__name__)

_REJECTION_MESSAGES = {
    QuotaOutcome.QUOTA_EXCEEDED: "Monthly API quota exceeded",
    QuotaOutcome.RATE_LIMITED: "Per-minute API rate limit exceeded",
}


def status_for(exc: ProviderError) -> int:
    """HTTP status reported for a provider failure."""
    if isinstance(exc, ProviderFormatError):
        return 400
    if isinstance(exc, ProviderTransientError):
        return 503
    return 502


def usage_out(record: UsageRecord, gate: UsageGate) -> UsageOut:
    limits = gate.limits[record.provider]
    return UsageOut(
        provider=record.provider,
        start_date=record.window_start,
        reset_date=record.window_reset_at,
        count=record.count,
        monthly_limit=limits.monthly_limit,
        reached_limit=record.reached_limit,
        minute_count=record.minute_count,
        per_minute_limit=limits.per_minute_limit,
    )


@router.post("/analyze", response_model=CaptureOut)
async def analyze_frame(
    req: AnalyzeRequest,
    coordinator: AnalysisCoordinator = Depends(get_coordinator),
    store: CaptureStore = Depends(get_capture_store),
):
    """Analyze one camera frame and store the result as a capture."""
    try:
        image_bytes = req.image_bytes()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    settings = await asyncio.to_thread(store.get_analysis_settings)

    try:
        result = await coordinator.analyze(image_bytes, settings)
    except ProviderError as exc:
        raise HTTPException(status_code=status_for(exc), detail=str(exc)) from exc

    if isinstance(result, QuotaRejection):
        body = QuotaRejectionOut(
            detail=_REJECTION_MESSAGES[result.outcome],
            provider=result.provider,
            outcome=result.outcome.value,
            usage=usage_out(result.usage, coordinator.usage_gate),
        )
        return JSONResponse(status_code=429, content=body.model_dump(mode="json"))

    return await asyncio.to_thread(store.create_capture, result)


@router.get("/usage", response_model=List[UsageOut])
def get_usage(gate: UsageGate = Depends(get_usage_gate)):
    return [usage_out(record, gate) for record in gate.current_usage()]


@router.post("/usage/{provider}/reset", response_model=UsageOut)
def reset_usage(provider: ApiProvider, gate: UsageGate = Depends(get_usage_gate)):
    logger.info("Usage reset requested for %s", provider.value)
    return usage_out(gate.reset(provider), gate)
