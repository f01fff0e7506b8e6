from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from analysis_types import AnalysisSettings
from api.dependencies import get_capture_store
from api.schemas import SettingsUpdate
from services.local_storage import CaptureStore

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=AnalysisSettings)
def read_settings(store: CaptureStore = Depends(get_capture_store)):
    return store.get_analysis_settings()


@router.post("", response_model=AnalysisSettings)
def update_settings(update: SettingsUpdate, store: CaptureStore = Depends(get_capture_store)):
    """Apply the fields present in the body; the rest keep their values."""
    try:
        return store.update_analysis_settings(update.model_dump(exclude_unset=True))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=jsonable_encoder(exc.errors())) from exc
