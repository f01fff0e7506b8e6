from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.dependencies import get_capture_store
from api.schemas import CaptureDetailOut, CaptureOut
from services.local_storage import CaptureStore

router = APIRouter(prefix="/api/captures", tags=["captures"])


@router.get("", response_model=List[CaptureOut])
def list_captures(store: CaptureStore = Depends(get_capture_store)):
    """All captures, newest first."""
    return store.get_all_captures()


# Declared before "/{capture_id}" so "export" is not read as an id.
@router.get("/export")
def export_captures(store: CaptureStore = Depends(get_capture_store)):
    day = datetime.now(timezone.utc).date().isoformat()
    return JSONResponse(
        content=jsonable_encoder(store.get_all_captures()),
        headers={
            "Content-Disposition": f"attachment; filename=crowd-analytics-data-{day}.json"
        },
    )


@router.post("/reset")
def reset_captures(store: CaptureStore = Depends(get_capture_store)):
    store.reset_captures()
    return {"message": "All captures reset successfully"}


@router.get("/{capture_id}", response_model=CaptureDetailOut)
def get_capture(capture_id: int, store: CaptureStore = Depends(get_capture_store)):
    capture = store.get_capture(capture_id)
    if capture is None:
        raise HTTPException(status_code=404, detail="Capture not found")
    capture["detected_people"] = store.get_detected_people(capture_id)
    return capture
