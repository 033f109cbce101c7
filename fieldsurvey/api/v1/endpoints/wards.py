"""Wards API — local ward lookup and a full refresh from the server."""

from fastapi import APIRouter, Depends, HTTPException

from fieldsurvey.api.deps import get_context
from fieldsurvey.core.exceptions import PersistenceError
from fieldsurvey.schemas.entities import Ward
from fieldsurvey.services.sessions import AppContext
from fieldsurvey.services.sync import RemoteError, WardNotFoundError

router = APIRouter()


@router.get("/", response_model=list[Ward])
def list_wards(context: AppContext = Depends(get_context)):
    return context.wards.local_wards()


@router.get("/{ward_number}", response_model=Ward)
def get_ward(ward_number: int, context: AppContext = Depends(get_context)):
    try:
        return context.wards.local_ward(ward_number)
    except WardNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/refresh")
async def refresh_wards(context: AppContext = Depends(get_context)):
    try:
        count = await context.wards.refresh()
    except RemoteError as exc:
        raise HTTPException(status_code=502, detail=f"Ward refresh failed: {exc}")
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"refreshed": count}
