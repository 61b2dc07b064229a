from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from votechain import crud
from votechain.deps import get_clock, get_current_profile, get_storage, require_super_admin
from votechain.schemas import AdminRequestCreate, AdminRequestOut
from votechain.voting import Clock

router = APIRouter(prefix="/admin", tags=["Admin Requests"])


@router.post("/requests", response_model=AdminRequestOut, status_code=201)
async def request_admin_access(
    body: AdminRequestCreate,
    profile: Dict[str, Any] = Depends(get_current_profile),
    storage=Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    try:
        request = await crud.request_admin_access(storage, profile, clock(), face_capture=body.face_capture)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return crud.admin_request_out(request)


@router.get("/requests", response_model=List[AdminRequestOut])
async def list_requests(
    status: Optional[str] = Query(None),
    profile: Dict[str, Any] = Depends(require_super_admin),
    storage=Depends(get_storage),
):
    try:
        requests = await crud.list_admin_requests(storage, status=status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [crud.admin_request_out(r) for r in requests]


async def _set_status(storage, request_id: str, new_status: str, now) -> AdminRequestOut:
    updated = await crud.update_admin_request_status(storage, request_id, new_status, now)
    if not updated:
        raise HTTPException(status_code=404, detail="Admin request not found or not in 'pending' state.")
    return crud.admin_request_out(updated)


@router.post("/requests/{request_id}/approve", response_model=AdminRequestOut)
async def approve_request(
    request_id: str,
    profile: Dict[str, Any] = Depends(require_super_admin),
    storage=Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    return await _set_status(storage, request_id, "approved", clock())


@router.post("/requests/{request_id}/reject", response_model=AdminRequestOut)
async def reject_request(
    request_id: str,
    profile: Dict[str, Any] = Depends(require_super_admin),
    storage=Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    return await _set_status(storage, request_id, "rejected", clock())
