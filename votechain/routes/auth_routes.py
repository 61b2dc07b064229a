from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from votechain import crud
from votechain.deps import get_clock, get_current_profile, get_storage, oauth2_scheme
from votechain.schemas import CollegeEmailRequest, Profile, SessionOut, UserStats, WalletConnectRequest
from votechain.voting import Clock

router = APIRouter(prefix="/auth", tags=["Wallet"])


@router.post("/connect", response_model=SessionOut)
async def connect(
    body: Optional[WalletConnectRequest] = None,
    token: Optional[str] = Depends(oauth2_scheme),
    storage=Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    """
    Connect a new wallet, or reconnect one by sending its address together
    with its current bearer token.
    """
    wallet_address = body.wallet_address if body else None
    profile, token = await crud.connect_wallet(storage, clock(), wallet_address=wallet_address, token=token)
    return SessionOut(access_token=token, profile=crud.profile_out(profile))


@router.post("/disconnect")
async def disconnect(
    profile: Dict[str, Any] = Depends(get_current_profile),
    storage=Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    await crud.disconnect_wallet(storage, profile, clock())
    return {"message": "Wallet disconnected"}


@router.get("/me", response_model=Profile)
async def me(profile: Dict[str, Any] = Depends(get_current_profile)):
    return crud.profile_out(profile)


@router.post("/college-email")
async def college_email(
    body: CollegeEmailRequest,
    profile: Dict[str, Any] = Depends(get_current_profile),
    storage=Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    updated, verified = await crud.verify_college_email(storage, profile, body.email, clock())
    if verified:
        message = "College email verified successfully"
    else:
        message = "Email added but not recognized as a college email (.edu domain required)"
    return {"message": message, "verified": verified, "profile": crud.profile_out(updated)}


@router.get("/stats", response_model=UserStats)
async def stats(profile: Dict[str, Any] = Depends(get_current_profile), storage=Depends(get_storage)):
    return await crud.user_stats(storage, profile)
