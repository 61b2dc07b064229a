from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer

from votechain.crud import get_session_profile
from votechain.elections import ElectionManager
from votechain.voting import Clock, VoteService, utcnow

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/connect", auto_error=False)


def get_storage(request: Request):
    return request.app.state.storage


def get_clock() -> Clock:
    return utcnow


def get_vote_service(storage=Depends(get_storage), clock: Clock = Depends(get_clock)) -> VoteService:
    return VoteService(storage, clock)


def get_election_manager(storage=Depends(get_storage), clock: Clock = Depends(get_clock)) -> ElectionManager:
    return ElectionManager(storage, clock)


async def get_optional_profile(
    token: Optional[str] = Depends(oauth2_scheme), storage=Depends(get_storage)
) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    return await get_session_profile(storage, token)


async def get_current_profile(profile: Optional[Dict[str, Any]] = Depends(get_optional_profile)) -> Dict[str, Any]:
    if profile is None:
        raise HTTPException(
            status_code=401,
            detail="Please connect your wallet",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return profile


async def require_admin(profile: Dict[str, Any] = Depends(get_current_profile)) -> Dict[str, Any]:
    if not (profile.get("is_admin") or profile.get("is_super_admin")):
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return profile


async def require_super_admin(profile: Dict[str, Any] = Depends(get_current_profile)) -> Dict[str, Any]:
    if not profile.get("is_super_admin"):
        raise HTTPException(status_code=403, detail="Super admin privileges required")
    return profile
