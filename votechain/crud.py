import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from votechain.config import COLLEGE_EMAIL_DOMAIN, SUPER_ADMIN_ADDRESS
from votechain.errors import PermissionDenied
from votechain.schemas import AdminRequestOut, Profile, UserStats
from votechain.security import (
    create_access_token,
    decode_access_token,
    encrypt_face_capture,
    generate_wallet_address,
    new_session_id,
)

logger = logging.getLogger(__name__)

ADMIN_REQUEST_STATUSES = ("pending", "approved", "rejected")


def is_super_admin_wallet(wallet_address: str) -> bool:
    return bool(SUPER_ADMIN_ADDRESS) and wallet_address.lower() == SUPER_ADMIN_ADDRESS.lower()


def profile_out(profile: Dict[str, Any]) -> Profile:
    return Profile(**{k: v for k, v in profile.items() if k != "session_id"})


def admin_request_out(request: Dict[str, Any]) -> AdminRequestOut:
    return AdminRequestOut(
        id=request["id"],
        user_id=request["user_id"],
        wallet_address=request.get("wallet_address"),
        status=request["status"],
        has_face_capture=bool(request.get("face_capture_enc")),
        created_at=request["created_at"],
        updated_at=request["updated_at"],
    )


# --- Wallet sessions ---

async def _start_session(storage, profile: Dict[str, Any], now: datetime) -> Tuple[Dict[str, Any], str]:
    fields: Dict[str, Any] = {"session_id": new_session_id(), "updated_at": now}
    if is_super_admin_wallet(profile["wallet_address"]):
        fields.update(is_admin=True, is_super_admin=True)
    profile = await storage.update_profile(profile["id"], fields)
    token = create_access_token({"sub": profile["id"], "sid": profile["session_id"], "wallet": profile["wallet_address"]})
    return profile, token


async def connect_wallet(
    storage, now: datetime, wallet_address: Optional[str] = None, token: Optional[str] = None
) -> Tuple[Dict[str, Any], str]:
    """
    Sign in with a wallet. Returns (profile, access token).

    Without wallet_address a fresh wallet and profile are created. An existing
    wallet is only reconnected by presenting its current access token; the
    session id rotates so the old token stops working.
    """
    if wallet_address:
        current = await get_session_profile(storage, token) if token else None
        if current is None or current["wallet_address"].lower() != wallet_address.lower():
            logger.warning(f"Refused reconnect of wallet {wallet_address} without its session")
            raise PermissionDenied("Reconnecting a wallet requires its current session")
        profile, token = await _start_session(storage, current, now)
        logger.info(f"Wallet {wallet_address} reconnected")
        return profile, token

    address = generate_wallet_address()
    profile = await storage.insert_profile({
        "wallet_address": address,
        "is_admin": False,
        "is_super_admin": False,
        "college_email": None,
        "college_verified": False,
        "session_id": None,
        "created_at": now,
        "updated_at": now,
    })
    logger.info(f"Profile {profile['id']} created for wallet {address}")
    return await _start_session(storage, profile, now)


async def disconnect_wallet(storage, profile: Dict[str, Any], now: datetime) -> None:
    await storage.update_profile(profile["id"], {"session_id": None, "updated_at": now})
    logger.info(f"Wallet {profile['wallet_address']} disconnected")


async def get_session_profile(storage, token: str) -> Optional[Dict[str, Any]]:
    """Resolve a bearer token to its profile; None when the token or session is no longer valid."""
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    profile = await storage.get_profile(payload["sub"])
    if profile is None or not profile.get("session_id") or profile["session_id"] != payload.get("sid"):
        return None
    return profile


# --- Profile ---

async def verify_college_email(storage, profile: Dict[str, Any], email: str, now: datetime) -> Tuple[Dict[str, Any], bool]:
    verified = email.lower().endswith(COLLEGE_EMAIL_DOMAIN)
    updated = await storage.update_profile(
        profile["id"], {"college_email": email, "college_verified": verified, "updated_at": now}
    )
    if verified:
        logger.info(f"College email verified for {profile['id']}")
    else:
        logger.warning(f"Email for {profile['id']} is not a college email ({COLLEGE_EMAIL_DOMAIN} required)")
    return updated, verified


async def user_stats(storage, profile: Dict[str, Any]) -> UserStats:
    created = await storage.list_elections(creator=profile["id"])
    elections = sum(1 for poll in created if poll.get("is_election"))
    return UserStats(
        polls_created=len(created) - elections,
        elections_created=elections,
        votes_cast=await storage.count_votes_by_voter(profile["id"]),
    )


# --- Admin access requests ---

async def request_admin_access(storage, profile: Dict[str, Any], now: datetime, face_capture: Optional[str] = None) -> Dict[str, Any]:
    if profile.get("is_admin") or profile.get("is_super_admin"):
        raise ValueError("You already have admin access")
    if await storage.find_admin_requests(user_id=profile["id"], status="pending"):
        raise ValueError("An admin request is already awaiting approval")
    request = await storage.insert_admin_request({
        "user_id": profile["id"],
        "wallet_address": profile.get("wallet_address"),
        "face_capture_enc": encrypt_face_capture(face_capture) if face_capture else None,
        "status": "pending",
        "created_at": now,
        "updated_at": now,
    })
    logger.info(f"Admin access requested by {profile['id']} (request {request['id']})")
    return request


async def list_admin_requests(storage, status: Optional[str] = None) -> List[Dict[str, Any]]:
    if status is not None and status not in ADMIN_REQUEST_STATUSES:
        raise ValueError(f"Status must be one of {', '.join(ADMIN_REQUEST_STATUSES)}")
    return await storage.find_admin_requests(status=status)


async def update_admin_request_status(storage, request_id: str, new_status: str, now: datetime) -> Optional[Dict[str, Any]]:
    if new_status not in ("approved", "rejected"):
        raise ValueError("Status must be 'approved' or 'rejected'")
    updated = await storage.update_admin_request_status(request_id, new_status, now)
    if updated is None:
        return None
    if new_status == "approved":
        await storage.update_profile(updated["user_id"], {"is_admin": True, "updated_at": now})
    logger.info(f"Admin request {request_id} {new_status}")
    return updated
