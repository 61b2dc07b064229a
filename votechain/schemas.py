from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, constr


class Profile(BaseModel):
    id: str
    wallet_address: Optional[str] = None
    is_admin: bool = False
    is_super_admin: bool = False
    college_email: Optional[str] = None
    college_verified: bool = False
    created_at: datetime
    updated_at: datetime


class WalletConnectRequest(BaseModel):
    # Reconnect an existing wallet (requires its bearer token); a fresh address is generated when omitted
    wallet_address: Optional[constr(pattern=r"^0x[0-9a-fA-F]+$")] = None


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    profile: Profile


class CollegeEmailRequest(BaseModel):
    email: EmailStr


class UserStats(BaseModel):
    polls_created: int
    elections_created: int
    votes_cast: int


class AdminRequestCreate(BaseModel):
    # Captured face image (data URL or base64); stored encrypted, never verified
    face_capture: Optional[str] = None


class AdminRequestOut(BaseModel):
    id: str
    user_id: str
    wallet_address: Optional[str] = None
    status: str
    has_face_capture: bool = False
    created_at: datetime
    updated_at: datetime
