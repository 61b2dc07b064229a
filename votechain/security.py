import base64
import os
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet
from jose import JWTError, jwt

from votechain.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, FACE_ENCRYPTION_KEY, FACE_KEY_FILE, SECRET_KEY


# Simulated wallet: no chain behind it, just a random hex identifier
def generate_wallet_address() -> str:
    return "0x" + secrets.token_hex(20)


def new_session_id() -> str:
    return secrets.token_hex(16)


# Create JWT access token
def create_access_token(data: dict, expires_delta: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_delta)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


# Decode JWT access token; None when invalid or expired
def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """
    Fernet used for face captures at rest.
    Key comes from FACE_ENCRYPTION_KEY, else from FACE_KEY_FILE (generated on first use).
    """
    if FACE_ENCRYPTION_KEY:
        return Fernet(FACE_ENCRYPTION_KEY.encode())
    directory = os.path.dirname(FACE_KEY_FILE)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if not os.path.exists(FACE_KEY_FILE):
        key = Fernet.generate_key()
        with open(FACE_KEY_FILE, "wb") as kf:
            kf.write(key)
    else:
        with open(FACE_KEY_FILE, "rb") as kf:
            key = kf.read()
    return Fernet(key)


def decode_base64_payload(data: str) -> bytes:
    """Accepts raw base64 or a data URL (data:image/jpeg;base64,...)."""
    s = data.strip()
    if s.startswith("data:"):
        comma = s.find(",")
        if comma != -1:
            s = s[comma + 1:]
    s = "".join(s.split())
    if not s:
        raise ValueError("empty base64 string")
    try:
        return base64.b64decode(s, validate=True)
    except ValueError as e:
        raise ValueError(f"invalid base64: {e}")


def encrypt_face_capture(data: str) -> str:
    raw = decode_base64_payload(data)
    return base64.b64encode(get_fernet().encrypt(raw)).decode("utf-8")


def decrypt_face_capture(token: str) -> bytes:
    return get_fernet().decrypt(base64.b64decode(token))
