# fshare/shared/auth.py

import hashlib
import jwt
from fastapi import HTTPException
from shared.config import Settings

ALGORITHM = "HS256"


def _secret(settings: Settings) -> str:
    # Changing the password invalidates every token issued under the old one
    return hashlib.sha256(f"{settings.password}:{settings.machine_id}".encode("utf-8")).hexdigest()


def create_session_token(settings: Settings) -> str:
    payload = {"scope": "fshare", "machine_id": settings.machine_id}
    return jwt.encode(payload, _secret(settings), algorithm=ALGORITHM)


def verify_session_token(settings: Settings, token: str, status_code: int = 401) -> None:
    if not settings.auth_enable:
        return
    if not token:
        raise HTTPException(status_code=status_code, detail="Authentication failed")
    try:
        payload = jwt.decode(token, _secret(settings), algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status_code, detail="Authentication failed")
    if payload.get("scope") != "fshare":
        raise HTTPException(status_code=status_code, detail="Authentication failed")
