# Session/token issuer and staff-only request dependencies

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from . import config
from .admins import find_by_id
from .database import executor, get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def create_access_token(admin: dict, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(admin["_id"]),
        "email": admin["email"],
        "role": admin["role"],
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=config.JWT_EXPIRE_HOURS)),
    }
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the token claims. Expired tokens fail like any other invalid token."""
    payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload


async def _resolve_admin(token: Optional[str], db) -> Optional[dict]:
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except JWTError:
        return None
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, find_by_id, db, payload["sub"])


async def get_current_admin(token: Optional[str] = Depends(oauth2_scheme),
                            x_auth_token: Optional[str] = Header(None),
                            db=Depends(get_db)):
    token = token or x_auth_token
    if not token:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    admin = await _resolve_admin(token, db)
    if admin is None:
        raise HTTPException(status_code=401, detail="Token is not valid")
    return admin


async def get_optional_admin(token: Optional[str] = Depends(oauth2_scheme),
                             x_auth_token: Optional[str] = Header(None),
                             db=Depends(get_db)):
    return await _resolve_admin(token or x_auth_token, db)
