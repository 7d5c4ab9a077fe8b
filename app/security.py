"""
Password hashing, token issuance and the bearer-token gate.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Header, HTTPException
from jose import jwt
from jose.exceptions import JWTError
from pydantic import ValidationError

from app.config import settings
from app.schemas import CurrentUser

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def create_access_token(user_id: str, family_id: str) -> str:
    expires_at = datetime.now(timezone.utc) + timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    claims = {"id": user_id, "familyId": family_id, "exp": expires_at}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    """Verify *token* and return its identity claims.

    Raises ``HTTPException(401)`` on a bad signature, expiry or missing claims.
    """
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return CurrentUser.model_validate(claims)
    except (JWTError, ValidationError) as exc:
        logger.info("Token rejected: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid token")


def get_current_user(authorization: Optional[str] = Header(default=None)) -> CurrentUser:
    """Bearer-token dependency used by every protected route."""
    if not authorization:
        raise HTTPException(status_code=401, detail="No token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="No token")
    return decode_access_token(token.strip())
