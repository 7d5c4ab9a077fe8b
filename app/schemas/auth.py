"""
Auth request/response envelopes and token claims.
"""
from __future__ import annotations

from typing import Optional

from app.schemas.base import CamelModel


class RegisterRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    avatar: Optional[str] = None


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserOut(CamelModel):
    id: str
    name: str
    email: str
    avatar: str
    family_id: str


class AuthResponse(CamelModel):
    token: str
    user: UserOut


class CurrentUser(CamelModel):
    """Identity claims carried by a verified bearer token."""
    id: str
    family_id: str
