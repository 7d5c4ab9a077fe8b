"""
Auth API endpoints.

POST /api/auth/register   — create user + new family ledger → token
POST /api/auth/login      — verify credentials → token
"""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.ledger import FamilyLedgerStore, get_ledger_store
from app.models import UserModel
from app.schemas import AuthResponse, LoginRequest, RegisterRequest
from app.security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)
router = APIRouter()

BAD_CREDENTIALS = "Invalid email or password"


def normalize_email(email) -> str:
    return email.strip().lower() if isinstance(email, str) else ""


# ── POST /api/auth/register ──────────────────────────────────────────────
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    req: RegisterRequest,
    db: Session = Depends(get_db),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    email = normalize_email(req.email)
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    if not req.password:
        raise HTTPException(status_code=400, detail="Password is required")
    if not req.name or not req.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")

    if db.query(UserModel).filter(UserModel.email == email).first():
        raise HTTPException(status_code=400, detail="User with this email already exists")

    # Every new user starts in a family of their own
    family = store.create()
    user = UserModel(
        id=uuid.uuid4().hex,
        name=req.name.strip(),
        email=email,
        avatar=req.avatar or "😀",
        family_id=family.id,
        password_hash=hash_password(req.password),
    )
    db.add(user)
    db.commit()
    logger.info("Registered user %s in family %s", user.id, family.id)

    token = create_access_token(user.id, user.family_id)
    return {"token": token, "user": user.to_public()}


# ── POST /api/auth/login ─────────────────────────────────────────────────
@router.post("/auth/login", response_model=AuthResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    email = normalize_email(req.email)
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    if not req.password:
        raise HTTPException(status_code=400, detail="Password is required")

    user = db.query(UserModel).filter(UserModel.email == email).first()
    if not user:
        logger.warning("Login for unknown email")
        raise HTTPException(status_code=400, detail=BAD_CREDENTIALS)
    if not verify_password(req.password, user.password_hash):
        logger.warning("Wrong password for user %s", user.id)
        raise HTTPException(status_code=400, detail=BAD_CREDENTIALS)

    logger.info("User %s logged in", user.id)
    token = create_access_token(user.id, user.family_id)
    return {"token": token, "user": user.to_public()}
