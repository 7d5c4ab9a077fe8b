"""
Family ledger API endpoints (all scoped by the token's familyId).

GET    /api/family/members                        — family members
GET    /api/family/data                           — ledger document
PUT    /api/family/data                           — merge keys into the ledger
DELETE /api/family/data                           — reset the ledger
POST   /api/family/invitation                     — issue invite code
POST   /api/family/join                           — redeem invite code
POST   /api/family/transactions/bulk              — import a batch
DELETE /api/family/transactions/bulk/{timestamp}  — roll back one batch
DELETE /api/family/transactions/by-year/{year}    — drop one year
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.ledger import (
    FamilyLedgerStore,
    generate_invite_code,
    get_ledger_store,
    new_import_timestamp,
    prepend_batch,
    remove_year,
    rollback_import,
    tag_import,
    utcnow,
)
from app.models import UserModel
from app.pipeline.extractor import normalize_time
from app.schemas import (
    BulkImportRequest,
    BulkImportResponse,
    CurrentUser,
    InvitationResponse,
    JoinRequest,
    JoinResponse,
    RemovalResponse,
    StatusResponse,
    TransactionRecord,
    UserOut,
)
from app.security import create_access_token, get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()

REQUIRED_FIELDS = ("description", "amount", "category", "date", "user", "type")
# Largest epoch-millisecond date accepted on import (9999-12-31T23:59:59.999Z)
MAX_EPOCH_MS = 253402300799999


def is_importable_date(value: Any) -> bool:
    """ISO strings, or epoch milliseconds that map to a real calendar date."""
    if isinstance(value, str):
        return True
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0 <= value <= MAX_EPOCH_MS


def validate_batch(transactions: Any) -> list[dict]:
    """Check an import batch; raises ``HTTPException(400)`` naming the bad record."""
    if not isinstance(transactions, list) or not transactions:
        raise HTTPException(status_code=400, detail="transactions must be a non-empty array")

    records: list[dict] = []
    for index, tx in enumerate(transactions, 1):
        if not isinstance(tx, dict):
            raise HTTPException(status_code=400, detail=f"Transaction {index} is not an object")
        for field in REQUIRED_FIELDS:
            if tx.get(field) is None:
                raise HTTPException(
                    status_code=400,
                    detail=f"Transaction {index} is missing required field: {field}",
                )
        if not is_importable_date(tx["date"]):
            raise HTTPException(status_code=400, detail=f"Transaction {index} has an invalid date")
        record = dict(tx)
        if "time" in record:
            record["time"] = normalize_time(record["time"])
        if not isinstance(record["date"], str):
            # tag_import converts non-string dates afterwards
            record.pop("date")
        try:
            validated = TransactionRecord.model_validate(record).to_document()
        except ValidationError as exc:
            error = exc.errors()[0]
            field = ".".join(str(part) for part in error["loc"])
            raise HTTPException(
                status_code=400,
                detail=f"Transaction {index} has an invalid {field}: {error['msg']}",
            )
        if "date" not in validated:
            validated["date"] = tx["date"]
        records.append(validated)
    return records


def import_transactions(store: FamilyLedgerStore, family_id: str, records: list[dict]) -> int:
    """Tag *records* as one batch, prepend them to the ledger; returns the batch tag."""
    import_timestamp = new_import_timestamp()
    batch = tag_import(records, import_timestamp)
    existing = store.transactions(family_id)
    store.replace_transactions(family_id, prepend_batch(existing, batch))
    logger.info(
        "Imported %d transactions into family %s (batch %d, %d before)",
        len(batch), family_id, import_timestamp, len(existing),
    )
    return import_timestamp


# ── GET /api/family/members ──────────────────────────────────────────────
@router.get("/family/members", response_model=list[UserOut])
def list_members(
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    users = db.query(UserModel).filter(UserModel.family_id == current.family_id).all()
    return [u.to_public() for u in users]


# ── GET /api/family/data ─────────────────────────────────────────────────
@router.get("/family/data")
def get_family_data(
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    return store.get(current.family_id)


# ── PUT /api/family/data ─────────────────────────────────────────────────
@router.put("/family/data", response_model=StatusResponse)
def save_family_data(
    data: dict = Body(...),
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    if "transactions" in data and not isinstance(data["transactions"], list):
        raise HTTPException(status_code=400, detail="transactions must be an array")
    store.merge(current.family_id, data)
    logger.info("Saved keys %s for family %s", sorted(data), current.family_id)
    return StatusResponse(message="Data saved successfully")


# ── DELETE /api/family/data ──────────────────────────────────────────────
@router.delete("/family/data", response_model=StatusResponse)
def reset_family_data(
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    store.reset(current.family_id)
    return StatusResponse(message="Family data reset")


# ── POST /api/family/invitation ──────────────────────────────────────────
@router.post("/family/invitation", response_model=InvitationResponse)
def create_invitation(
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    code = generate_invite_code()
    expires_at = utcnow() + timedelta(hours=settings.INVITE_CODE_TTL_HOURS)
    store.set_invite_code(current.family_id, code, expires_at)
    logger.info("Issued invite code for family %s", current.family_id)
    return InvitationResponse(
        invite_link=f"{settings.FRONTEND_URL.rstrip('/')}/join?code={code}",
        invite_code=code,
        expires_at=expires_at,
    )


# ── POST /api/family/join ────────────────────────────────────────────────
@router.post("/family/join", response_model=JoinResponse)
def join_family(
    req: JoinRequest,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    if not req.invite_code or not req.invite_code.strip():
        raise HTTPException(status_code=400, detail="Invite code not provided")

    family = store.find_by_invite_code(req.invite_code)
    if family is None:
        raise HTTPException(status_code=404, detail="Invalid invite code")
    if store.invite_expired(family):
        raise HTTPException(status_code=400, detail="Invite code expired")

    user = db.query(UserModel).filter(UserModel.id == current.id).first()
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    user.family_id = family.id
    db.commit()
    logger.info("User %s joined family %s", user.id, family.id)

    # The old token still names the previous family
    return JoinResponse(
        message="Successfully joined the family!",
        token=create_access_token(user.id, family.id),
        family_id=family.id,
    )


# ── POST /api/family/transactions/bulk ───────────────────────────────────
@router.post("/family/transactions/bulk", response_model=BulkImportResponse)
def bulk_import(
    req: BulkImportRequest,
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    records = validate_batch(req.transactions)
    import_timestamp = import_transactions(store, current.family_id, records)
    return BulkImportResponse(
        message=f"Added {len(records)} transactions",
        added=len(records),
        import_timestamp=import_timestamp,
    )


# ── DELETE /api/family/transactions/bulk/{import_timestamp} ──────────────
@router.delete("/family/transactions/bulk/{import_timestamp}", response_model=RemovalResponse)
def rollback_bulk_import(
    import_timestamp: str,
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    try:
        timestamp = int(import_timestamp)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid import timestamp")

    existing = store.transactions(current.family_id)
    kept, removed = rollback_import(existing, timestamp)
    store.replace_transactions(current.family_id, kept)
    logger.info("Rolled back batch %d in family %s: %d removed", timestamp, current.family_id, removed)
    return RemovalResponse(message=f"Removed {removed} imported transactions", removed=removed)


# ── DELETE /api/family/transactions/by-year/{year} ───────────────────────
@router.delete("/family/transactions/by-year/{year}", response_model=RemovalResponse)
def delete_year(
    year: str,
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
):
    try:
        target_year = int(year)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid year")

    existing = store.transactions(current.family_id)
    kept, removed = remove_year(existing, target_year)
    store.replace_transactions(current.family_id, kept)
    logger.info("Removed %d transactions from %d in family %s", removed, target_year, current.family_id)
    return RemovalResponse(
        message=f"Removed {removed} transactions from {target_year}",
        removed=removed,
        year=target_year,
    )
