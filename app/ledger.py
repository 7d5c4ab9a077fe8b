"""
Family ledger store.

Thin wrapper over the ``families`` table that exposes the ledger as one JSON
document per family (get / merge / reset / query by invite code), plus the
pure list operations used by bulk import and its two rollback strategies.

Writes replace the whole document: concurrent writers to the same family are
last-writer-wins.
"""
from __future__ import annotations

import logging
import secrets
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import FamilyModel

logger = logging.getLogger(__name__)

RESERVED_KEYS = ("createdAt", "inviteCode", "inviteCodeExpiresAt")
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 6


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FamilyLedgerStore:
    def __init__(self, db: Session):
        self.db = db

    # ── document access ─────────────────────────────────────────────────
    def create(self) -> FamilyModel:
        family = FamilyModel(id=uuid.uuid4().hex, document={}, created_at=utcnow())
        self.db.add(family)
        self.db.commit()
        logger.info("Created family ledger %s", family.id)
        return family

    def find(self, family_id: str) -> Optional[FamilyModel]:
        return self.db.query(FamilyModel).filter(FamilyModel.id == family_id).first()

    def get(self, family_id: str) -> dict:
        """Ledger as a document; ``{}`` when the family does not exist."""
        family = self.find(family_id)
        if family is None:
            return {}
        return self.to_document(family)

    @staticmethod
    def to_document(family: FamilyModel) -> dict:
        doc: dict[str, Any] = dict(family.document or {})
        doc["createdAt"] = _as_utc(family.created_at).isoformat()
        if family.invite_code:
            doc["inviteCode"] = family.invite_code
        if family.invite_code_expires_at:
            doc["inviteCodeExpiresAt"] = _as_utc(family.invite_code_expires_at).isoformat()
        return doc

    def merge(self, family_id: str, data: dict) -> dict:
        """Merge top-level keys into the document, creating it if needed."""
        family = self.find(family_id)
        if family is None:
            family = FamilyModel(id=family_id, document={}, created_at=utcnow())
            self.db.add(family)
        merged = dict(family.document or {})
        for key, value in data.items():
            if key in RESERVED_KEYS:
                continue
            merged[key] = value
        # Assign a new dict so the JSON column is flagged dirty
        family.document = merged
        self.db.commit()
        return self.to_document(family)

    def reset(self, family_id: str) -> None:
        """Clear the document but keep the family (and its members)."""
        family = self.find(family_id)
        if family is None:
            family = FamilyModel(id=family_id)
            self.db.add(family)
        family.document = {}
        family.invite_code = None
        family.invite_code_expires_at = None
        family.created_at = utcnow()
        self.db.commit()
        logger.info("Reset family ledger %s", family_id)

    # ── transactions ────────────────────────────────────────────────────
    def transactions(self, family_id: str) -> list[dict]:
        family = self.find(family_id)
        if family is None:
            return []
        return list((family.document or {}).get("transactions") or [])

    def replace_transactions(self, family_id: str, transactions: list[dict]) -> None:
        self.merge(family_id, {"transactions": transactions})

    # ── invitations ─────────────────────────────────────────────────────
    def set_invite_code(self, family_id: str, code: str, expires_at: datetime) -> None:
        family = self.find(family_id)
        if family is None:
            family = FamilyModel(id=family_id, document={}, created_at=utcnow())
            self.db.add(family)
        family.invite_code = code
        family.invite_code_expires_at = expires_at
        self.db.commit()

    def find_by_invite_code(self, code: str) -> Optional[FamilyModel]:
        return (
            self.db.query(FamilyModel)
            .filter(FamilyModel.invite_code == code.strip().upper())
            .first()
        )

    @staticmethod
    def invite_expired(family: FamilyModel, now: Optional[datetime] = None) -> bool:
        if family.invite_code_expires_at is None:
            return False
        return _as_utc(family.invite_code_expires_at) < (now or utcnow())


def get_ledger_store(db: Session = Depends(get_db)) -> FamilyLedgerStore:
    return FamilyLedgerStore(db)


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


# ---------------------------------------------------------------------------
# Bulk import bookkeeping
# ---------------------------------------------------------------------------

def new_import_timestamp() -> int:
    """Epoch milliseconds, used to tag and later roll back one import batch."""
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def tag_import(transactions: list[dict], import_timestamp: int) -> list[dict]:
    """Stamp each record of a batch with ids, defaults and the import tag."""
    tagged: list[dict] = []
    for index, tx in enumerate(transactions):
        record = dict(tx)
        if not record.get("id"):
            record["id"] = f"bulk-{import_timestamp}-{index}-{_random_suffix()}"
        if record.get("type", "expense") == "expense" and not record.get("priority"):
            record["priority"] = "nice-to-have"
        date = record.get("date")
        if not date:
            record["date"] = utcnow().isoformat()
        elif not isinstance(date, str):
            record["date"] = (
                date.isoformat()
                if isinstance(date, datetime)
                else datetime.fromtimestamp(float(date) / 1000, tz=timezone.utc).isoformat()
            )
        record["_importTimestamp"] = import_timestamp
        tagged.append(record)
    return tagged


def prepend_batch(existing: list[dict], batch: list[dict]) -> list[dict]:
    """Newest batch goes first; list order doubles as recency."""
    return [*batch, *existing]


def belongs_to_import(tx: dict, import_timestamp: int) -> bool:
    if tx.get("_importTimestamp") == import_timestamp:
        return True
    tx_id = tx.get("id")
    return isinstance(tx_id, str) and tx_id.startswith(f"bulk-{import_timestamp}-")


def rollback_import(existing: list[dict], import_timestamp: int) -> tuple[list[dict], int]:
    """Drop every record of one import batch. Returns ``(kept, removed_count)``."""
    kept = [tx for tx in existing if not belongs_to_import(tx, import_timestamp)]
    return kept, len(existing) - len(kept)


def transaction_year(tx: dict) -> Optional[int]:
    date = tx.get("date")
    if not isinstance(date, str) or not date.strip():
        return None
    try:
        return datetime.fromisoformat(date.strip().replace("Z", "+00:00")).year
    except ValueError:
        return None


def remove_year(existing: list[dict], year: int) -> tuple[list[dict], int]:
    """Drop records dated in *year*; undated or unparseable records are kept."""
    kept = [tx for tx in existing if transaction_year(tx) != year]
    return kept, len(existing) - len(kept)
