"""
One ledger document per family.

``document`` holds the transaction list plus any keys the client merges in
(budgets, categories, payment methods...). Invite-code fields are real
columns so they can be queried.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FamilyModel(Base):
    __tablename__ = "families"

    id = Column(String, primary_key=True)
    document = Column(JSON, nullable=False, default=dict)
    invite_code = Column(String(6), index=True)
    invite_code_expires_at = Column(DateTime)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
