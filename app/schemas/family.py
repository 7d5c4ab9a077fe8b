"""
Family ledger request/response envelopes.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from app.schemas.base import CamelModel


class StatusResponse(CamelModel):
    success: bool = True
    message: str


class InvitationResponse(CamelModel):
    invite_link: str
    invite_code: str
    expires_at: datetime


class JoinRequest(CamelModel):
    invite_code: Optional[str] = None


class JoinResponse(StatusResponse):
    token: str
    family_id: str


class BulkImportRequest(CamelModel):
    # Validated by hand so bad records get a 400 naming the record
    transactions: Any = None


class BulkImportResponse(StatusResponse):
    added: int
    import_timestamp: int


class RemovalResponse(StatusResponse):
    removed: int
    year: Optional[int] = None
