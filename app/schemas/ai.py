"""
AI endpoint request/response envelopes.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from app.schemas.base import CamelModel, TransactionRecord


class AutofillRequest(CamelModel):
    description: str = ""
    transaction_type: Optional[str] = "expense"
    categories: list[Any] = Field(default_factory=list)
    sub_categories: list[Any] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)
    payment_methods: list[Any] = Field(default_factory=list)
    recent_transactions: Optional[list[dict]] = None
    model: Optional[str] = None


class AutofillSuggestion(CamelModel):
    category: Optional[str] = None
    sub_category: Optional[str] = None
    user: Optional[str] = None
    priority: Optional[str] = None
    payment_method_id: Optional[str] = None
    amount: Optional[float] = None


class FinancialAdviceRequest(CamelModel):
    transactions: Optional[list[dict]] = None
    budget: dict = Field(default_factory=dict)
    model: Optional[str] = None


class ChartAdviceRequest(CamelModel):
    chart_type: str = ""
    chart_title: str = ""
    data: list[Any] = Field(default_factory=list)
    model: Optional[str] = None


class AdviceResponse(CamelModel):
    advice: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None


class ReceiptItem(CamelModel):
    name: str
    amount: Optional[float] = None


class ParsedReceipt(CamelModel):
    description: Optional[str] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    items: list[ReceiptItem] = Field(default_factory=list)
    provider: str
    model: str


class ParsedTransactions(CamelModel):
    transactions: list[TransactionRecord] = Field(default_factory=list)
    count: int = 0
    provider: Optional[str] = None
    model: Optional[str] = None
    import_timestamp: Optional[int] = None


class ProviderStatus(CamelModel):
    provider: str
    configured: bool
    models: dict[str, list[str]]


class ProvidersResponse(CamelModel):
    providers: list[ProviderStatus]
    max_attempts: dict[str, int]
