"""
Shared pydantic models: ledger records and pattern-mining output.

The wire format is camelCase; Python attributes stay snake_case.
"""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

UNKNOWN_CATEGORY = "UNKNOWN"
PRIORITIES = ("must-have", "nice-to-have")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class TransactionRecord(CamelModel):
    """One financial event as stored in a family ledger.

    Unknown keys sent by the client are kept as-is.
    """
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    id: Optional[str] = None
    description: str
    amount: float = Field(..., gt=0)
    category: str = UNKNOWN_CATEGORY
    sub_category: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    user: Optional[str] = None
    type: Literal["expense", "income"] = "expense"
    priority: Optional[Literal["must-have", "nice-to-have"]] = None
    payment_method_id: Optional[str] = None
    import_timestamp: Optional[int] = Field(default=None, alias="_importTimestamp")

    @field_validator("category", mode="before")
    @classmethod
    def _blank_category(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNKNOWN_CATEGORY
        return v

    @model_validator(mode="after")
    def _priority_for_expenses_only(self):
        if self.type == "income":
            self.priority = None
        return self

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Pattern mining
# ---------------------------------------------------------------------------

class FieldFrequency(BaseModel):
    value: str
    count: int


class FrequencyTable(BaseModel):
    """Ranked value counts per field over a window of records."""
    sample_size: int
    threshold: int
    ranked: dict[str, list[FieldFrequency]] = Field(default_factory=dict)

    def top(self, field: str) -> Optional[FieldFrequency]:
        """Most frequent value of *field*, only if its count beats the threshold."""
        entries = self.ranked.get(field) or []
        if entries and entries[0].count > self.threshold:
            return entries[0]
        return None


class DescriptionExemplar(BaseModel):
    """Descriptions already used for one (category, sub-category) pair."""
    category: str
    sub_category: Optional[str] = None
    descriptions: list[str] = Field(default_factory=list)
    most_frequent: str
    occurrences: int


class PatternSummary(BaseModel):
    history: FrequencyTable
    similar: Optional[FrequencyTable] = None
    exemplars: list[DescriptionExemplar] = Field(default_factory=list)
    guidance: list[str] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.guidance)
