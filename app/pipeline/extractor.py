"""
Pull structured data out of free-form model output.

Models wrap JSON in prose or code fences; the first brace/bracket up to the
last one is taken as the payload. All functions here are pure.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from app.schemas import PRIORITIES, TransactionRecord

logger = logging.getLogger(__name__)

_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")
_ARRAY_SPAN = re.compile(r"\[[\s\S]*\]")
_TIME = re.compile(r"^(\d{1,2}):(\d{1,2})$")

# Phrases a model uses when it found nothing (English and Russian)
EMPTY_RESULT_PHRASES = (
    "no transactions",
    "no transaction found",
    "nothing found",
    "no purchases",
    "не найдено",
    "не найдены",
    "не обнаружено",
    "нет транзакций",
    "транзакций нет",
    "операций не найдено",
)

# Credits that are not real spending
EXCLUDED_KEYWORDS = ("bonus", "cashback", "cash back", "бонус", "кэшбэк", "кешбэк", "кешбек")

UNTITLED_DESCRIPTION = "Untitled"


class MalformedModelOutput(ValueError):
    """Model output did not contain the expected JSON payload."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


def _parse_span(pattern: re.Pattern[str], raw: str, kind: str) -> Any:
    match = pattern.search(raw or "")
    if not match:
        raise MalformedModelOutput(f"No JSON {kind} found in model output", raw)
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise MalformedModelOutput(f"Invalid JSON {kind}: {exc.msg}", raw) from exc


def extract_json_object(raw: str) -> dict:
    data = _parse_span(_OBJECT_SPAN, raw, "object")
    if not isinstance(data, dict):
        raise MalformedModelOutput("JSON payload is not an object", raw)
    return data


def says_nothing_found(raw: str) -> bool:
    text = (raw or "").lower()
    return any(phrase in text for phrase in EMPTY_RESULT_PHRASES)


def extract_json_array(raw: str) -> list:
    """Return the JSON array in *raw*.

    An answer without an array that says nothing was found is a valid empty
    result; anything else without a parseable array is malformed.
    """
    if not _ARRAY_SPAN.search(raw or "") and says_nothing_found(raw):
        return []
    data = _parse_span(_ARRAY_SPAN, raw, "array")
    if not isinstance(data, list):
        raise MalformedModelOutput("JSON payload is not an array", raw)
    return data


# ---------------------------------------------------------------------------
# Field normalization
# ---------------------------------------------------------------------------

def normalize_time(value: Any) -> Optional[str]:
    """``H:MM``/``HH:MM`` with hour < 24 and minute < 60 → ``HH:MM``; else None."""
    if not isinstance(value, str):
        return None
    match = _TIME.match(value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour >= 24 or minute >= 60:
        return None
    return f"{hour:02d}:{minute:02d}"


def coerce_amount(value: Any) -> Optional[float]:
    """Numbers and numeric strings such as ``"1 200,50"``; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = re.sub(r"[^\d,.\-]", "", value).replace(",", ".")
        if cleaned.count(".") > 1:
            head, _, tail = cleaned.rpartition(".")
            cleaned = head.replace(".", "") + "." + tail
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def is_excluded_credit(item: dict) -> bool:
    text = " ".join(
        str(item.get(key) or "") for key in ("description", "category", "subCategory")
    ).lower()
    return any(word in text for word in EXCLUDED_KEYWORDS)


def normalize_transaction(item: Any) -> Optional[TransactionRecord]:
    """Turn one model-produced record into a storable one, or drop it.

    Records without a positive amount and bonus/cashback credits are dropped;
    an invalid time or priority is removed rather than rejecting the record.
    """
    if not isinstance(item, dict):
        return None
    if is_excluded_credit(item):
        return None
    amount = coerce_amount(item.get("amount"))
    if amount is None or amount <= 0:
        return None

    record = dict(item)
    record["amount"] = amount
    record["description"] = str(record.get("description") or "").strip() or UNTITLED_DESCRIPTION
    if "time" in record:
        record["time"] = normalize_time(record["time"])
    if not isinstance(record.get("date"), str):
        record["date"] = None
    if record.get("type") not in ("expense", "income"):
        record["type"] = "expense"
    if record.get("priority") not in PRIORITIES:
        record["priority"] = None
    try:
        return TransactionRecord.model_validate(record)
    except ValidationError as exc:
        logger.info("Dropping unusable model record: %s", exc.errors()[:1])
        return None


def normalize_transactions(items: list) -> list[TransactionRecord]:
    records = []
    for item in items:
        record = normalize_transaction(item)
        if record is not None:
            records.append(record)
    if len(records) != len(items):
        logger.info("Kept %d of %d parsed records", len(records), len(items))
    return records
