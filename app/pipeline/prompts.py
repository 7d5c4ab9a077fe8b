"""
Prompt templates for the AI endpoints.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from app.schemas import PatternSummary

TRANSACTION_FIELDS = (
    '"description": string, "amount": positive number, "category": string from the list or "UNKNOWN", '
    '"subCategory": string or null, "date": "YYYY-MM-DD" or null, "time": "HH:MM" or null, '
    '"type": "expense" or "income", "user": string from the list or null, '
    '"priority": "must-have" or "nice-to-have" or null'
)


def _names(items: Iterable[Any]) -> str:
    names = []
    for item in items or []:
        if isinstance(item, dict):
            item = item.get("name")
        if item:
            names.append(str(item))
    return ", ".join(names) or "none"


def _payment_methods(items: Iterable[Any]) -> str:
    described = []
    for pm in items or []:
        if isinstance(pm, str):
            described.append(pm)
            continue
        label = pm.get("name") or pm.get("id") or ""
        if pm.get("owner"):
            label = f"{label} ({pm['owner']})"
        if pm.get("id"):
            label = f"{label} [id: {pm['id']}]"
        described.append(label)
    return ", ".join(d for d in described if d) or "none"


def _patterns_block(patterns: Optional[PatternSummary]) -> str:
    if patterns is None:
        return ""
    return f"\nPatterns from this family's transaction history:\n{patterns.text}\n"


def receipt_prompt(categories: str, language: str) -> str:
    return f"""You read a photo of a purchase receipt.
Available categories: {categories or "none"}

Return ONLY a JSON object:
{{"description": short merchant or purchase name, "amount": total paid as a number,
"category": category from the list or "UNKNOWN", "subCategory": string or null,
"date": "YYYY-MM-DD" or null, "time": "HH:MM" or null,
"items": [{{"name": string, "amount": number}}]}}

Write descriptions in {language}. Do not add any text outside the JSON."""


def bulk_receipt_prompt(
    categories: str, users: Iterable[str], patterns: Optional[PatternSummary], language: str
) -> str:
    return f"""You read a screenshot or photo that lists several financial transactions
(a bank statement, an app history screen or a list of receipts).
Available categories: {categories or "none"}
Family members: {_names(users)}
{_patterns_block(patterns)}
Return ONLY a JSON array. Each element: {{{TRANSACTION_FIELDS}}}.

Rules:
- Skip bonuses, cashback, refunds of points and zero amounts.
- Amounts are always positive; use "type" for the direction.
- If a description matches a pattern above, reuse the existing description exactly.
- If there are no transactions, return [].
Write descriptions in {language}."""


def audio_prompt(
    categories: str, users: Iterable[str], patterns: Optional[PatternSummary], language: str
) -> str:
    return f"""Listen to this voice message in which a person dictates one or more
purchases or incomes.
Available categories: {categories or "none"}
Family members: {_names(users)}
{_patterns_block(patterns)}
Return ONLY a JSON array. Each element: {{{TRANSACTION_FIELDS}}}.

Rules:
- One element per purchase or income mentioned.
- Use "today"/"yesterday" relative to the current date only if a date is spoken; otherwise null.
- If a description matches a pattern above, reuse the existing description exactly.
- If nothing financial is said, return [].
Write descriptions in {language}."""


def advice_prompt(transactions: list[dict], budget: dict, language: str) -> str:
    if transactions:
        categories = []
        for tx in transactions:
            category = tx.get("category")
            if category and category not in categories:
                categories.append(category)
        summary = f"{len(transactions)} transactions. Main categories: {', '.join(map(str, categories))}"
    else:
        summary = "No transactions found"
    return f"""You are a financial advisor. Give short financial advice in {language}
(2-3 sentences) based on this data:

{summary}

Budget: {json.dumps(budget, ensure_ascii=False)}

The advice must be concrete and useful."""


def chart_prompt(chart_type: str, chart_title: str, data: list[Any], language: str) -> str:
    points = []
    for item in data[:10]:
        if isinstance(item, dict) and item.get("name") is not None and "value" in item:
            value = item["value"]
            if isinstance(value, (int, float)):
                value = f"{value:,.2f}".rstrip("0").rstrip(".")
            points.append(f"{item['name']}: {value}")
        else:
            points.append(json.dumps(item, ensure_ascii=False))
    more = f" (and {len(data) - 10} more items)" if len(data) > 10 else ""
    return f"""You are an experienced financial analyst with a sense of humour. Analyse this
chart and give a short conclusion in {language}.

Chart title: {chart_title}
Type: {chart_type}

Data: {", ".join(points)}{more}

Answer requirements:
- At most 4-5 sentences.
- No markdown at all.
- No filler transitions.
- No banal facts such as "track your spending".
- Split the text into paragraphs separated by an empty line.

Either give a professional analysis with concrete recommendations, or tell a sharp
truth with light humour that makes the reader think."""


def autofill_prompt(
    description: str,
    transaction_type: Optional[str],
    categories: Iterable[Any],
    users: Iterable[str],
    payment_methods: Iterable[Any],
    patterns: Optional[PatternSummary],
) -> str:
    is_expense = transaction_type == "expense"
    priorities = "Priorities: must-have, nice-to-have\n" if is_expense else ""
    return f"""You help autofill a financial transaction form.
Analyse the description and suggest values from the existing lists.

Description: "{description}"
Type: {"expense" if is_expense else "income"}

Available categories: {_names(categories)}
Available users: {_names(users)}
Available payment methods: {_payment_methods(payment_methods)}
{priorities}{_patterns_block(patterns)}
Return ONLY JSON:
{{"category": category from the list or null, "subCategory": string or null,
"user": user from the list or "shared" or null, "priority": "must-have" or "nice-to-have" or null,
"paymentMethodId": exact id from the payment method list or null, "amount": number or null}}

Use ONLY values from the lists. If unsure, return null. Extract the amount only if the
description mentions one (for example "500 rub")."""
