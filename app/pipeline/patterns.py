"""
Frequency heuristics over a family's transaction history.

The output is folded into prompts so the model prefers the categories, users,
payment methods and descriptions the family already uses.

Ranking ties go to the value seen first in the (most-recent-first) window:
counts are kept in first-seen order and sorted stably by count.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Optional

from app.schemas import (
    UNKNOWN_CATEGORY,
    DescriptionExemplar,
    FieldFrequency,
    FrequencyTable,
    PatternSummary,
)

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 50
SIMILAR_WINDOW = 20
HISTORY_THRESHOLD = 2
SIMILAR_THRESHOLD = 1
MAX_EXEMPLAR_GROUPS = 15
MAX_EXEMPLAR_DESCRIPTIONS = 5
MIN_KEYWORD_LENGTH = 3

# (record key, label used in guidance sentences)
PATTERN_FIELDS: list[tuple[str, str]] = [
    ("category", "category"),
    ("subCategory", "sub-category"),
    ("user", "user"),
    ("paymentMethodId", "payment method"),
    ("priority", "priority"),
]


def _value(tx: dict, key: str) -> Optional[str]:
    raw = tx.get(key)
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def rank_fields(records: Iterable[dict], threshold: int) -> FrequencyTable:
    """Count every pattern field over *records* and rank values by count."""
    records = list(records)
    counters: dict[str, Counter] = {key: Counter() for key, _ in PATTERN_FIELDS}
    for tx in records:
        for key, _ in PATTERN_FIELDS:
            value = _value(tx, key)
            if value is not None:
                counters[key][value] += 1

    ranked: dict[str, list[FieldFrequency]] = {}
    for key, counter in counters.items():
        if not counter:
            continue
        # sorted() is stable, so equal counts keep first-seen order
        ordered = sorted(counter.items(), key=lambda item: item[1], reverse=True)
        ranked[key] = [FieldFrequency(value=v, count=c) for v, c in ordered]
    return FrequencyTable(sample_size=len(records), threshold=threshold, ranked=ranked)


def keywords(description: str) -> list[str]:
    return [w for w in description.lower().split() if len(w) >= MIN_KEYWORD_LENGTH]


def find_similar(history: list[dict], description: str) -> list[dict]:
    """Records whose description shares at least one keyword with *description*."""
    words = keywords(description or "")
    if not words:
        return []
    similar = []
    for tx in history:
        text = str(tx.get("description") or "").lower()
        if any(word in text for word in words):
            similar.append(tx)
    return similar


def collect_exemplars(records: list[dict]) -> list[DescriptionExemplar]:
    """Group descriptions by (category, sub-category).

    Every pair seen is kept, even a single occurrence; groups are ordered by
    size, then by first appearance.
    """
    groups: dict[tuple[str, Optional[str]], Counter] = {}
    for tx in records:
        category = _value(tx, "category")
        description = _value(tx, "description")
        if category is None or category == UNKNOWN_CATEGORY or description is None:
            continue
        key = (category, _value(tx, "subCategory"))
        groups.setdefault(key, Counter())[description] += 1

    exemplars: list[DescriptionExemplar] = []
    for (category, sub_category), counter in groups.items():
        occurrences = sum(counter.values())
        ordered = sorted(counter.items(), key=lambda item: item[1], reverse=True)
        exemplars.append(
            DescriptionExemplar(
                category=category,
                sub_category=sub_category,
                descriptions=[d for d, _ in ordered[:MAX_EXEMPLAR_DESCRIPTIONS]],
                most_frequent=ordered[0][0],
                occurrences=occurrences,
            )
        )
    exemplars.sort(key=lambda e: e.occurrences, reverse=True)
    return exemplars[:MAX_EXEMPLAR_GROUPS]


# ---------------------------------------------------------------------------
# Guidance sentences
# ---------------------------------------------------------------------------

def _field_sentences(table: FrequencyTable, lead: str) -> list[str]:
    sentences = []
    for key, label in PATTERN_FIELDS:
        top = table.top(key)
        if top is not None:
            sentences.append(f'{lead} {label} "{top.value}" was used {top.count} times.')
    return sentences


def _exemplar_sentence(exemplar: DescriptionExemplar) -> str:
    target = f'category "{exemplar.category}"'
    if exemplar.sub_category:
        target += f' / sub-category "{exemplar.sub_category}"'
    used = ", ".join(f'"{d}"' for d in exemplar.descriptions)
    return (
        f"For {target} the family has written: {used} "
        f'(most often "{exemplar.most_frequent}"). '
        "Reuse one of these descriptions verbatim instead of inventing a new one."
    )


def mine_patterns(history: list[dict], description_hint: str = "") -> Optional[PatternSummary]:
    """Compute prompt guidance from *history* (most recent first).

    With a *description_hint*, records sharing a keyword with it are ranked on
    their own with a lower significance threshold. Returns ``None`` when the
    history is empty or nothing is significant.
    """
    window = [tx for tx in (history or [])[:HISTORY_WINDOW] if isinstance(tx, dict)]
    if not window:
        return None

    guidance: list[str] = []

    similar_table = None
    similar = find_similar(window, description_hint)
    if similar:
        similar_table = rank_fields(similar[:SIMILAR_WINDOW], SIMILAR_THRESHOLD)
        guidance.extend(_field_sentences(similar_table, "In similar past transactions"))

    history_table = rank_fields(window, HISTORY_THRESHOLD)
    guidance.extend(_field_sentences(history_table, "Across recent history"))

    exemplars = collect_exemplars(window)
    guidance.extend(_exemplar_sentence(e) for e in exemplars)

    if not guidance:
        return None

    logger.info(
        "Mined %d guidance lines from %d records (%d similar)",
        len(guidance), len(window), len(similar),
    )
    return PatternSummary(
        history=history_table,
        similar=similar_table,
        exemplars=exemplars,
        guidance=guidance,
    )
