"""
AI-backed endpoints.

POST /api/ai/parse-receipt        — receipt photo → one purchase
POST /api/ai/parse-bulk-receipt   — statement screenshot → transaction list
POST /api/ai/parse-audio          — voice message → transaction list
POST /api/ai/financial-advice     — advice text over recent transactions
POST /api/ai/chart-advice         — commentary for one chart
POST /api/ai/autofill             — field suggestions for a description
GET  /api/ai/providers            — configured providers and call ceilings

Parsing endpoints fail loudly; autofill and chart-advice degrade to empty
suggestions so a flaky provider never blocks manual entry.
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from app.config import settings
from app.ledger import FamilyLedgerStore, get_ledger_store, utcnow
from app.pipeline import prompts
from app.pipeline.extractor import (
    MalformedModelOutput,
    coerce_amount,
    extract_json_array,
    extract_json_object,
    normalize_time,
    normalize_transactions,
)
from app.pipeline.generator import (
    FallbackGenerator,
    GenerationError,
    GenerationFailed,
    GeneratorConfig,
    ProviderCallResult,
    ProviderUnconfigured,
    describe_failure,
)
from app.pipeline.patterns import HISTORY_WINDOW, mine_patterns
from app.pipeline.providers import Modality
from app.routers.family import import_transactions, validate_batch
from app.schemas import (
    PRIORITIES,
    AdviceResponse,
    AutofillRequest,
    AutofillSuggestion,
    ChartAdviceRequest,
    CurrentUser,
    FinancialAdviceRequest,
    ParsedReceipt,
    ParsedTransactions,
    ProvidersResponse,
    ProviderStatus,
    ReceiptItem,
)
from app.security import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()


@lru_cache(maxsize=1)
def _shared_generator() -> FallbackGenerator:
    return FallbackGenerator(GeneratorConfig.from_settings(settings))


def get_generator() -> FallbackGenerator:
    """Process-wide generator, so SDK clients are built once and reused."""
    return _shared_generator()


def _generation_http_error(exc: GenerationError, endpoint: str) -> HTTPException:
    logger.error("%s failed: %s", endpoint, exc)
    return HTTPException(status_code=500, detail=describe_failure(exc))


def _text(value: Any) -> Optional[str]:
    """Model-supplied scalar as display text; containers and blanks become None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _parse_list_field(raw: Optional[str]) -> list:
    """Multipart list fields arrive either as JSON or comma-separated text."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return [part.strip() for part in raw.split(",") if part.strip()]
    return value if isinstance(value, list) else [value]


def _history(store: FamilyLedgerStore, family_id: str, supplied: Optional[list]) -> list[dict]:
    if supplied is not None:
        return [tx for tx in supplied if isinstance(tx, dict)]
    return store.transactions(family_id)


def _read_upload(upload: UploadFile, kind: str) -> bytes:
    data = upload.file.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"{kind} file is empty")
    return data


def _parsed_transactions(raw_text: str, endpoint: str) -> list:
    try:
        return extract_json_array(raw_text)
    except MalformedModelOutput as exc:
        logger.error("%s: unparseable model output: %s", endpoint, exc)
        raise HTTPException(status_code=500, detail="Could not read transactions from the AI response")


def _finish_parse(
    items: list,
    result: ProviderCallResult,
    auto_import: bool,
    store: FamilyLedgerStore,
    family_id: str,
) -> ParsedTransactions:
    records = normalize_transactions(items)
    response = ParsedTransactions(
        transactions=records,
        count=len(records),
        provider=result.provider.value,
        model=result.model,
    )
    if auto_import and records:
        documents = []
        for record in records:
            doc = record.to_document()
            doc.setdefault("date", utcnow().date().isoformat())
            doc.setdefault("user", "shared")
            documents.append(doc)
        batch = validate_batch(documents)
        response.import_timestamp = import_transactions(store, family_id, batch)
    return response


# ── POST /api/ai/parse-receipt ───────────────────────────────────────────
@router.post("/ai/parse-receipt", response_model=ParsedReceipt)
def parse_receipt(
    image: UploadFile = File(...),
    categories: str = Form(""),
    model: Optional[str] = Form(None),
    current: CurrentUser = Depends(get_current_user),
    generator: FallbackGenerator = Depends(get_generator),
):
    data = _read_upload(image, "Image")
    logger.info("parse-receipt: %d bytes (%s) for family %s", len(data), image.content_type, current.family_id)
    prompt = prompts.receipt_prompt(categories, settings.RESPONSE_LANGUAGE)
    try:
        result = generator.generate(
            prompt, image=data, mime_type=image.content_type, preferred_model=model
        )
    except GenerationError as exc:
        raise _generation_http_error(exc, "parse-receipt")

    try:
        parsed = extract_json_object(result.text)
    except MalformedModelOutput as exc:
        logger.error("parse-receipt: unparseable model output: %s", exc)
        raise HTTPException(status_code=500, detail="Could not read the receipt")

    items = []
    for item in parsed.get("items") or []:
        name = _text(item.get("name")) if isinstance(item, dict) else None
        if name:
            items.append(ReceiptItem(name=name, amount=coerce_amount(item.get("amount"))))
    amount = coerce_amount(parsed.get("amount"))
    return ParsedReceipt(
        description=_text(parsed.get("description")),
        amount=amount if amount is not None and amount > 0 else None,
        category=_text(parsed.get("category")),
        sub_category=_text(parsed.get("subCategory")),
        date=parsed.get("date") if isinstance(parsed.get("date"), str) else None,
        time=normalize_time(parsed.get("time")),
        items=items,
        provider=result.provider.value,
        model=result.model,
    )


# ── POST /api/ai/parse-bulk-receipt ──────────────────────────────────────
@router.post("/ai/parse-bulk-receipt", response_model=ParsedTransactions)
def parse_bulk_receipt(
    image: UploadFile = File(...),
    categories: str = Form(""),
    users: str = Form(""),
    model: Optional[str] = Form(None),
    auto_import: bool = Form(False, alias="autoImport"),
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
    generator: FallbackGenerator = Depends(get_generator),
):
    data = _read_upload(image, "Image")
    patterns = mine_patterns(store.transactions(current.family_id))
    prompt = prompts.bulk_receipt_prompt(
        categories, _parse_list_field(users), patterns, settings.RESPONSE_LANGUAGE
    )
    try:
        result = generator.generate(
            prompt, image=data, mime_type=image.content_type, preferred_model=model
        )
    except GenerationError as exc:
        raise _generation_http_error(exc, "parse-bulk-receipt")

    items = _parsed_transactions(result.text, "parse-bulk-receipt")
    return _finish_parse(items, result, auto_import, store, current.family_id)


# ── POST /api/ai/parse-audio ─────────────────────────────────────────────
@router.post("/ai/parse-audio", response_model=ParsedTransactions)
def parse_audio(
    audio: UploadFile = File(...),
    categories: str = Form(""),
    users: str = Form(""),
    model: Optional[str] = Form(None),
    auto_import: bool = Form(False, alias="autoImport"),
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
    generator: FallbackGenerator = Depends(get_generator),
):
    data = _read_upload(audio, "Audio")
    patterns = mine_patterns(store.transactions(current.family_id))
    prompt = prompts.audio_prompt(
        categories, _parse_list_field(users), patterns, settings.RESPONSE_LANGUAGE
    )
    try:
        result = generator.generate(
            prompt, audio=data, mime_type=audio.content_type, preferred_model=model
        )
    except GenerationError as exc:
        raise _generation_http_error(exc, "parse-audio")

    items = _parsed_transactions(result.text, "parse-audio")
    return _finish_parse(items, result, auto_import, store, current.family_id)


# ── POST /api/ai/financial-advice ────────────────────────────────────────
@router.post("/ai/financial-advice", response_model=AdviceResponse)
def financial_advice(
    req: FinancialAdviceRequest,
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
    generator: FallbackGenerator = Depends(get_generator),
):
    recent = _history(store, current.family_id, req.transactions)[:HISTORY_WINDOW]
    logger.info("financial-advice: %d transactions for family %s", len(recent), current.family_id)
    prompt = prompts.advice_prompt(recent, req.budget, settings.RESPONSE_LANGUAGE)
    try:
        result = generator.generate(prompt, preferred_model=req.model)
    except GenerationError as exc:
        raise _generation_http_error(exc, "financial-advice")
    return AdviceResponse(advice=result.text, provider=result.provider.value, model=result.model)


# ── POST /api/ai/chart-advice ────────────────────────────────────────────
@router.post("/ai/chart-advice", response_model=AdviceResponse)
def chart_advice(
    req: ChartAdviceRequest,
    current: CurrentUser = Depends(get_current_user),
    generator: FallbackGenerator = Depends(get_generator),
):
    if not req.data:
        raise HTTPException(status_code=400, detail="No chart data to analyse")
    prompt = prompts.chart_prompt(req.chart_type, req.chart_title, req.data, settings.RESPONSE_LANGUAGE)
    try:
        result = generator.generate(prompt, preferred_model=req.model)
    except ProviderUnconfigured as exc:
        raise _generation_http_error(exc, "chart-advice")
    except GenerationFailed as exc:
        logger.warning("chart-advice degraded to no advice: %s", exc)
        return AdviceResponse()
    return AdviceResponse(advice=result.text, provider=result.provider.value, model=result.model)


# ── POST /api/ai/autofill ────────────────────────────────────────────────
def _option_ids(options: list[Any], key: str) -> set[str]:
    ids = set()
    for option in options:
        if isinstance(option, dict):
            option = option.get(key)
        if option:
            ids.add(str(option))
    return ids


def _pick(value: Any, allowed: set[str], extra: tuple[str, ...] = ()) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    if value in extra:
        return value
    if allowed and value not in allowed:
        return None
    return value


def filter_suggestion(raw: dict, req: AutofillRequest) -> AutofillSuggestion:
    """Keep only suggestions that name values the client actually offered."""
    amount = coerce_amount(raw.get("amount"))
    priority = raw.get("priority") if req.transaction_type == "expense" else None
    return AutofillSuggestion(
        category=_pick(raw.get("category"), _option_ids(req.categories, "name")),
        sub_category=_pick(raw.get("subCategory"), _option_ids(req.sub_categories, "name")),
        user=_pick(raw.get("user"), set(req.users), extra=("shared",)),
        priority=priority if priority in PRIORITIES else None,
        payment_method_id=_pick(raw.get("paymentMethodId"), _option_ids(req.payment_methods, "id")),
        amount=amount if amount is not None and amount > 0 else None,
    )


@router.post("/ai/autofill", response_model=AutofillSuggestion)
def autofill(
    req: AutofillRequest,
    current: CurrentUser = Depends(get_current_user),
    store: FamilyLedgerStore = Depends(get_ledger_store),
    generator: FallbackGenerator = Depends(get_generator),
):
    description = (req.description or "").strip()
    if len(description) < 2:
        return AutofillSuggestion()

    patterns = mine_patterns(_history(store, current.family_id, req.recent_transactions), description)
    prompt = prompts.autofill_prompt(
        description, req.transaction_type, req.categories, req.users, req.payment_methods, patterns
    )
    try:
        result = generator.generate(prompt, preferred_model=req.model)
    except ProviderUnconfigured as exc:
        raise _generation_http_error(exc, "autofill")
    except GenerationFailed as exc:
        logger.warning("autofill degraded to empty suggestion: %s", exc)
        return AutofillSuggestion()

    try:
        raw = extract_json_object(result.text)
    except MalformedModelOutput as exc:
        logger.warning("autofill: unparseable model output, returning empty suggestion: %s", exc)
        return AutofillSuggestion()
    return filter_suggestion(raw, req)


# ── GET /api/ai/providers ────────────────────────────────────────────────
@router.get("/ai/providers", response_model=ProvidersResponse)
def provider_status(
    current: CurrentUser = Depends(get_current_user),
    generator: FallbackGenerator = Depends(get_generator),
):
    providers = [
        ProviderStatus(
            provider=p.provider.value,
            configured=p.configured,
            models={modality.value: models for modality, models in p.models.items()},
        )
        for p in generator.config.ordered()
    ]
    return ProvidersResponse(
        providers=providers,
        max_attempts={m.value: generator.max_attempts(m) for m in Modality},
    )
