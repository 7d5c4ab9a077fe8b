"""
Unit tests for the AI pipeline and the ledger list helpers (no HTTP).
"""
from types import SimpleNamespace

import httpx
import openai
import pytest
from google.genai import errors as genai_errors

from app.ledger import (
    belongs_to_import,
    prepend_batch,
    remove_year,
    rollback_import,
    tag_import,
    transaction_year,
)
from app.pipeline.extractor import (
    MalformedModelOutput,
    coerce_amount,
    extract_json_array,
    extract_json_object,
    normalize_time,
    normalize_transactions,
)
from app.pipeline.generator import (
    GenerationFailed,
    ProviderUnconfigured,
    describe_failure,
)
from app.pipeline.patterns import collect_exemplars, mine_patterns, rank_fields
from app.pipeline.providers import (
    ErrorKind,
    GeminiClient,
    MediaPayload,
    Modality,
    OpenAIClient,
    Provider,
    ProviderCallError,
    classify_message,
    gemini_error_kind,
    openai_content,
)
from tests.helpers.fake_providers import FakeProviderClient, make_generator


def _tx(description, category, **extra):
    return {"description": description, "amount": 100, "category": category, **extra}


# =====================================================================
# Pattern mining
# =====================================================================
class TestPatterns:
    def test_dominant_category(self):
        history = [_tx("Groceries", "Food", user="Alena") for _ in range(5)]
        summary = mine_patterns(history)
        top = summary.history.top("category")
        assert top.value == "Food"
        assert top.count == 5
        assert 'Across recent history category "Food" was used 5 times.' in summary.guidance

    def test_count_must_beat_threshold(self):
        history = [_tx("Bread", "Food"), _tx("Bus", "Transport"), _tx("Milk", "Food")]
        table = rank_fields(history, threshold=2)
        assert table.ranked["category"][0].count == 2
        assert table.top("category") is None

    def test_nothing_significant_returns_none(self):
        history = [_tx("Bread", "UNKNOWN"), _tx("Bus", "UNKNOWN")]
        assert mine_patterns(history) is None

    def test_empty_history_returns_none(self):
        assert mine_patterns([]) is None
        assert mine_patterns(None) is None

    def test_ties_go_to_first_seen(self):
        records = [
            {"category": "Food"},
            {"category": "Transport"},
            {"category": "Transport"},
            {"category": "Food"},
        ]
        table = rank_fields(records, threshold=1)
        assert table.ranked["category"][0].value == "Food"

    def test_window_is_most_recent_fifty(self):
        history = [_tx("Bread", "Food") for _ in range(10)]
        history += [_tx("Bus", "Transport") for _ in range(50)]
        summary = mine_patterns(history)
        assert summary.history.sample_size == 50
        assert summary.history.top("category").value == "Transport"
        assert summary.history.top("category").count == 40

    def test_similar_transactions_lower_threshold(self):
        history = [_tx("Coffee shop", "Cafe"), _tx("coffee to go", "Cafe")]
        history += [_tx("Groceries", "Food") for _ in range(3)]
        summary = mine_patterns(history, "Morning coffee")
        assert summary.similar is not None
        assert summary.similar.sample_size == 2
        assert 'In similar past transactions category "Cafe" was used 2 times.' in summary.guidance

    def test_short_words_do_not_match(self):
        history = [_tx("Tea", "Cafe") for _ in range(3)]
        summary = mine_patterns(history, "a to")
        assert summary.similar is None

    def test_exemplars_skip_unknown(self):
        records = [_tx("Something", "UNKNOWN") for _ in range(3)]
        assert collect_exemplars(records) == []

    def test_single_occurrence_pair_kept(self):
        records = [_tx("Lunch", "Food") for _ in range(3)]
        records.append(_tx("Yandex Taxi", "Transport", subCategory="Taxi"))
        exemplars = collect_exemplars(records)
        assert [(e.category, e.sub_category) for e in exemplars] == [("Food", None), ("Transport", "Taxi")]
        assert exemplars[1].most_frequent == "Yandex Taxi"
        assert exemplars[1].occurrences == 1

    def test_single_occurrence_reaches_guidance(self):
        summary = mine_patterns([_tx("Yandex Taxi", "Transport", subCategory="Taxi")])
        assert summary is not None
        assert any('"Yandex Taxi"' in line for line in summary.guidance)

    def test_exemplar_descriptions_by_frequency(self):
        records = [_tx("Magnit", "Food", subCategory="Groceries")]
        records += [_tx("Pyaterochka", "Food", subCategory="Groceries") for _ in range(3)]
        records += [_tx("Taxi", "Transport"), _tx("Taxi", "Transport")]
        exemplars = collect_exemplars(records)
        assert [e.category for e in exemplars] == ["Food", "Transport"]
        food = exemplars[0]
        assert food.sub_category == "Groceries"
        assert food.occurrences == 4
        assert food.most_frequent == "Pyaterochka"
        assert food.descriptions == ["Pyaterochka", "Magnit"]

    def test_exemplar_sentence_in_guidance(self):
        records = [_tx("Pyaterochka", "Food") for _ in range(2)]
        summary = mine_patterns(records)
        assert any('"Pyaterochka"' in line and "verbatim" in line for line in summary.guidance)
        assert summary.text == "\n".join(summary.guidance)


# =====================================================================
# Response extraction
# =====================================================================
class TestExtractor:
    def test_object_inside_prose(self):
        raw = 'Sure! ```json\n{"amount": 12.5, "category": "Food"}\n``` Hope this helps.'
        assert extract_json_object(raw) == {"amount": 12.5, "category": "Food"}

    def test_object_missing(self):
        with pytest.raises(MalformedModelOutput):
            extract_json_object("no json here")

    def test_object_invalid_json(self):
        with pytest.raises(MalformedModelOutput) as info:
            extract_json_object("{amount: twelve}")
        assert info.value.raw == "{amount: twelve}"

    def test_array_inside_prose(self):
        assert extract_json_array('Result: [{"a": 1}] done') == [{"a": 1}]

    def test_empty_result_phrase(self):
        assert extract_json_array("No transactions found on this image.") == []
        assert extract_json_array("Транзакций не найдено.") == []

    def test_array_missing(self):
        with pytest.raises(MalformedModelOutput):
            extract_json_array("I could not read this picture")

    def test_time_normalization(self):
        assert normalize_time("9:5") == "09:05"
        assert normalize_time("09:05") == "09:05"
        assert normalize_time(" 23:59 ") == "23:59"

    def test_time_out_of_range(self):
        assert normalize_time("25:00") is None
        assert normalize_time("12:60") is None
        assert normalize_time("noon") is None
        assert normalize_time(930) is None

    def test_amount_coercion(self):
        assert coerce_amount("1 200,50") == 1200.5
        assert coerce_amount(42) == 42.0
        assert coerce_amount(True) is None
        assert coerce_amount("free") is None

    def test_drops_credits_and_zero_amounts(self):
        records = normalize_transactions([
            {"description": "Кэшбэк за покупки", "amount": 100},
            {"description": "Bonus points", "amount": 50},
            {"description": "Milk", "amount": 0},
            {"description": "Bread", "amount": "1 200,50", "time": "7:3", "priority": "urgent"},
        ])
        assert len(records) == 1
        bread = records[0]
        assert bread.amount == 1200.5
        assert bread.time == "07:03"
        assert bread.priority is None
        assert bread.category == "UNKNOWN"

    def test_income_has_no_priority(self):
        records = normalize_transactions([
            {"description": "Salary", "amount": 5000, "type": "income", "priority": "must-have"},
        ])
        assert records[0].type == "income"
        assert records[0].priority is None

    def test_blank_description_placeholder(self):
        records = normalize_transactions([{"amount": 10, "type": "transfer", "date": 123}])
        assert records[0].description == "Untitled"
        assert records[0].type == "expense"
        assert records[0].date is None

    def test_normalization_is_idempotent(self):
        once = normalize_transactions([
            {"description": "Taxi", "amount": "350", "time": "8:15", "category": " "},
        ])
        twice = normalize_transactions([r.to_document() for r in once])
        assert [r.to_document() for r in twice] == [r.to_document() for r in once]


# =====================================================================
# Provider fallback
# =====================================================================
class TestFallbackGenerator:
    def test_secondary_provider_rescues_request(self):
        primary = FakeProviderClient()
        secondary = FakeProviderClient({
            "s-text-1": ProviderCallError("rate limit", ErrorKind.QUOTA),
            "s-text-2": "ok",
        })
        gen = make_generator(primary, secondary)
        result = gen.generate("hello")
        assert result.text == "ok"
        assert result.provider == Provider.SECONDARY
        assert result.model == "s-text-2"
        assert len(result.attempts) == 3
        assert primary.models_called == ["p-text-1", "p-text-2"]

    def test_first_success_stops(self):
        primary = FakeProviderClient({"p-text-1": "answer"})
        secondary = FakeProviderClient({"s-text-1": "other"})
        result = make_generator(primary, secondary).generate("hello")
        assert result.provider == Provider.PRIMARY
        assert result.attempts == []
        assert secondary.calls == []

    def test_nothing_configured(self):
        gen = make_generator(primary_key=None, secondary_key=None)
        assert not gen.configured
        assert gen.max_attempts(Modality.TEXT) == 0
        with pytest.raises(ProviderUnconfigured):
            gen.generate("hello")

    def test_unconfigured_provider_is_skipped(self):
        primary = FakeProviderClient({"p-text-1": "never"})
        secondary = FakeProviderClient({"s-text-1": "ok"})
        result = make_generator(primary, secondary, primary_key=None).generate("hello")
        assert result.provider == Provider.SECONDARY
        assert primary.calls == []

    def test_all_fail_reports_last_error(self):
        secondary = FakeProviderClient({
            "s-text-2": ProviderCallError("blocked by safety", ErrorKind.SAFETY),
        })
        gen = make_generator(FakeProviderClient(), secondary)
        with pytest.raises(GenerationFailed) as info:
            gen.generate("hello")
        exc = info.value
        assert exc.kind == ErrorKind.SAFETY
        assert len(exc.attempts) == 4
        assert str(exc.last_error) == "blocked by safety"
        assert "safety filter" in describe_failure(exc)

    def test_unknown_failure_message_names_last_error(self):
        gen = make_generator(FakeProviderClient(), FakeProviderClient())
        with pytest.raises(GenerationFailed) as info:
            gen.generate("hello")
        assert describe_failure(info.value) == "AI service error: model s-text-2 unavailable"

    def test_unconfigured_message(self):
        assert "not configured" in describe_failure(ProviderUnconfigured())

    def test_preferred_model_goes_first(self):
        gen = make_generator()
        models = [c.model for c in gen.candidates(Modality.TEXT, "p-text-2")]
        assert models == ["p-text-2", "p-text-1", "s-text-1", "s-text-2"]
        assert gen.candidates(Modality.TEXT, "custom")[0].model == "custom"

    def test_max_attempts(self):
        gen = make_generator()
        assert gen.max_attempts(Modality.TEXT) == 4
        assert gen.max_attempts(Modality.AUDIO) == 3
        assert make_generator(secondary_key=None).max_attempts(Modality.IMAGE) == 2

    def test_image_uses_vision_models(self):
        primary = FakeProviderClient({"p-vision-1": "[]"})
        make_generator(primary).generate("read", image=b"\x89PNG")
        model, _, media = primary.calls[0]
        assert model == "p-vision-1"
        assert media.modality == Modality.IMAGE
        assert media.mime_type == "image/jpeg"

    def test_image_and_audio_together(self):
        with pytest.raises(ValueError):
            make_generator().generate("read", image=b"a", audio=b"b")

    def test_unexpected_client_error_moves_on(self):
        primary = FakeProviderClient({"p-text-1": RuntimeError("sdk exploded")})
        secondary = FakeProviderClient({"s-text-1": "ok"})
        result = make_generator(primary, secondary).generate("hello")
        assert result.provider == Provider.SECONDARY
        assert result.attempts[0].kind == ErrorKind.UNKNOWN
        assert result.attempts[0].message == "sdk exploded"
        assert primary.models_called == ["p-text-1", "p-text-2"]

    def test_unexpected_error_on_last_model(self):
        secondary = FakeProviderClient({"s-text-2": KeyError("choices")})
        with pytest.raises(GenerationFailed) as info:
            make_generator(FakeProviderClient(), secondary).generate("hello")
        assert info.value.kind == ErrorKind.UNKNOWN
        assert len(info.value.attempts) == 4


class TestProviderHelpers:
    def test_classify_message(self):
        assert classify_message("429 Resource_Exhausted") == ErrorKind.QUOTA
        assert classify_message("API key not valid") == ErrorKind.AUTH
        assert classify_message("Request timed out") == ErrorKind.TIMEOUT
        assert classify_message("boom") == ErrorKind.UNKNOWN

    def test_openai_image_content(self):
        media = MediaPayload(data=b"img", mime_type="image/png", modality=Modality.IMAGE)
        parts = openai_content("read", media)
        assert parts[0] == {"type": "text", "text": "read"}
        assert parts[1]["image_url"]["url"] == "data:image/png;base64,aW1n"

    def test_openai_audio_content(self):
        media = MediaPayload(data=b"snd", mime_type="audio/mpeg", modality=Modality.AUDIO)
        assert openai_content("listen", media)[1]["input_audio"]["format"] == "mp3"

    def test_openai_rejects_unsupported_audio(self):
        media = MediaPayload(data=b"snd", mime_type="audio/webm", modality=Modality.AUDIO)
        with pytest.raises(ProviderCallError):
            openai_content("listen", media)


OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _gemini_error(cls, code, status, message="error"):
    return cls(code, {"error": {"code": code, "message": message, "status": status}})


def _raises(exc):
    def respond(**kwargs):
        raise exc
    return respond


def _gemini_with(respond):
    client = GeminiClient("test-key", 5)
    client._client = SimpleNamespace(models=SimpleNamespace(generate_content=respond))
    return client


def _openai_with(respond):
    client = OpenAIClient("sk-test", 5)
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=respond)))
    return client


def _openai_choice(content, finish_reason="stop"):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(finish_reason=finish_reason, message=message)])


class TestProviderErrorMapping:
    def test_gemini_status_codes(self):
        quota = _gemini_error(genai_errors.ClientError, 429, "RESOURCE_EXHAUSTED")
        denied = _gemini_error(genai_errors.ClientError, 403, "PERMISSION_DENIED")
        overloaded = _gemini_error(genai_errors.ServerError, 503, "UNAVAILABLE", "The model is overloaded.")
        assert gemini_error_kind(quota) == ErrorKind.QUOTA
        assert gemini_error_kind(denied) == ErrorKind.PERMISSION
        assert gemini_error_kind(overloaded) == ErrorKind.UNAVAILABLE

    def test_gemini_falls_back_to_code_then_message(self):
        assert gemini_error_kind(genai_errors.ClientError(429, {})) == ErrorKind.QUOTA
        internal = _gemini_error(genai_errors.ServerError, 500, "INTERNAL")
        assert gemini_error_kind(internal) == ErrorKind.UNAVAILABLE
        bad_key = _gemini_error(
            genai_errors.ClientError, 400, "INVALID_ARGUMENT", "API key not valid. Please pass a valid API key."
        )
        assert gemini_error_kind(bad_key) == ErrorKind.AUTH

    def test_gemini_client_wraps_sdk_errors(self):
        client = _gemini_with(_raises(_gemini_error(genai_errors.ClientError, 429, "RESOURCE_EXHAUSTED")))
        with pytest.raises(ProviderCallError) as info:
            client.generate("gemini-x", "hello")
        assert info.value.kind == ErrorKind.QUOTA

        client = _gemini_with(_raises(httpx.ReadTimeout("slow")))
        with pytest.raises(ProviderCallError) as info:
            client.generate("gemini-x", "hello")
        assert info.value.kind == ErrorKind.TIMEOUT

    def test_gemini_blocked_and_empty(self):
        blocked = SimpleNamespace(text=None, prompt_feedback=SimpleNamespace(block_reason="SAFETY"))
        with pytest.raises(ProviderCallError) as info:
            _gemini_with(lambda **kwargs: blocked).generate("gemini-x", "hello")
        assert info.value.kind == ErrorKind.SAFETY

        empty = SimpleNamespace(text="", prompt_feedback=None)
        with pytest.raises(ProviderCallError) as info:
            _gemini_with(lambda **kwargs: empty).generate("gemini-x", "hello")
        assert info.value.kind == ErrorKind.EMPTY_RESPONSE

    def test_gemini_sends_media_before_prompt(self):
        seen = {}

        def respond(**kwargs):
            seen.update(kwargs)
            return SimpleNamespace(text="ok")

        media = MediaPayload(data=b"img", mime_type="image/png", modality=Modality.IMAGE)
        assert _gemini_with(respond).generate("gemini-x", "read", media) == "ok"
        assert seen["model"] == "gemini-x"
        assert seen["contents"][1] == "read"
        assert seen["contents"][0].inline_data.mime_type == "image/png"

    @pytest.mark.parametrize(
        "exc, kind",
        [
            (openai.RateLimitError("Rate limit reached", response=httpx.Response(429, request=OPENAI_REQUEST), body=None), ErrorKind.QUOTA),
            (openai.AuthenticationError("Incorrect API key", response=httpx.Response(401, request=OPENAI_REQUEST), body=None), ErrorKind.AUTH),
            (openai.PermissionDeniedError("denied", response=httpx.Response(403, request=OPENAI_REQUEST), body=None), ErrorKind.PERMISSION),
            (openai.APITimeoutError(request=OPENAI_REQUEST), ErrorKind.TIMEOUT),
            (openai.APIConnectionError(request=OPENAI_REQUEST), ErrorKind.UNAVAILABLE),
        ],
    )
    def test_openai_error_kinds(self, exc, kind):
        with pytest.raises(ProviderCallError) as info:
            _openai_with(_raises(exc)).generate("gpt-x", "hello")
        assert info.value.kind == kind

    def test_openai_content_filter(self):
        filtered = _openai_choice(None, finish_reason="content_filter")
        with pytest.raises(ProviderCallError) as info:
            _openai_with(lambda **kwargs: filtered).generate("gpt-x", "hello")
        assert info.value.kind == ErrorKind.SAFETY

    def test_openai_empty_reply(self):
        with pytest.raises(ProviderCallError) as info:
            _openai_with(lambda **kwargs: SimpleNamespace(choices=[])).generate("gpt-x", "hello")
        assert info.value.kind == ErrorKind.EMPTY_RESPONSE

    def test_openai_success(self):
        seen = {}

        def respond(**kwargs):
            seen.update(kwargs)
            return _openai_choice("answer")

        assert _openai_with(respond).generate("gpt-x", "hello") == "answer"
        assert seen["model"] == "gpt-x"
        assert seen["messages"][0]["content"] == [{"type": "text", "text": "hello"}]


# =====================================================================
# Ledger bulk-import helpers
# =====================================================================
class TestLedgerHelpers:
    def test_tag_import(self):
        batch = tag_import(
            [
                {"description": "Bread", "amount": 50, "type": "expense", "date": "2024-03-01"},
                {"description": "Salary", "amount": 900, "type": "income", "date": "2024-03-01"},
            ],
            1700000000000,
        )
        assert batch[0]["id"].startswith("bulk-1700000000000-0-")
        assert batch[0]["priority"] == "nice-to-have"
        assert "priority" not in batch[1]
        assert all(tx["_importTimestamp"] == 1700000000000 for tx in batch)

    def test_tag_import_converts_epoch_dates(self):
        batch = tag_import([{"description": "x", "amount": 1, "date": 0}], 5)
        # 0 is falsy, so it is replaced with the current time
        assert isinstance(batch[0]["date"], str)
        batch = tag_import([{"description": "x", "amount": 1, "date": 1704067200000}], 5)
        assert batch[0]["date"].startswith("2024-01-01")

    def test_rollback_removes_exactly_one_batch(self):
        first = tag_import([{"description": "a", "amount": 1}] * 3, 111)
        second = tag_import([{"description": "b", "amount": 1}] * 2, 222)
        manual = [{"id": "m1", "description": "c", "amount": 1}]
        ledger = prepend_batch(prepend_batch(manual, first), second)
        # order should not matter
        ledger.reverse()
        kept, removed = rollback_import(ledger, 111)
        assert removed == 3
        assert len(kept) == 3
        assert not any(belongs_to_import(tx, 111) for tx in kept)

    def test_rollback_matches_id_prefix(self):
        legacy = {"id": "bulk-333-0-abcdefghi", "description": "old", "amount": 1}
        kept, removed = rollback_import([legacy], 333)
        assert (kept, removed) == ([], 1)

    def test_prepend_batch(self):
        assert prepend_batch([{"id": "old"}], [{"id": "new"}]) == [{"id": "new"}, {"id": "old"}]

    def test_transaction_year(self):
        assert transaction_year({"date": "2023-12-31T23:00:00Z"}) == 2023
        assert transaction_year({"date": "2024-01-05"}) == 2024
        assert transaction_year({"date": "yesterday"}) is None
        assert transaction_year({}) is None

    def test_remove_year_keeps_undated(self):
        ledger = [
            {"id": "1", "date": "2023-05-01"},
            {"id": "2", "date": "2024-05-01"},
            {"id": "3"},
            {"id": "4", "date": "not a date"},
        ]
        kept, removed = remove_year(ledger, 2023)
        assert removed == 1
        assert [tx["id"] for tx in kept] == ["2", "3", "4"]
