"""
Provider clients behind one small interface.

Each client makes exactly one generation call per ``generate`` and reports
failures as ``ProviderCallError`` with an ``ErrorKind`` taken from the SDK's
typed errors. Message sniffing is only used when the SDK gives nothing better.
"""
from __future__ import annotations

import base64
import logging
from enum import Enum
from typing import Optional, Protocol

import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Modality(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class ErrorKind(str, Enum):
    QUOTA = "quota"
    AUTH = "auth"
    PERMISSION = "permission"
    SAFETY = "safety"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"


class ProviderCallError(Exception):
    """One failed call to one model."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind


class MediaPayload(BaseModel):
    data: bytes
    mime_type: str
    modality: Modality


class ProviderClient(Protocol):
    def generate(self, model: str, prompt: str, media: Optional[MediaPayload] = None) -> str:
        ...


def classify_message(message: str) -> ErrorKind:
    """Last-resort classification for errors that carry only a message."""
    text = (message or "").lower()
    if "quota" in text or "rate limit" in text or "resource_exhausted" in text:
        return ErrorKind.QUOTA
    if "api_key" in text or "api key" in text or "unauthenticated" in text:
        return ErrorKind.AUTH
    if "permission" in text:
        return ErrorKind.PERMISSION
    if "safety" in text or "blocked" in text:
        return ErrorKind.SAFETY
    if "timed out" in text or "timeout" in text or "deadline" in text:
        return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


# ---------------------------------------------------------------------------
# Gemini (primary)
# ---------------------------------------------------------------------------

_GEMINI_STATUS_KINDS = {
    "RESOURCE_EXHAUSTED": ErrorKind.QUOTA,
    "UNAUTHENTICATED": ErrorKind.AUTH,
    "PERMISSION_DENIED": ErrorKind.PERMISSION,
    "NOT_FOUND": ErrorKind.NOT_FOUND,
    "DEADLINE_EXCEEDED": ErrorKind.TIMEOUT,
    "UNAVAILABLE": ErrorKind.UNAVAILABLE,
}


def gemini_error_kind(exc: genai_errors.APIError) -> ErrorKind:
    kind = _GEMINI_STATUS_KINDS.get(str(exc.status or "").upper())
    if kind is not None:
        return kind
    if exc.code == 429:
        return ErrorKind.QUOTA
    if exc.code == 401:
        return ErrorKind.AUTH
    if exc.code == 403:
        return ErrorKind.PERMISSION
    if exc.code == 404:
        return ErrorKind.NOT_FOUND
    if isinstance(exc, genai_errors.ServerError):
        return ErrorKind.UNAVAILABLE
    # "API key not valid" arrives as a plain 400 INVALID_ARGUMENT
    return classify_message(str(exc))


class GeminiClient:
    def __init__(self, api_key: str, timeout_seconds: float):
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
        )

    def generate(self, model: str, prompt: str, media: Optional[MediaPayload] = None) -> str:
        contents: list = [prompt]
        if media is not None:
            contents = [types.Part.from_bytes(data=media.data, mime_type=media.mime_type), prompt]
        try:
            response = self._client.models.generate_content(model=model, contents=contents)
        except genai_errors.APIError as exc:
            raise ProviderCallError(str(exc), gemini_error_kind(exc)) from exc
        except httpx.TimeoutException as exc:
            raise ProviderCallError(f"Request timed out: {exc}", ErrorKind.TIMEOUT) from exc
        except httpx.HTTPError as exc:
            raise ProviderCallError(str(exc), ErrorKind.UNAVAILABLE) from exc

        text = response.text
        if not text:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = getattr(feedback, "block_reason", None)
            if block_reason:
                raise ProviderCallError(f"Blocked by safety filter: {block_reason}", ErrorKind.SAFETY)
            raise ProviderCallError("Empty response", ErrorKind.EMPTY_RESPONSE)
        return text


# ---------------------------------------------------------------------------
# OpenAI (secondary)
# ---------------------------------------------------------------------------

_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


def openai_content(prompt: str, media: Optional[MediaPayload]) -> list[dict]:
    parts: list[dict] = [{"type": "text", "text": prompt}]
    if media is None:
        return parts
    encoded = base64.b64encode(media.data).decode("ascii")
    if media.modality == Modality.IMAGE:
        parts.append(
            {"type": "image_url", "image_url": {"url": f"data:{media.mime_type};base64,{encoded}"}}
        )
    elif media.modality == Modality.AUDIO:
        audio_format = _AUDIO_FORMATS.get(media.mime_type.lower())
        if audio_format is None:
            raise ProviderCallError(
                f"Unsupported audio format for secondary provider: {media.mime_type}",
                ErrorKind.UNKNOWN,
            )
        parts.append({"type": "input_audio", "input_audio": {"data": encoded, "format": audio_format}})
    return parts


class OpenAIClient:
    def __init__(self, api_key: str, timeout_seconds: float):
        # The fallback chain is the only retry mechanism
        self._client = openai.OpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    def generate(self, model: str, prompt: str, media: Optional[MediaPayload] = None) -> str:
        messages = [{"role": "user", "content": openai_content(prompt, media)}]
        try:
            response = self._client.chat.completions.create(model=model, messages=messages)
        except openai.RateLimitError as exc:
            raise ProviderCallError(str(exc), ErrorKind.QUOTA) from exc
        except openai.AuthenticationError as exc:
            raise ProviderCallError(str(exc), ErrorKind.AUTH) from exc
        except openai.PermissionDeniedError as exc:
            raise ProviderCallError(str(exc), ErrorKind.PERMISSION) from exc
        except openai.NotFoundError as exc:
            raise ProviderCallError(str(exc), ErrorKind.NOT_FOUND) from exc
        except openai.APITimeoutError as exc:
            raise ProviderCallError(str(exc), ErrorKind.TIMEOUT) from exc
        except openai.APIConnectionError as exc:
            raise ProviderCallError(str(exc), ErrorKind.UNAVAILABLE) from exc
        except openai.APIError as exc:
            raise ProviderCallError(str(exc), classify_message(str(exc))) from exc

        choice = response.choices[0] if response.choices else None
        if choice is not None and choice.finish_reason == "content_filter":
            raise ProviderCallError("Blocked by content filter", ErrorKind.SAFETY)
        text = choice.message.content if choice is not None else None
        if not text:
            raise ProviderCallError("Empty response", ErrorKind.EMPTY_RESPONSE)
        return text
