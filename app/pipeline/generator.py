"""
Provider-fallback generator.

A request is tried against an ordered list of (provider, model) candidates:
every primary-provider model first, then every secondary-provider model.
Calls are strictly sequential and the first success wins, so one logical
request costs at most ``len(primary models) + len(secondary models)`` calls.
A provider without a credential contributes no candidates.
"""
from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional

from pydantic import BaseModel, Field, SecretStr

from app.pipeline.providers import (
    ErrorKind,
    GeminiClient,
    MediaPayload,
    Modality,
    OpenAIClient,
    Provider,
    ProviderCallError,
    ProviderClient,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GenerationError(Exception):
    """Base class for generator failures surfaced to callers."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ProviderUnconfigured(GenerationError):
    """No provider has a credential configured."""

    def __init__(self, message: str = "No AI provider is configured"):
        super().__init__(message)


class Attempt(BaseModel):
    provider: Provider
    model: str
    kind: ErrorKind
    message: str


class GenerationFailed(GenerationError):
    """Every candidate model of every configured provider failed."""

    def __init__(self, last_error: Optional[Exception], attempts: list[Attempt]):
        message = str(last_error) if last_error is not None else "No candidate models"
        super().__init__(f"All AI providers failed: {message}")
        self.last_error = last_error
        self.attempts = attempts
        self.kind = getattr(last_error, "kind", ErrorKind.UNKNOWN)


# ---------------------------------------------------------------------------
# Configuration and results
# ---------------------------------------------------------------------------

class ProviderConfig(BaseModel):
    provider: Provider
    api_key: Optional[SecretStr] = None
    models: dict[Modality, list[str]] = Field(default_factory=dict)

    @property
    def configured(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value())


class GeneratorConfig(BaseModel):
    primary: ProviderConfig
    secondary: ProviderConfig
    timeout_seconds: float = 45.0

    @classmethod
    def from_settings(cls, settings) -> "GeneratorConfig":
        return cls(
            primary=ProviderConfig(
                provider=Provider.PRIMARY,
                api_key=settings.GEMINI_API_KEY or None,
                models={
                    Modality.TEXT: list(settings.GEMINI_TEXT_MODELS),
                    Modality.IMAGE: list(settings.GEMINI_IMAGE_MODELS),
                    Modality.AUDIO: list(settings.GEMINI_AUDIO_MODELS),
                },
            ),
            secondary=ProviderConfig(
                provider=Provider.SECONDARY,
                api_key=settings.OPENAI_API_KEY or None,
                models={
                    Modality.TEXT: list(settings.OPENAI_TEXT_MODELS),
                    Modality.IMAGE: list(settings.OPENAI_IMAGE_MODELS),
                    Modality.AUDIO: list(settings.OPENAI_AUDIO_MODELS),
                },
            ),
            timeout_seconds=settings.AI_TIMEOUT_SECONDS,
        )

    def ordered(self) -> list[ProviderConfig]:
        return [self.primary, self.secondary]


class Candidate(BaseModel):
    provider: Provider
    model: str


class ProviderCallResult(BaseModel):
    text: str
    provider: Provider
    model: str
    attempts: list[Attempt] = Field(default_factory=list)


def _default_client_factory(config: ProviderConfig, timeout_seconds: float) -> ProviderClient:
    api_key = config.api_key.get_secret_value()
    if config.provider == Provider.PRIMARY:
        return GeminiClient(api_key, timeout_seconds)
    return OpenAIClient(api_key, timeout_seconds)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class FallbackGenerator:
    def __init__(
        self,
        config: GeneratorConfig,
        clients: Optional[Mapping[Provider, ProviderClient]] = None,
        client_factory: Callable[[ProviderConfig, float], ProviderClient] = _default_client_factory,
    ):
        self.config = config
        self._clients: dict[Provider, ProviderClient] = dict(clients or {})
        self._client_factory = client_factory

    @property
    def configured(self) -> bool:
        return any(p.configured for p in self.config.ordered())

    def candidates(self, modality: Modality, preferred_model: Optional[str] = None) -> list[Candidate]:
        """Ordered (provider, model) pairs for *modality*.

        *preferred_model* moves to the front of the primary provider's list.
        """
        if not self.configured:
            raise ProviderUnconfigured()
        ordered: list[Candidate] = []
        for provider_config in self.config.ordered():
            if not provider_config.configured:
                logger.info("Provider %s has no credential, skipping", provider_config.provider.value)
                continue
            models = list(provider_config.models.get(modality, []))
            if provider_config.provider == Provider.PRIMARY and preferred_model:
                models = [preferred_model] + [m for m in models if m != preferred_model]
            ordered.extend(Candidate(provider=provider_config.provider, model=m) for m in models)
        return ordered

    def max_attempts(self, modality: Modality) -> int:
        """Worst-case outbound calls for one request of *modality*."""
        if not self.configured:
            return 0
        return len(self.candidates(modality))

    def _client(self, provider: Provider) -> ProviderClient:
        client = self._clients.get(provider)
        if client is None:
            provider_config = self.config.primary if provider == Provider.PRIMARY else self.config.secondary
            client = self._client_factory(provider_config, self.config.timeout_seconds)
            self._clients[provider] = client
        return client

    def generate(
        self,
        prompt: str,
        image: Optional[bytes] = None,
        audio: Optional[bytes] = None,
        mime_type: Optional[str] = None,
        preferred_model: Optional[str] = None,
    ) -> ProviderCallResult:
        if image is not None and audio is not None:
            raise ValueError("Pass either an image or an audio payload, not both")

        media = None
        modality = Modality.TEXT
        if image is not None:
            modality = Modality.IMAGE
            media = MediaPayload(data=image, mime_type=mime_type or "image/jpeg", modality=modality)
        elif audio is not None:
            modality = Modality.AUDIO
            media = MediaPayload(data=audio, mime_type=mime_type or "audio/webm", modality=modality)

        candidates = self.candidates(modality, preferred_model)
        logger.info(
            "Generating (%s): %d candidates, prompt length %d",
            modality.value, len(candidates), len(prompt),
        )

        attempts: list[Attempt] = []
        last_error: Optional[Exception] = None
        for candidate in candidates:
            try:
                text = self._client(candidate.provider).generate(candidate.model, prompt, media)
            except ProviderCallError as exc:
                logger.warning(
                    "Model %s/%s failed (%s): %s",
                    candidate.provider.value, candidate.model, exc.kind.value, exc,
                )
                last_error = exc
            except Exception as exc:
                # Untyped SDK failures still only cost this one candidate
                logger.exception(
                    "Model %s/%s raised unexpectedly", candidate.provider.value, candidate.model
                )
                last_error = exc
            else:
                logger.info(
                    "Model %s/%s succeeded after %d failed attempts",
                    candidate.provider.value, candidate.model, len(attempts),
                )
                return ProviderCallResult(
                    text=text, provider=candidate.provider, model=candidate.model, attempts=attempts
                )
            attempts.append(
                Attempt(
                    provider=candidate.provider,
                    model=candidate.model,
                    kind=getattr(last_error, "kind", ErrorKind.UNKNOWN),
                    message=str(last_error),
                )
            )

        logger.error("All %d candidates failed for %s request", len(candidates), modality.value)
        raise GenerationFailed(last_error, attempts)


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

FAILURE_MESSAGES = {
    ErrorKind.QUOTA: "The AI service request limit was exceeded. Please try again later.",
    ErrorKind.AUTH: "The AI service rejected the server's API key. Check the server configuration.",
    ErrorKind.PERMISSION: "The server has no access to the AI service. Check the API key permissions.",
    ErrorKind.SAFETY: "The request was blocked by the AI service's safety filter. Try rephrasing it.",
    ErrorKind.TIMEOUT: "The AI service did not respond in time. Please try again.",
}


def describe_failure(exc: GenerationError) -> str:
    if isinstance(exc, ProviderUnconfigured):
        return "AI service API key is not configured. Contact the administrator."
    message = FAILURE_MESSAGES.get(exc.kind)
    if message:
        return message
    last_error = getattr(exc, "last_error", None)
    return f"AI service error: {last_error or exc}"
