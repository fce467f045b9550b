"""
LLM Providers
--------------
Three provider implementations with an identical contract:

  OpenAIProvider     -- OpenAI chat completions (bearer-token auth, SDK)
  GeminiProvider     -- Google Gemini REST API (API key as query param, httpx)
  AnthropicProvider  -- Anthropic messages API (x-api-key auth, SDK)

Every provider exposes:

  list_models()          -> [LLMModel]  never raises; falls back to a static
                                        list of known-good models, flagship first
  generate_answer(prompt) -> str         never raises; failures come back as a
                                        readable error string shown as the answer

The set of providers is closed: ProviderKind selects one, and
create_provider() builds it from explicit settings.  A missing API key is a
configuration error raised at construction time, before any network call.

Generation settings (all providers):
  - temperature 0.3 (faithful rather than creative)
  - completion cap: 1,000 tokens
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import httpx
from langsmith import traceable
from loguru import logger
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from docqa.generation.prompts import PROVIDER_ERROR_RESPONSE, SYSTEM_MESSAGE

if TYPE_CHECKING:
    from docqa.config import LLMSettings

DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TIMEOUT = 60.0


# ---------------------------------------------------------------------------
# Shared types
# ---------------------------------------------------------------------------

class ProviderKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


class LLMModel(BaseModel):
    id: str
    name: str
    provider: ProviderKind


class ProviderConfigError(Exception):
    """Provider cannot be used as configured (no API key, unknown provider)."""


class ModelSelectionError(ProviderConfigError):
    """No model has been selected for the active provider."""


# ---------------------------------------------------------------------------
# Base provider
# ---------------------------------------------------------------------------

class LLMProvider(ABC):
    """
    Uniform model-listing + answer-generation contract over one backend.

    Subclasses implement _fetch_models() and _generate(); the public methods
    add fallback behaviour, flagship ordering and logging.
    """

    kind: ProviderKind
    display_name: str
    default_model: str
    flagship_model: Optional[str] = None
    default_models: tuple[tuple[str, str], ...] = ()

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not api_key:
            raise ProviderConfigError(
                f"{self.display_name} API key is not set. Please set it in the settings."
            )
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @property
    def active_model(self) -> str:
        """Selected model, or the backend default when nothing is selected."""
        return self.model or self.default_model

    def fallback_models(self) -> list[LLMModel]:
        return [LLMModel(id=mid, name=name, provider=self.kind) for mid, name in self.default_models]

    # --- Public contract ------------------------------------------------------

    async def list_models(self) -> list[LLMModel]:
        try:
            models = await self._fetch_models()
        except Exception as exc:
            logger.warning(f"[{self.display_name}] Model listing failed, using defaults: {exc}")
            return self.fallback_models()

        if not models:
            logger.warning(f"[{self.display_name}] Model listing was empty, using defaults")
            return self.fallback_models()

        models = self._promote_flagship(models)
        logger.info(f"[{self.display_name}] {len(models)} model(s) available")
        return models

    @traceable(name="generate_answer", run_type="llm")
    async def generate_answer(self, prompt: str) -> str:
        model = self.active_model
        logger.debug(f"[{self.display_name}] {model} | prompt={len(prompt)} chars")
        try:
            answer = await self._generate(prompt, model)
        except Exception as exc:
            logger.error(f"[{self.display_name}] Generation failed with {model}: {exc}")
            return PROVIDER_ERROR_RESPONSE.format(provider=self.display_name, error=exc)

        logger.info(f"[{self.display_name}] Done | model={model} | answer={len(answer)} chars")
        return answer

    def _promote_flagship(self, models: list[LLMModel]) -> list[LLMModel]:
        if self.flagship_model is None:
            return models
        flagship = [m for m in models if m.id == self.flagship_model]
        return flagship + [m for m in models if m.id != self.flagship_model]

    # --- Backend hooks --------------------------------------------------------

    @abstractmethod
    async def _fetch_models(self) -> list[LLMModel]:
        """Call the backend's model-listing endpoint."""

    @abstractmethod
    async def _generate(self, prompt: str, model: str) -> str:
        """Call the backend's generation endpoint and return the answer text."""

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""

    async def __aenter__(self) -> "LLMProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

_OPENAI_NAMES = {
    "gpt-4o": "GPT-4o",
    "gpt-4o-mini": "GPT-4o mini",
    "gpt-4-turbo": "GPT-4 Turbo",
    "gpt-4": "GPT-4",
    "gpt-3.5-turbo": "GPT-3.5 Turbo",
}


def _is_openai_chat_model(model_id: str) -> bool:
    return (
        "gpt" in model_id
        and "instruct" not in model_id
        and "-vision-" not in model_id
        and "ft-" not in model_id
    )


class OpenAIProvider(LLMProvider):
    """OpenAI chat models; gpt-4o is listed first when the account has it."""

    kind = ProviderKind.OPENAI
    display_name = "OpenAI"
    default_model = "gpt-4o"
    flagship_model = "gpt-4o"
    default_models = (
        ("gpt-4o", "GPT-4o"),
        ("gpt-4-turbo", "GPT-4 Turbo"),
        ("gpt-3.5-turbo", "GPT-3.5 Turbo"),
    )

    def __init__(self, api_key: Optional[str], model: Optional[str] = None, client: Any = None, **kwargs: Any) -> None:
        super().__init__(api_key, model, **kwargs)
        if client is None:
            from openai import AsyncOpenAI  # lazy import keeps import graph clean
            client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        self._client = client

    async def _fetch_models(self) -> list[LLMModel]:
        page = await self._client.models.list()
        chat_models = [m for m in page.data if _is_openai_chat_model(m.id)]
        chat_models.sort(key=lambda m: m.created or 0, reverse=True)
        return [
            LLMModel(id=m.id, name=_OPENAI_NAMES.get(m.id, m.id), provider=self.kind)
            for m in chat_models
        ]

    async def _generate(self, prompt: str, model: str) -> str:
        response = await self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices or not response.choices[0].message.content:
            raise ValueError("OpenAI response contained no answer text")

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"[OpenAI] prompt={usage.prompt_tokens} completion={usage.completion_tokens}"
            )
        return response.choices[0].message.content

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(LLMProvider):
    """
    Google Gemini over its public REST API.

    Authentication is the API key as a `key` query parameter.  Transport-level
    failures (connection reset, timeouts) are retried a few times before the
    provider falls back.
    """

    kind = ProviderKind.GEMINI
    display_name = "Google Gemini"
    default_model = "gemini-1.5-flash"
    default_models = (
        ("gemini-1.5-flash", "Gemini 1.5 Flash"),
        ("gemini-1.5-pro", "Gemini 1.5 Pro"),
        ("gemini-1.0-pro", "Gemini 1.0 Pro"),
    )

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = GEMINI_BASE_URL,
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, model, **kwargs)
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        response = await self._client.request(
            method, f"{self.base_url}/{path}", params={"key": self.api_key}, **kwargs
        )
        if response.is_error:
            try:
                detail = response.json().get("error", {}).get("message", response.reason_phrase)
            except ValueError:
                detail = response.reason_phrase
            raise httpx.HTTPStatusError(
                f"Gemini API error {response.status_code}: {detail}",
                request=response.request,
                response=response,
            )
        return response.json()

    async def _fetch_models(self) -> list[LLMModel]:
        data = await self._request("GET", "models")
        models = []
        for item in data.get("models", []):
            if "generateContent" not in item.get("supportedGenerationMethods", []):
                continue
            model_id = item["name"].removeprefix("models/")
            models.append(
                LLMModel(id=model_id, name=item.get("displayName") or model_id, provider=self.kind)
            )
        return models

    async def _generate(self, prompt: str, model: str) -> str:
        model_id = model.removeprefix("models/")
        data = await self._request(
            "POST",
            f"models/{model_id}:generateContent",
            json={
                "systemInstruction": {"parts": [{"text": SYSTEM_MESSAGE}]},
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self.temperature,
                    "maxOutputTokens": self.max_tokens,
                },
            },
        )
        candidates = data.get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        text = "".join(p.get("text", "") for p in parts)
        if not text:
            reason = data.get("promptFeedback", {}).get("blockReason", "no candidates returned")
            raise ValueError(f"Gemini response contained no answer text ({reason})")
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicProvider(LLMProvider):
    """
    Anthropic Claude models.

    The Anthropic SDK passes the system prompt as a separate `system`
    parameter (not inside the messages list) -- handled here transparently.
    """

    kind = ProviderKind.ANTHROPIC
    display_name = "Anthropic"
    default_model = "claude-haiku-4-5-20251001"
    default_models = (
        ("claude-haiku-4-5-20251001", "Claude Haiku 4.5"),
        ("claude-sonnet-4-6", "Claude Sonnet 4.6"),
    )

    def __init__(self, api_key: Optional[str], model: Optional[str] = None, client: Any = None, **kwargs: Any) -> None:
        super().__init__(api_key, model, **kwargs)
        if client is None:
            from anthropic import AsyncAnthropic  # lazy import
            client = AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        self._client = client

    async def _fetch_models(self) -> list[LLMModel]:
        page = await self._client.models.list(limit=100)
        return [
            LLMModel(id=m.id, name=getattr(m, "display_name", None) or m.id, provider=self.kind)
            for m in page.data
        ]

    async def _generate(self, prompt: str, model: str) -> str:
        response = await self._client.messages.create(
            model=model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=SYSTEM_MESSAGE,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(block.text for block in response.content if block.type == "text")
        if not text:
            raise ValueError("Anthropic response contained no answer text")
        return text

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_PROVIDERS: dict[ProviderKind, type[LLMProvider]] = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.GEMINI: GeminiProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
}


def create_provider(
    settings: "LLMSettings",
    kind: Optional[ProviderKind | str] = None,
    model: Optional[str] = None,
) -> LLMProvider:
    """
    Build the provider for `kind` (default: settings.provider) from explicit settings.

    Raises:
        ProviderConfigError: unknown provider or no API key for it.
    """
    try:
        provider_kind = ProviderKind(kind or settings.provider)
    except ValueError as exc:
        raise ProviderConfigError(f"Unknown LLM provider: {kind!r}") from exc

    backend = settings.for_kind(provider_kind)
    return _PROVIDERS[provider_kind](
        api_key=backend.api_key,
        model=model or backend.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.timeout,
    )
