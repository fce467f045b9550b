import json
from types import SimpleNamespace

import httpx
import pytest
from tenacity import wait_none

from docqa.config import LLMSettings, ProviderSettings
from docqa.generation.prompts import SYSTEM_MESSAGE
from docqa.generation.providers import (
    AnthropicProvider,
    GeminiProvider,
    OpenAIProvider,
    ProviderConfigError,
    ProviderKind,
    create_provider,
)


# --- Fake SDK clients -----------------------------------------------------------

class FakeOpenAIClient:
    def __init__(self, models=None, list_error=None, content="The answer."):
        self._models = models or []
        self._list_error = list_error
        self._content = content
        self.requests = []
        self.models = SimpleNamespace(list=self._list)
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _list(self):
        if self._list_error:
            raise self._list_error
        return SimpleNamespace(data=[SimpleNamespace(id=mid, created=ts) for mid, ts in self._models])

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self._content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=None)

    async def close(self):
        pass


class FakeAnthropicClient:
    def __init__(self, text="Claude says hi."):
        self._text = text
        self.requests = []
        self.models = SimpleNamespace(list=self._list)
        self.messages = SimpleNamespace(create=self._create)

    async def _list(self, limit=20):
        return SimpleNamespace(
            data=[SimpleNamespace(id="claude-sonnet-4-6", display_name="Claude Sonnet 4.6")]
        )

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self._text)])

    async def close(self):
        pass


# --- Construction ---------------------------------------------------------------

def test_missing_api_key_is_a_config_error():
    with pytest.raises(ProviderConfigError):
        OpenAIProvider(api_key="", client=FakeOpenAIClient())
    with pytest.raises(ProviderConfigError):
        GeminiProvider(api_key=None)


async def test_factory_uses_explicit_settings():
    settings = LLMSettings(
        provider=ProviderKind.GEMINI,
        gemini=ProviderSettings(api_key="g-key", model="gemini-1.5-pro"),
    )

    provider = create_provider(settings)
    assert isinstance(provider, GeminiProvider)
    assert provider.model == "gemini-1.5-pro"
    await provider.aclose()

    override = create_provider(settings, kind="gemini", model="gemini-1.0-pro")
    assert override.model == "gemini-1.0-pro"
    await override.aclose()


def test_factory_rejects_unknown_or_unconfigured_providers():
    settings = LLMSettings()
    with pytest.raises(ProviderConfigError):
        create_provider(settings, kind="mistral")
    with pytest.raises(ProviderConfigError):
        create_provider(settings, kind=ProviderKind.ANTHROPIC)


# --- OpenAI ---------------------------------------------------------------------

async def test_openai_lists_chat_models_with_flagship_first():
    client = FakeOpenAIClient(
        models=[
            ("gpt-3.5-turbo", 1),
            ("gpt-4o", 2),
            ("gpt-4o-mini", 3),
            ("gpt-3.5-turbo-instruct", 4),
            ("gpt-4-vision-preview", 5),
            ("ft-gpt-3.5-custom", 6),
            ("whisper-1", 7),
        ]
    )
    provider = OpenAIProvider(api_key="sk", client=client)

    models = await provider.list_models()

    assert [m.id for m in models] == ["gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"]
    assert [m.name for m in models] == ["GPT-4o", "GPT-4o mini", "GPT-3.5 Turbo"]
    assert all(m.provider == ProviderKind.OPENAI for m in models)


@pytest.mark.parametrize("client", [
    FakeOpenAIClient(list_error=ConnectionError("offline")),
    FakeOpenAIClient(models=[("whisper-1", 1)]),
])
async def test_openai_listing_falls_back_to_defaults(client):
    models = await OpenAIProvider(api_key="sk", client=client).list_models()
    assert [m.id for m in models] == ["gpt-4o", "gpt-4-turbo", "gpt-3.5-turbo"]


async def test_openai_generation_request():
    client = FakeOpenAIClient(content="It expires in 2027.")
    provider = OpenAIProvider(api_key="sk", model="gpt-4o-mini", client=client)

    answer = await provider.generate_answer("PROMPT")

    assert answer == "It expires in 2027."
    request = client.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["messages"] == [
        {"role": "system", "content": SYSTEM_MESSAGE},
        {"role": "user", "content": "PROMPT"},
    ]
    assert request["temperature"] == 0.3
    assert request["max_tokens"] == 1000


async def test_openai_uses_default_model_when_none_selected():
    client = FakeOpenAIClient()
    await OpenAIProvider(api_key="sk", client=client).generate_answer("p")
    assert client.requests[0]["model"] == "gpt-4o"


async def test_generation_failure_becomes_readable_answer():
    answer = await OpenAIProvider(api_key="sk", client=FakeOpenAIClient(content="")).generate_answer("p")

    assert answer.startswith("I encountered an error while processing your query with OpenAI.")
    assert "Please check your API key and try again. Error details:" in answer


# --- Gemini ---------------------------------------------------------------------

def _gemini(handler) -> GeminiProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiProvider(api_key="g-key", client=client)


async def test_gemini_lists_generate_content_models():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["key"] == "g-key"
        assert request.url.path == "/v1beta/models"
        return httpx.Response(200, json={"models": [
            {"name": "models/gemini-1.5-pro", "displayName": "Gemini 1.5 Pro",
             "supportedGenerationMethods": ["generateContent", "countTokens"]},
            {"name": "models/embedding-001", "displayName": "Embedding",
             "supportedGenerationMethods": ["embedContent"]},
        ]})

    models = await _gemini(handler).list_models()

    assert [(m.id, m.name) for m in models] == [("gemini-1.5-pro", "Gemini 1.5 Pro")]


async def test_gemini_listing_error_falls_back():
    provider = _gemini(lambda request: httpx.Response(403, json={"error": {"message": "bad key"}}))
    models = await provider.list_models()
    assert [m.id for m in models] == ["gemini-1.5-flash", "gemini-1.5-pro", "gemini-1.0-pro"]


async def test_gemini_generation_request_and_parsing():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": [
            {"content": {"parts": [{"text": "Part one. "}, {"text": "Part two."}]}}
        ]})

    provider = _gemini(handler)
    provider.model = "gemini-1.5-pro"
    answer = await provider.generate_answer("PROMPT")

    assert answer == "Part one. Part two."
    assert seen["path"] == "/v1beta/models/gemini-1.5-pro:generateContent"
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "PROMPT"
    assert seen["body"]["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 1000}


async def test_gemini_http_error_is_reported_in_answer():
    provider = _gemini(lambda request: httpx.Response(400, json={"error": {"message": "API key not valid"}}))
    answer = await provider.generate_answer("p")
    assert "Google Gemini" in answer
    assert "API key not valid" in answer


async def test_gemini_retries_transport_errors(monkeypatch):
    monkeypatch.setattr(GeminiProvider._request.retry, "wait", wait_none())
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

    assert await _gemini(handler).generate_answer("p") == "ok"
    assert len(attempts) == 3


# --- Anthropic ------------------------------------------------------------------

async def test_anthropic_generation_passes_system_prompt():
    client = FakeAnthropicClient()
    provider = AnthropicProvider(api_key="a-key", model="claude-sonnet-4-6", client=client)

    assert await provider.generate_answer("PROMPT") == "Claude says hi."
    assert client.requests[0]["system"] == SYSTEM_MESSAGE
    assert client.requests[0]["messages"] == [{"role": "user", "content": "PROMPT"}]

    models = await provider.list_models()
    assert [m.name for m in models] == ["Claude Sonnet 4.6"]
