"""Tests for the provider adapters: request shapes, envelopes and error reporting."""

import asyncio
import json

import httpx
import pytest
from google.api_core import exceptions as google_exceptions

from app.core.config import AppConfig, ProviderConfig, SettingsStore, load_settings
from app.models.wine import ConversationTurn
from app.services import providers
from app.services.debug_log import DebugLog
from app.services.image import ImagePayload
from app.services.providers import (
    PROVIDERS,
    DeepSeekClient,
    GoogleClient,
    OpenAIClient,
    XAIClient,
    get_client,
)

IMAGE = ImagePayload.from_bytes(b"\x89PNG fake", "image/png")


def _chat_envelope(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _run(coro):
    return asyncio.run(coro)


class _Recorder:
    def __init__(self, status: int = 200, payload=None, text: str = "") -> None:
        self.status = status
        self.payload = payload
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.payload is not None:
            return httpx.Response(self.status, json=self.payload)
        return httpx.Response(self.status, text=self.text)

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


def _client(cls, model: str, recorder, debug_log=None, temperature: float = 0.8):
    cfg = ProviderConfig(provider_id=cls.provider_id, api_key="secret-key", model=model)
    return cls(cfg, temperature=temperature, debug_log=debug_log, http_client=_mock_http(recorder))


# ---------------------------------------------------------------------------
# Chat-completions providers
# ---------------------------------------------------------------------------


def test_openai_text_call_builds_message_list_with_history():
    rec = _Recorder(payload=_chat_envelope('{"message": "Try the Barolo"}'))
    client = _client(OpenAIClient, "gpt-4o", rec)
    history = [
        ConversationTurn(role="user", content="hi"),
        ConversationTurn(role="status", content="Using context from 3 wines"),
        ConversationTurn(role="assistant", content="hello"),
    ]

    reply = _run(client.call("system prompt", "which red?", history))

    assert reply.ok
    assert reply.data == {"message": "Try the Barolo"}
    request = rec.requests[0]
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret-key"
    body = rec.body
    assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]
    assert body["messages"][-1]["content"] == "which red?"
    assert body["temperature"] == 0.8
    assert body["max_tokens"] == 16384
    assert body["response_format"] == {"type": "json_object"}


def test_openai_reasoning_model_omits_temperature():
    rec = _Recorder(payload=_chat_envelope("{}"))
    _run(_client(OpenAIClient, "o3-mini", rec).call("s", "u"))
    assert "temperature" not in rec.body


@pytest.mark.parametrize("cls", [XAIClient, DeepSeekClient])
def test_other_providers_send_neutral_temperature_for_reasoning_models(cls):
    rec = _Recorder(payload=_chat_envelope("{}"))
    _run(_client(cls, "deepseek-reasoner", rec, temperature=0.3).call("s", "u"))
    assert rec.body["temperature"] == 1.0


def test_vision_call_adds_image_part_and_substitutes_model():
    rec = _Recorder(payload=_chat_envelope('{"wines": []}'))
    reply = _run(_client(XAIClient, "grok-3", rec).call("", "extract", image=IMAGE))

    assert reply.model == "grok-vision-beta"
    body = rec.body
    assert body["model"] == "grok-vision-beta"
    assert len(body["messages"]) == 1
    parts = body["messages"][0]["content"]
    assert parts[0] == {"type": "text", "text": "extract"}
    assert parts[1]["image_url"]["url"] == IMAGE.data_url


def test_vision_call_keeps_allow_listed_model():
    rec = _Recorder(payload=_chat_envelope('{"wines": []}'))
    _run(_client(OpenAIClient, "gpt-4.1-mini", rec).call("", "extract", image=IMAGE))
    assert rec.body["model"] == "gpt-4.1-mini"


def test_non_success_status_becomes_transport_error():
    rec = _Recorder(status=401, text='{"error": "invalid api key"}')
    log = DebugLog()
    reply = _run(_client(DeepSeekClient, "deepseek-chat", rec, debug_log=log).call("s", "u"))

    assert not reply.ok
    assert reply.error.kind == "transport"
    assert reply.error.status_code == 401
    assert reply.error.body == '{"error": "invalid api key"}'
    assert str(reply.error).startswith("API error: 401")
    assert [e["type"] for e in log.entries] == ["error", "request"]


def test_network_failure_becomes_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    cfg = ProviderConfig(provider_id="openai", api_key="k", model="gpt-4o")
    client = OpenAIClient(cfg, http_client=_mock_http(handler))
    reply = _run(client.call("s", "u"))

    assert reply.error.kind == "transport"
    assert reply.error.status_code is None
    assert "Network error" in reply.error.message


def test_malformed_content_is_repaired():
    rec = _Recorder(payload=_chat_envelope('Here you go: {"wines": [{"name": "Gavi"}]} enjoy'))
    reply = _run(_client(OpenAIClient, "gpt-4o", rec).call("s", "u"))
    assert reply.ok
    assert reply.data == {"wines": [{"name": "Gavi"}]}


def test_unrepairable_content_is_format_error_with_raw_text():
    rec = _Recorder(payload=_chat_envelope("I am sorry, I cannot help with that."))
    reply = _run(_client(OpenAIClient, "gpt-4o", rec).call("s", "u"))

    assert reply.error.kind == "format"
    assert "JSON" in reply.error.message
    assert reply.data["rawResponse"] == "I am sorry, I cannot help with that."


def test_unexpected_envelope_is_format_error():
    rec = _Recorder(payload={"object": "error"})
    reply = _run(_client(XAIClient, "grok-3", rec).call("s", "u"))
    assert reply.error.kind == "format"


def test_bare_array_reply_is_wrapped_as_wines():
    rec = _Recorder(payload=_chat_envelope('[{"name": "Soave"}]'))
    reply = _run(_client(OpenAIClient, "gpt-4o", rec).call("s", "u"))
    assert reply.data == {"wines": [{"name": "Soave"}]}


def test_successful_call_records_request_and_response():
    rec = _Recorder(payload=_chat_envelope('{"message": "ok"}'))
    log = DebugLog()
    _run(_client(OpenAIClient, "gpt-4o", rec, debug_log=log).call("s", "u", image=IMAGE))

    response, request = log.entries
    assert request["type"] == "request"
    assert response["type"] == "response"
    assert response["provider"] == "openai"
    assert response["model"] == "gpt-4o"
    assert response["requestId"] == request["requestId"]
    assert response["requestBodySize"] > 0
    assert response["responseBodySize"] > 0
    assert "secret-key" not in json.dumps(log.entries)


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


class _FakeGeminiResponse:
    def __init__(self, text: str) -> None:
        self.text = text
        self.candidates = []


class _FakeGenerativeModel:
    instances: list["_FakeGenerativeModel"] = []
    reply: object = _FakeGeminiResponse('{"message": "Pair it with lamb"}')

    def __init__(self, model_name, generation_config=None):
        self.model_name = model_name
        self.generation_config = generation_config
        self.contents = None
        _FakeGenerativeModel.instances.append(self)

    async def generate_content_async(self, contents, request_options=None):
        self.contents = contents
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


@pytest.fixture
def fake_gemini(monkeypatch):
    _FakeGenerativeModel.instances = []
    _FakeGenerativeModel.reply = _FakeGeminiResponse('{"message": "Pair it with lamb"}')
    monkeypatch.setattr(providers.genai, "GenerativeModel", _FakeGenerativeModel)
    monkeypatch.setattr(providers.genai, "configure", lambda **kwargs: None)
    return _FakeGenerativeModel


def test_google_concatenates_history_into_single_prompt(fake_gemini):
    cfg = ProviderConfig(provider_id="google", api_key="g-key", model="gemini-1.5-flash")
    history = [ConversationTurn(role="user", content="hi"), ConversationTurn(role="assistant", content="hello")]
    reply = _run(GoogleClient(cfg).call("You are a sommelier.", "what with lamb?", history))

    assert reply.data == {"message": "Pair it with lamb"}
    model = fake_gemini.instances[0]
    text = model.contents[0]["parts"][0]["text"]
    assert text.startswith("You are a sommelier.\n\nPrevious conversation:\nUser: hi\nAssistant: hello\n")
    assert text.endswith("Current request: what with lamb?")
    assert model.generation_config["response_mime_type"] == "application/json"
    assert model.generation_config["temperature"] == 0.8


def test_google_vision_sends_inline_image(fake_gemini):
    cfg = ProviderConfig(provider_id="google", api_key="g-key", model="gemini-1.5-flash")
    _run(GoogleClient(cfg).call("", "extract", image=IMAGE))

    model = fake_gemini.instances[0]
    assert model.model_name == "gemini-1.5-flash"
    parts = model.contents[0]["parts"]
    assert parts[0] == {"text": "extract"}
    assert parts[1]["inline_data"] == {"mime_type": "image/png", "data": b"\x89PNG fake"}


def test_google_api_error_becomes_transport_error(fake_gemini):
    fake_gemini.reply = google_exceptions.PermissionDenied("API key not valid")
    cfg = ProviderConfig(provider_id="google", api_key="bad", model="gemini-1.5-flash")
    reply = _run(GoogleClient(cfg).call("s", "u"))

    assert reply.error.kind == "transport"
    assert reply.error.status_code == 403


def test_google_endpoint_never_contains_credential():
    cfg = ProviderConfig(provider_id="google", api_key="g-key", model="gemini-1.5-flash")
    assert "g-key" not in GoogleClient(cfg).endpoint("gemini-1.5-flash")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_registry_covers_all_providers():
    assert set(PROVIDERS) == {"openai", "google", "xai", "deepseek"}


def test_get_client_uses_selected_provider_config():
    store = SettingsStore(initial={"selected_provider": "xai", "xai_api_key": "x-key", "temperature": "0.4"})
    config = load_settings(store)
    client = get_client(config)
    assert isinstance(client, XAIClient)
    assert client.config.api_key == "x-key"
    assert client.temperature == 0.4


def test_get_client_rejects_unknown_provider():
    with pytest.raises(ValueError, match="Unknown provider"):
        get_client(AppConfig(), "mistral")
