"""Uniform call contract over the four remote model providers.

Every provider is a `ProviderClient` that knows how to build its request body,
where to send it and how to unwrap the reply envelope. `call` never raises for
transport or format problems: the outcome is a `ParsedReply` whose `error`
field tells the caller what went wrong.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import google.generativeai as genai
import httpx
from google.api_core import exceptions as google_exceptions

from app.core.config import DEFAULT_TEMPERATURE, DEFAULT_TIMEOUT_SECONDS, AppConfig, ProviderConfig
from app.models.wine import ConversationTurn
from app.services.debug_log import DebugLog
from app.services.image import ImagePayload
from app.services.repair import repair

logger = logging.getLogger(__name__)

GOOGLE_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class TransportError(Exception):
    """The provider could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ReplyFormatError(Exception):
    """The provider answered, but not with anything we can use."""

    def __init__(self, message: str, raw_text: Any = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


@dataclass(frozen=True)
class CallError:
    kind: str  # "transport" | "format"
    message: str
    status_code: Optional[int] = None
    body: Optional[str] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ParsedReply:
    provider: str
    model: str
    data: dict[str, Any] = field(default_factory=dict)
    text: str = ""
    error: Optional[CallError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _size(obj: Any) -> int:
    try:
        return len(json.dumps(obj, default=str))
    except (TypeError, ValueError):
        return len(str(obj))


def _as_reply_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    # A bare array is the wines list without its wrapper.
    if isinstance(value, list):
        return {"wines": value}
    return {"message": "" if value is None else str(value)}


class ProviderClient:
    provider_id: str = ""
    max_tokens: int = 8192
    # Providers that reject a temperature field on reasoning models; others get a neutral 1.0.
    omit_fixed_temperature: bool = False

    def __init__(
        self,
        config: ProviderConfig,
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        debug_log: Optional[DebugLog] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.config = config
        self.temperature = temperature
        self.debug_log = debug_log
        self.timeout = timeout
        self._http = http_client

    def model_for(self, image: Optional[ImagePayload]) -> str:
        return self.config.vision_model if image is not None else self.config.model

    def temperature_for(self) -> Optional[float]:
        if self.config.supports_temperature:
            return self.temperature
        return None if self.omit_fixed_temperature else 1.0

    def endpoint(self, model: str) -> str:
        raise NotImplementedError

    def build_body(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        history: Sequence[ConversationTurn],
        image: Optional[ImagePayload],
    ) -> dict[str, Any]:
        raise NotImplementedError

    async def transmit(self, model: str, url: str, body: dict[str, Any]) -> tuple[int, Any]:
        raise NotImplementedError

    def extract_text(self, envelope: Any) -> str:
        raise NotImplementedError

    def _record(self, kind: str, model: str, payload: dict[str, Any]) -> None:
        if self.debug_log is not None:
            self.debug_log.record(kind, self.provider_id, model, payload)  # type: ignore[arg-type]

    def _fail(self, model: str, error: CallError, base: dict[str, Any], started: float, text: str = "") -> ParsedReply:
        logger.warning("%s call failed (%s): %s", self.provider_id, error.kind, error.message)
        self._record(
            "error",
            model,
            {
                **base,
                "error": error.message,
                "status": error.status_code,
                "responseBody": error.body,
                "duration": (time.monotonic() - started) * 1000,
            },
        )
        return ParsedReply(provider=self.provider_id, model=model, text=text, error=error)

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        history: Sequence[ConversationTurn] = (),
        image: Optional[ImagePayload] = None,
    ) -> ParsedReply:
        model = self.model_for(image)
        url = self.endpoint(model)
        body = self.build_body(model, system_prompt, user_prompt, list(history), image)
        base = {
            "requestId": f"{self.provider_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:5]}",
            "url": url,
            "method": "POST",
            "requestBodySize": _size(body),
        }
        logger.debug("%s request %s model=%s", self.provider_id, base["requestId"], model)
        self._record("request", model, {**base, "requestBody": body})
        started = time.monotonic()

        try:
            status, envelope = await self.transmit(model, url, body)
            text = self.extract_text(envelope)
        except TransportError as exc:
            return self._fail(model, CallError("transport", str(exc), exc.status_code, exc.body), base, started)
        except httpx.HTTPError as exc:
            message = f"Network error: {exc.__class__.__name__}: {exc}"
            return self._fail(model, CallError("transport", message), base, started)
        except ReplyFormatError as exc:
            raw = exc.raw_text if isinstance(exc.raw_text, str) else None
            return self._fail(model, CallError("format", str(exc), body=raw), base, started)

        result = repair(text)
        if result.failure is not None:
            failure = result.failure
            error = CallError("format", f"JSON parse failed: {failure.original_error or failure.error}", body=text)
            reply = self._fail(model, error, base, started, text=text)
            reply.data = failure.as_dict()
            return reply

        data = _as_reply_dict(result.value)
        duration = (time.monotonic() - started) * 1000
        logger.debug("%s response %s in %.0fms", self.provider_id, base["requestId"], duration)
        self._record(
            "response",
            model,
            {
                **base,
                "status": status,
                "responseBody": envelope,
                "parsedResponse": data,
                "duration": duration,
                "responseBodySize": _size(envelope),
            },
        )
        return ParsedReply(provider=self.provider_id, model=model, data=data, text=text)


class ChatCompletionsClient(ProviderClient):
    """Providers speaking the OpenAI chat-completions shape."""

    url: str = ""

    def endpoint(self, model: str) -> str:
        return self.url

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def build_body(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        history: Sequence[ConversationTurn],
        image: Optional[ImagePayload],
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend({"role": t.role, "content": t.content} for t in history if t.replayable)

        if image is not None:
            content: Any = [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": image.data_url}},
            ]
        else:
            content = user_prompt
        messages.append({"role": "user", "content": content})

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "response_format": {"type": "json_object"},
            "max_tokens": self.max_tokens,
        }
        temperature = self.temperature_for()
        if temperature is not None:
            body["temperature"] = temperature
        return body

    async def transmit(self, model: str, url: str, body: dict[str, Any]) -> tuple[int, Any]:
        if self._http is not None:
            resp = await self._http.post(url, headers=self.headers(), json=body)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, headers=self.headers(), json=body)

        if not resp.is_success:
            raise TransportError(f"API error: {resp.status_code} - {resp.text}", resp.status_code, resp.text)
        try:
            return resp.status_code, resp.json()
        except ValueError as exc:
            raise ReplyFormatError(f"Response body is not JSON: {exc}", resp.text) from exc

    def extract_text(self, envelope: Any) -> str:
        try:
            content = envelope["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ReplyFormatError(f"Unexpected response envelope (missing {exc})", json.dumps(envelope, default=str)) from exc
        if isinstance(content, list):
            return "".join(p.get("text", "") for p in content if isinstance(p, dict)).strip()
        return (content or "").strip()


class OpenAIClient(ChatCompletionsClient):
    provider_id = "openai"
    url = "https://api.openai.com/v1/chat/completions"
    max_tokens = 16384
    omit_fixed_temperature = True


class XAIClient(ChatCompletionsClient):
    provider_id = "xai"
    url = "https://api.x.ai/v1/chat/completions"
    max_tokens = 131072


class DeepSeekClient(ChatCompletionsClient):
    provider_id = "deepseek"
    url = "https://api.deepseek.com/v1/chat/completions"
    max_tokens = 8192


def _response_text(resp: object) -> str:
    """Best-effort extraction of full text from google-generativeai responses.

    `.text` raises on blocked or multi-part responses, so fall back to the
    candidate parts.
    """

    try:
        t = getattr(resp, "text", None)
        if isinstance(t, str) and t.strip():
            return t.strip()
    except ValueError:
        pass

    chunks: list[str] = []
    for cand in getattr(resp, "candidates", None) or []:
        content = getattr(cand, "content", None)
        for p in getattr(content, "parts", None) or []:
            pt = getattr(p, "text", None)
            if isinstance(pt, str) and pt:
                chunks.append(pt)
    return "".join(chunks).strip()


class GoogleClient(ProviderClient):
    """Gemini via the google-generativeai SDK. Takes one concatenated prompt, not a message list."""

    provider_id = "google"
    max_tokens = 8192

    def endpoint(self, model: str) -> str:
        # Credential is configured on the SDK, never placed in the logged URL.
        return f"{GOOGLE_API_BASE}/models/{model}:generateContent"

    @staticmethod
    def flatten_prompt(system_prompt: str, user_prompt: str, history: Sequence[ConversationTurn]) -> str:
        prompt = f"{system_prompt}\n\n" if system_prompt else ""
        replay = [t for t in history if t.replayable]
        if replay:
            prompt += "Previous conversation:\n"
            for t in replay:
                speaker = "User" if t.role == "user" else "Assistant"
                prompt += f"{speaker}: {t.content}\n"
            prompt += "\n"
            return prompt + f"Current request: {user_prompt}"
        if system_prompt:
            return prompt + f"User request: {user_prompt}"
        return user_prompt

    def build_body(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        history: Sequence[ConversationTurn],
        image: Optional[ImagePayload],
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": self.flatten_prompt(system_prompt, user_prompt, history)}]
        if image is not None:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.raw_bytes()}})
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generation_config": {
                "temperature": self.temperature_for(),
                "response_mime_type": "application/json",
                "max_output_tokens": self.max_tokens,
            },
        }

    async def transmit(self, model: str, url: str, body: dict[str, Any]) -> tuple[int, Any]:
        genai.configure(api_key=self.config.api_key)
        gm = genai.GenerativeModel(model, generation_config=body["generation_config"])
        try:
            resp = await gm.generate_content_async(body["contents"], request_options={"timeout": self.timeout})
        except google_exceptions.GoogleAPICallError as exc:
            status = exc.code if isinstance(exc.code, int) else None
            raise TransportError(f"API error: {status} - {exc.message}", status, exc.message) from exc
        except google_exceptions.GoogleAPIError as exc:
            raise TransportError(f"Network error: {exc}") from exc
        return 200, resp

    def extract_text(self, envelope: Any) -> str:
        return _response_text(envelope)


PROVIDERS: dict[str, type[ProviderClient]] = {
    "openai": OpenAIClient,
    "google": GoogleClient,
    "xai": XAIClient,
    "deepseek": DeepSeekClient,
}


def get_client(
    config: AppConfig,
    provider_id: Optional[str] = None,
    *,
    debug_log: Optional[DebugLog] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ProviderClient:
    pid = provider_id or config.selected_provider
    cls = PROVIDERS.get(pid)
    if cls is None:
        msg = f"Unknown provider: {pid}"
        raise ValueError(msg)
    return cls(
        config.provider(pid),
        temperature=config.temperature,
        debug_log=debug_log,
        http_client=http_client,
        timeout=config.request_timeout,
    )
