from __future__ import annotations

import inspect
import json
import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, Union

import httpx

from app.core.config import AppConfig
from app.models.wine import ConversationTurn, ResearchedItem, WineList
from app.services.debug_log import DebugLog
from app.services.image import ImagePayload, ImageReadError
from app.services.normalize import normalize_line_items
from app.services.pricing import calculate_markup
from app.services.prompts import EXTRACTION_PROMPT, build_chat_prompts
from app.services.providers import CallError, ProviderClient, get_client
from app.services.research import BatchResearcher

logger = logging.getLogger(__name__)

ImageSource = Union[ImagePayload, Awaitable[ImagePayload]]
ClientFactory = Callable[..., ProviderClient]


class ProcessingState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"


class FailureCause(str, Enum):
    AUTH = "auth"
    FORMAT = "format"
    NETWORK = "network"
    UNKNOWN = "unknown"


_FAILURE_HINTS = {
    FailureCause.AUTH: "Please check your API key and try again.",
    FailureCause.FORMAT: "The AI returned invalid JSON format. This may be a provider compatibility issue.",
    FailureCause.NETWORK: "Network error. Please check your internet connection and try again.",
}


def classify_failure(error: Union[CallError, BaseException]) -> FailureCause:
    text = str(error)
    lowered = text.lower()
    if "API error" in text or "401" in text or "403" in text:
        return FailureCause.AUTH
    if "JSON" in text or "parse" in lowered:
        return FailureCause.FORMAT
    if "network" in lowered or "fetch" in lowered or "connect" in lowered or "timeout" in lowered:
        return FailureCause.NETWORK
    return FailureCause.UNKNOWN


def failure_message(error: Union[CallError, BaseException]) -> str:
    cause = classify_failure(error)
    hint = _FAILURE_HINTS.get(cause, f"Details: {error}")
    return f"Error processing response. {hint}"


def reply_message(data: dict[str, Any]) -> str:
    for key in ("message", "response", "answer", "content"):
        val = data.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return json.dumps(data, indent=2, ensure_ascii=False)


def format_wine_summary(wines: list[ResearchedItem]) -> str:
    if not wines:
        return "No wines found in the image."

    plural = "s" if len(wines) > 1 else ""
    out = f"Found {len(wines)} wine{plural} in the image:\n\n"
    for i, wine in enumerate(wines, start=1):
        out += f"**{i}. {wine.name}**\n"
        if wine.menu_price:
            out += f"   Menu: {wine.menu_price}"
            if wine.menu_price_note:
                out += f" ({wine.menu_price_note})"
            out += "\n"
        if wine.retail_price:
            out += f"   Retail: {wine.retail_price}"
            markup = calculate_markup(wine.menu_price, wine.retail_price)
            if markup != "N/A":
                out += f" (markup {markup})"
            out += "\n"
        out += "\n"

    if any(w.has_research for w in wines):
        out += "**Complete analysis finished!** All detailed information is available in the wine list.\n\n"
        out += "*Ask me questions about these wines - I have full access to ratings, tasting notes, food pairings, and more!*"
    else:
        out += "*Ask me for detailed information about any of these wines!*"
    return out


class ConversationOrchestrator:
    """Runs image and text turns against the active provider, one at a time."""

    def __init__(
        self,
        config: AppConfig,
        *,
        debug_log: Optional[DebugLog] = None,
        client_factory: ClientFactory = get_client,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self.debug_log = debug_log
        self._client_factory = client_factory
        self._http_client = http_client
        self.state = ProcessingState.IDLE
        self.turns: list[ConversationTurn] = []
        self.wine_list: Optional[WineList] = None

    @property
    def processing(self) -> bool:
        return self.state is ProcessingState.PROCESSING

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    def history(self) -> list[ConversationTurn]:
        return [t for t in self.turns if t.replayable]

    def _append(self, role: str, content: str, *, has_image: bool = False) -> None:
        self.turns.append(ConversationTurn(role=role, content=content, has_image=has_image))  # type: ignore[arg-type]

    def _can_start(self) -> bool:
        if self.processing:
            logger.debug("Rejected send: a turn is already in flight")
            return False
        if not self.config.active.has_credential:
            logger.debug("Rejected send: no API key configured for %s", self.config.selected_provider)
            return False
        return True

    @contextmanager
    def _processing(self) -> Iterator[None]:
        self.state = ProcessingState.PROCESSING
        try:
            yield
        finally:
            self.state = ProcessingState.IDLE

    def _client(self) -> ProviderClient:
        return self._client_factory(self.config, debug_log=self.debug_log, http_client=self._http_client)

    def _report_failure(self, error: Union[CallError, BaseException], started: float, **context: Any) -> None:
        if isinstance(error, BaseException):
            logger.exception("AI processing error", exc_info=error)
        if self.debug_log is not None:
            self.debug_log.record(
                "error",
                self.config.selected_provider,
                self.config.active.model,
                {"error": str(error), "duration": (time.monotonic() - started) * 1000, **context},
            )
        self._append("status", failure_message(error))

    async def send_image(self, source: ImageSource) -> bool:
        """Extract, research and summarize a wine list photo. Returns False if the send was rejected."""

        if not self._can_start():
            if inspect.iscoroutine(source):
                source.close()
            return False

        with self._processing():
            started = time.monotonic()
            try:
                image = await source if inspect.isawaitable(source) else source
            except ImageReadError as exc:
                self._append("status", f"Error processing image: {exc}")
                return True
            except Exception as exc:
                self._report_failure(exc, started, hasImage=True)
                return True
            self._append("user", "Uploaded wine image for analysis", has_image=True)
            try:
                await self._image_turn(image, started)
            except Exception as exc:
                self._report_failure(exc, started, hasImage=True)
        return True

    async def _image_turn(self, image: ImagePayload, started: float) -> None:
        provider = self.config.selected_provider
        client = self._client()
        reply = await client.call("", EXTRACTION_PROMPT, image=image)

        wines = reply.data.get("wines") if reply.ok else None
        if not isinstance(wines, list):
            reason = str(reply.error) if reply.error is not None else "reply did not contain a wines list"
            if self.debug_log is not None:
                self.debug_log.record(
                    "error",
                    provider,
                    reply.model,
                    {"error": reason, "hasImage": True, "duration": (time.monotonic() - started) * 1000},
                )
            self._append(
                "status",
                f"Image analysis failed for {provider}: {reason}. "
                "Please try uploading the image again or switch to a provider with reliable vision support.",
            )
            return

        items = normalize_line_items(wines)
        if items:
            self._append("status", f"Found {len(items)} wines! Researching detailed information...")
        researched = await BatchResearcher(client).research(items)
        self.wine_list = WineList(wines=researched)
        self._append("assistant", format_wine_summary(researched))

    async def send_text(self, text: str) -> bool:
        """Answer a follow-up question using the conversation and the current wine list."""

        question = (text or "").strip()
        if not question or not self._can_start():
            return False

        with self._processing():
            started = time.monotonic()
            history = self.history()
            self._append("user", question)
            if self.wine_list is not None and self.wine_list.wines:
                self._append("status", f"Using context from {len(self.wine_list.wines)} wines in the current list")
            try:
                system_prompt, user_prompt = build_chat_prompts(self.wine_list, question)
                reply = await self._client().call(system_prompt, user_prompt, history)
                if reply.error is not None:
                    self._report_failure(reply.error, started, userInput=question, hasImage=False)
                else:
                    self._append("assistant", reply_message(reply.data))
            except Exception as exc:
                self._report_failure(exc, started, userInput=question, hasImage=False)
        return True
