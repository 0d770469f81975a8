"""Shared fakes for provider-facing tests."""

import re
from typing import Any, Awaitable, Callable, Optional

import pytest

from app.core.config import AppConfig, SettingsStore, load_settings
from app.models.wine import LineItem
from app.services.providers import CallError, ParsedReply

Handler = Callable[[str, str, list, Any], Awaitable[ParsedReply]]

NUMBERED_LINE_RE = re.compile(r"^\d+\. (Wine \d+)\b", re.MULTILINE)


def ok_reply(data: dict[str, Any], model: str = "fake-model") -> ParsedReply:
    return ParsedReply(provider="fake", model=model, data=data)


def error_reply(message: str = "API error: 401 - bad key", status: Optional[int] = 401) -> ParsedReply:
    return ParsedReply(
        provider="fake",
        model="fake-model",
        error=CallError("transport", message, status_code=status, body="bad key"),
    )


def prompt_names(prompt: str) -> list[str]:
    """Wine names listed by position in a research prompt."""
    return NUMBERED_LINE_RE.findall(prompt)


class FakeClient:
    """Stands in for a ProviderClient; records every call."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: list[dict[str, Any]] = []

    async def call(self, system_prompt, user_prompt, history=(), image=None) -> ParsedReply:
        self.calls.append(
            {"system": system_prompt, "user": user_prompt, "history": list(history), "image": image}
        )
        return await self.handler(system_prompt, user_prompt, list(history), image)


@pytest.fixture
def config() -> AppConfig:
    store = SettingsStore(initial={"selected_provider": "openai", "openai_api_key": "sk-test"})
    return load_settings(store)


@pytest.fixture
def line_items() -> list[LineItem]:
    return [
        LineItem(name=f"Wine {i:02d}", bottle_price=f"${40 + i}", final_price=f"${40 + i}", price_source="bottle")
        for i in range(23)
    ]
