from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from app.models.wine import LineItem, ResearchedItem
from app.services.prompts import RESEARCH_SYSTEM_PROMPT, build_research_prompt
from app.services.providers import ProviderClient

logger = logging.getLogger(__name__)

BATCH_SIZE = 10

# Derived at extraction time; the research reply never owns these.
_DERIVED_FIELDS = ("final_price", "price_source", "conversion_note")


def _is_missing(val: object) -> bool:
    if val is None:
        return True
    if isinstance(val, str) and val.strip().lower() in {"", "-", "n/a", "na", "null"}:
        return True
    return False


def merge_research(item: LineItem, reply: Optional[dict[str, Any]]) -> ResearchedItem:
    """Combine one research reply entry with the LineItem it describes.

    Research data wins; name, menu pricing and any attribute the menu already
    showed are backstopped from the LineItem where the reply leaves them missing.
    """

    if not isinstance(reply, dict):
        return ResearchedItem.from_line_item(item)

    backstop: dict[str, Any] = item.model_dump(include=set(LineItem.model_fields))
    backstop["menu_price"] = item.final_price
    backstop["menu_price_note"] = item.conversion_note

    data = dict(reply)
    for key, value in backstop.items():
        if key in _DERIVED_FIELDS:
            data[key] = value
        elif _is_missing(data.get(key)):
            data[key] = value

    try:
        return ResearchedItem.model_validate(data)
    except ValidationError as exc:
        logger.warning("Discarding unusable research entry for %r: %s", item.name, exc)
        return ResearchedItem.from_line_item(item)


def split_batches(items: Sequence[LineItem], size: int = BATCH_SIZE) -> list[list[LineItem]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchResearcher:
    """Researches line items in fixed-size groups, concurrently, preserving input order."""

    def __init__(self, client: ProviderClient, batch_size: int = BATCH_SIZE) -> None:
        self.client = client
        self.batch_size = batch_size

    async def _research_group(self, index: int, group: list[LineItem]) -> list[Any]:
        reply = await self.client.call(RESEARCH_SYSTEM_PROMPT, build_research_prompt(group))
        if reply.error is not None:
            logger.warning("Research batch %d failed: %s", index + 1, reply.error)
            return []
        wines = reply.data.get("wines")
        if not isinstance(wines, list):
            logger.warning("Research batch %d reply has no wines array", index + 1)
            return []
        if len(wines) != len(group):
            logger.info("Research batch %d length mismatch: got=%d expected=%d", index + 1, len(wines), len(group))
        return wines

    async def research(self, items: Sequence[LineItem]) -> list[ResearchedItem]:
        if not items:
            return []

        groups = split_batches(items, self.batch_size)
        logger.info("Researching %d wines in %d batches", len(items), len(groups))
        results = await asyncio.gather(
            *(self._research_group(i, g) for i, g in enumerate(groups)),
            return_exceptions=True,
        )

        researched: list[ResearchedItem] = []
        succeeded = 0
        for index, (group, result) in enumerate(zip(groups, results)):
            if isinstance(result, BaseException):
                logger.error("Error processing batch %d: %s: %s", index + 1, type(result).__name__, result)
                replies: list[Any] = []
            else:
                replies = result
            if replies:
                succeeded += 1
            # Extra reply entries are ignored; missing ones fall back to the input item.
            for pos, item in enumerate(group):
                researched.append(merge_research(item, replies[pos] if pos < len(replies) else None))

        if not succeeded:
            logger.warning("Research failed, using extracted wines as fallback: %d", len(items))
            return [ResearchedItem.from_line_item(item) for item in items]
        return researched
