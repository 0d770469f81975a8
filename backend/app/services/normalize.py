from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from app.models.wine import LineItem
from app.services.pricing import price_line_item

logger = logging.getLogger(__name__)


def normalize_line_items(raw_wines: Any) -> list[LineItem]:
    """Turn the extraction reply's `wines` array into priced LineItems.

    Entries without a usable name are dropped; order is kept.
    """

    if not isinstance(raw_wines, list):
        return []

    items: list[LineItem] = []
    for idx, entry in enumerate(raw_wines):
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict):
            logger.debug("Skipping non-object wine entry #%d: %r", idx, entry)
            continue
        try:
            item = LineItem.model_validate(entry)
        except ValidationError as exc:
            logger.debug("Skipping invalid wine entry #%d: %s", idx, exc)
            continue
        if not item.name:
            continue
        items.append(price_line_item(item))
    return items
