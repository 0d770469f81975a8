from __future__ import annotations

import re
from typing import Any, Optional

from app.models.wine import LineItem

# Prices can be: 12, 12.5, 1,250, $12, €12.50, "USD 48", etc.
PRICE_RE = re.compile(r"(?P<currency>[$€£])?\s*(?P<price>\d[\d,]*(?:\.\d+)?)")

# A glass is roughly a fifth of a 750ml bottle.
GLASSES_PER_BOTTLE = 5


def extract_numeric_price(price: Any) -> Optional[float]:
    if isinstance(price, bool):
        return None
    if isinstance(price, (int, float)):
        return float(price)
    if not isinstance(price, str):
        return None
    m = PRICE_RE.search(price)
    if not m:
        return None
    try:
        return float(m.group("price").replace(",", ""))
    except ValueError:
        return None


def _currency_of(price: str) -> str:
    m = PRICE_RE.search(price)
    return (m.group("currency") if m else None) or "$"


def _format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def price_line_item(item: LineItem) -> LineItem:
    """Derive the menu price used for research.

    The bottle price wins when present; a glass-only price is converted to an
    estimated bottle price.
    """

    if item.bottle_price:
        return item.model_copy(update={"final_price": item.bottle_price, "price_source": "bottle", "conversion_note": None})

    if item.glass_price:
        glass = extract_numeric_price(item.glass_price)
        if glass:
            bottle = glass * GLASSES_PER_BOTTLE
            return item.model_copy(
                update={
                    "final_price": f"{_currency_of(item.glass_price)}{_format_amount(bottle)}",
                    "price_source": "glass_converted",
                    "conversion_note": f"Estimated from glass price ({item.glass_price} × {GLASSES_PER_BOTTLE})",
                }
            )
        return item.model_copy(update={"final_price": item.glass_price, "price_source": "glass", "conversion_note": None})

    return item.model_copy(update={"final_price": None, "price_source": "none", "conversion_note": None})


def calculate_markup(menu_price: Any, retail_price: Any) -> str:
    """Restaurant markup over retail, e.g. '+150%'. 'N/A' when either side is unusable."""

    if not menu_price or not retail_price:
        return "N/A"
    menu = extract_numeric_price(menu_price)
    retail = extract_numeric_price(retail_price)
    if not menu or not retail:
        return "N/A"
    markup = (menu - retail) / retail * 100
    return f"+{markup:.0f}%" if markup > 0 else f"{markup:.0f}%"
