from __future__ import annotations

import json
from typing import Optional, Sequence

from app.models.wine import LineItem, WineList

EXTRACTION_PROMPT = """FAST TEXT EXTRACTION: List each wine line from the image as simple JSON.
Don't research or embellish - transcribe what you see.

For each wine line, return:
{"name": "wine text", "glass_price": "$XX", "bottle_price": "$XX", "wine_type": "red/white/rose/sparkling/dessert or null", "producer": "if shown or null", "vintage": "if shown or null", "region": "if shown or null", "style": "if shown or null"}

Rules:
- ONE wine per line
- Capture glass price AND bottle price separately if visible
- Use null if a price type or attribute isn't shown
- NO web search, NO added info

Return JSON:
{
  "wines": [
    {"name": "full wine text as shown", "glass_price": "$12", "bottle_price": "$48"}
  ]
}"""

RESEARCH_SYSTEM_PROMPT = (
    "You are a wine research expert. Use current, accurate wine information from reputable sources "
    "like Vivino, Wine-Searcher, Wine.com, and Wine Spectator. Include both the menu pricing "
    "information provided and the retail pricing you research. Respond with JSON only."
)

RESEARCH_PROMPT_TEMPLATE = """Research detailed information for these wines. For each wine in the exact same order, provide complete details including both menu and retail pricing.

Wine List with Menu Pricing:
{wine_list}

For each wine in the EXACT SAME ORDER, research and return:
1. **Current U.S. retail price** - Check Wine-Searcher, Wine.com, Total Wine
2. **Ratings** - Vivino crowd ratings, Wine Spectator scores, other critic reviews
3. **Tasting notes** - Flavor profile from Vivino, winery notes
4. **Food pairing** - Recommended dishes and cuisines
5. **Wine details** - Producer, vintage, region, varietal, style

IMPORTANT: Return exactly {count} wines in the EXACT same order as the input list. Include the menu pricing information provided.

Return valid JSON with one wine object for each input wine:
{{
  "wines": [
    {{
      "name": "exact wine name from list",
      "menu_price": "menu price from input if available",
      "menu_price_note": "note about glass conversion if applicable",
      "retail_price": "$XX average retail",
      "ratings": {{
        "vivino": "X.X/5 (XXX reviews)",
        "wine_spectator": "XX points",
        "other": "additional scores"
      }},
      "tasting_notes": "flavor profile summary",
      "food_pairing": "recommended pairings",
      "sources": ["source1", "source2"],
      "producer": "winery name",
      "vintage": "year",
      "region": "wine region",
      "varietal": "grape varieties",
      "alcohol_content": "XX%",
      "style": "wine style description"
    }}
  ]
}}"""

CHAT_SYSTEM_PROMPT = (
    "You are a wine expert assistant. Help the user with their wine-related questions. "
    'Respond with a JSON object of the form {"message": "your answer"}.'
)

CONTEXT_HEADER = (
    "Current wine list context (includes menu prices, retail prices, ratings, tasting notes, "
    "food pairings, producer, vintage, region, varietal, and sources):"
)


def research_entry(position: int, item: LineItem) -> str:
    entry = f"{position}. {item.name}"
    if item.final_price:
        entry += f" (Menu: {item.final_price}"
        if item.conversion_note:
            entry += f" - {item.conversion_note}"
        entry += ")"
    return entry


def build_research_prompt(items: Sequence[LineItem]) -> str:
    wine_list = "\n".join(research_entry(i, item) for i, item in enumerate(items, start=1))
    return RESEARCH_PROMPT_TEMPLATE.format(wine_list=wine_list, count=len(items))


def build_chat_prompts(wine_list: Optional[WineList], question: str) -> tuple[str, str]:
    """System and user prompt for a follow-up question, with the wine list injected when present."""

    system_prompt = CHAT_SYSTEM_PROMPT
    user_prompt = question.strip() or "Hello"
    if wine_list is not None and wine_list.wines:
        context = json.dumps(wine_list.model_dump(exclude_none=True), indent=2, ensure_ascii=False)
        system_prompt += f"\n\n{CONTEXT_HEADER}\n{context}"
        user_prompt = f"Based on the detailed wine information provided in the system context, {user_prompt}"
    return system_prompt, user_prompt
