from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_NULL_TOKENS = {"", "null", "none", "n/a", "na", "-"}


def _coerce_text(val: Any) -> Optional[str]:
    # Models return years and prices as numbers about as often as strings.
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return str(val)
    if isinstance(val, str):
        t = val.strip()
        return None if t.lower() in _NULL_TOKENS else t
    return None


class LineItem(BaseModel):
    """One wine entry as transcribed from the menu image."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    glass_price: Optional[str] = None
    bottle_price: Optional[str] = None

    # Inferred by the model when the menu shows it; never validated.
    wine_type: Optional[str] = None
    producer: Optional[str] = None
    vintage: Optional[str] = None
    region: Optional[str] = None
    style: Optional[str] = None

    # Menu price used for research: bottle price, or estimated from the glass price.
    final_price: Optional[str] = None
    price_source: str = "none"
    conversion_note: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str):
            v = " ".join(v.split())
        return v

    @field_validator(
        "glass_price",
        "bottle_price",
        "wine_type",
        "producer",
        "vintage",
        "region",
        "style",
        "final_price",
        "conversion_note",
        mode="before",
    )
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        return _coerce_text(v)


class Ratings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    vivino: Optional[str] = Field(default=None, description="Crowd score")
    wine_spectator: Optional[str] = Field(default=None, description="Critic score")
    other: Optional[str] = None

    @field_validator("vivino", "wine_spectator", "other", mode="before")
    @classmethod
    def _score(cls, v: Any) -> Optional[str]:
        return _coerce_text(v)


class ResearchedItem(LineItem):
    """A LineItem enriched with retail, rating and tasting data."""

    menu_price: Optional[str] = None
    menu_price_note: Optional[str] = None
    retail_price: Optional[str] = None
    ratings: Optional[Ratings] = None
    tasting_notes: Optional[str] = None
    food_pairing: Optional[str] = None
    sources: list[str] = Field(default_factory=list)
    varietal: Optional[str] = None
    alcohol_content: Optional[str] = None

    @field_validator(
        "menu_price",
        "menu_price_note",
        "retail_price",
        "tasting_notes",
        "food_pairing",
        "varietal",
        "alcohol_content",
        mode="before",
    )
    @classmethod
    def _research_text(cls, v: Any) -> Optional[str]:
        if isinstance(v, list):
            v = ", ".join(str(x) for x in v if x is not None)
        return _coerce_text(v)

    @field_validator("ratings", mode="before")
    @classmethod
    def _ratings(cls, v: Any) -> Any:
        if isinstance(v, (str, int, float)) and not isinstance(v, bool):
            return {"other": v}
        if not isinstance(v, dict):
            return None
        return v

    @field_validator("sources", mode="before")
    @classmethod
    def _sources(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        if isinstance(v, (list, tuple)):
            return [str(s).strip() for s in v if s is not None and str(s).strip()]
        return []

    @property
    def has_research(self) -> bool:
        return bool(self.retail_price or self.ratings or self.tasting_notes or self.producer)

    @classmethod
    def from_line_item(cls, item: LineItem) -> "ResearchedItem":
        """Unresearched record: identity and menu pricing only."""
        return cls(
            **item.model_dump(include=set(LineItem.model_fields)),
            menu_price=item.final_price,
            menu_price_note=item.conversion_note,
        )


class WineList(BaseModel):
    wines: list[ResearchedItem] = Field(default_factory=list)


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "status"]
    content: str
    has_image: bool = False

    @property
    def replayable(self) -> bool:
        return self.role in ("user", "assistant")


class ConversationResponse(BaseModel):
    accepted: bool
    processing: bool
    turns: list[ConversationTurn]
    wineList: Optional[WineList] = None


class MessageRequest(BaseModel):
    text: str


class ProviderSettingsUpdate(BaseModel):
    api_key: Optional[str] = None
    model: Optional[str] = None


class SettingsUpdate(BaseModel):
    selected_provider: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    debug_enabled: Optional[bool] = None
    debug_pretty_mode: Optional[bool] = None
    providers: dict[str, ProviderSettingsUpdate] = Field(default_factory=dict)


class ProviderSettingsView(BaseModel):
    model: str
    has_api_key: bool
    supports_temperature: bool
    supports_vision: bool


class SettingsView(BaseModel):
    selected_provider: str
    temperature: float
    debug_enabled: bool
    debug_pretty_mode: bool
    providers: dict[str, ProviderSettingsView]
