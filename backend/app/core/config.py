from __future__ import annotations

import json
import logging
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

PROVIDER_IDS: tuple[str, ...] = ("openai", "google", "xai", "deepseek")

DEFAULT_PROVIDER = "openai"
DEFAULT_TEMPERATURE = 0.8
DEFAULT_TIMEOUT_SECONDS = 120.0

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o",
    "google": "gemini-2.5-flash-preview-05-20",
    "xai": "grok-3",
    "deepseek": "deepseek-vl2",
}

# Environment fallbacks for credentials (used when the settings store has none).
API_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "google": "GEMINI_API_KEY",
    "xai": "XAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

# Reasoning models run at a fixed temperature; matched by substring.
REASONING_MODELS: tuple[str, ...] = (
    "o1",
    "o1-pro",
    "o3",
    "o3-mini",
    "o4-mini",
    "gemini-2.0-flash-thinking-exp-1219",
    "gemini-2.0-flash-thinking-exp-01-21",
    "deepseek-reasoner",
)

# Vision allow-lists; the first entry is the substitute for unlisted models.
# Gemini models all accept images, so google has no list.
VISION_MODELS: dict[str, tuple[str, ...]] = {
    "openai": (
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4-vision-preview",
        "o1",
        "o3",
        "o4-mini",
        "gpt-4.1",
        "gpt-4.1-mini",
        "gpt-4.1-nano",
        "gpt-4.5-preview",
    ),
    "xai": ("grok-vision-beta", "grok-2-vision-1212"),
    "deepseek": ("deepseek-vl2", "deepseek-vl2-small", "janus-pro-7b"),
}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def env_flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in _TRUTHY


def _as_bool(val: Optional[str], default: bool) -> bool:
    if val is None:
        return default
    t = val.strip().lower()
    if t in _TRUTHY:
        return True
    if t in _FALSY:
        return False
    return default


def _as_float(val: Optional[str], default: float) -> float:
    try:
        return float((val or "").strip())
    except ValueError:
        return default


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str
    api_key: str = ""
    model: str

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key.strip())

    @property
    def supports_temperature(self) -> bool:
        return not any(rm in self.model for rm in REASONING_MODELS)

    @property
    def supports_vision(self) -> bool:
        allowed = VISION_MODELS.get(self.provider_id)
        return allowed is None or self.model in allowed

    @property
    def vision_model(self) -> str:
        """Model used for image turns: the selected one if it can see, else a known-good one."""
        if self.supports_vision:
            return self.model
        return VISION_MODELS[self.provider_id][0]


class AppConfig(BaseModel):
    """Immutable snapshot of the persisted settings, assembled once per save."""

    model_config = ConfigDict(frozen=True)

    selected_provider: str = DEFAULT_PROVIDER
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    temperature: float = DEFAULT_TEMPERATURE
    debug_enabled: bool = True
    debug_pretty_mode: bool = True
    request_timeout: float = DEFAULT_TIMEOUT_SECONDS

    def provider(self, provider_id: Optional[str] = None) -> ProviderConfig:
        pid = provider_id or self.selected_provider
        cfg = self.providers.get(pid)
        if cfg is None:
            return ProviderConfig(provider_id=pid, model=DEFAULT_MODELS.get(pid, ""))
        return cfg

    @property
    def active(self) -> ProviderConfig:
        return self.provider()


class SettingsStore:
    """String-valued key-value store for user settings.

    Backed by a JSON file when a path is given, otherwise in memory only.
    """

    def __init__(self, path: Optional[str] = None, initial: Optional[dict[str, str]] = None) -> None:
        self.path = os.path.abspath(path) if path else None
        self._data: dict[str, str] = {}
        if self.path and os.path.exists(self.path):
            self._data = self._read_file(self.path)
        if initial:
            self._data.update({k: str(v) for k, v in initial.items()})

    @staticmethod
    def _read_file(path: str) -> dict[str, str]:
        try:
            with open(path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items() if v is not None}

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def items(self) -> dict[str, str]:
        return dict(self._data)

    def flush(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, ensure_ascii=False)


def load_settings(store: SettingsStore) -> AppConfig:
    """Assemble an AppConfig from the store, falling back to environment variables and defaults."""

    providers: dict[str, ProviderConfig] = {}
    for pid in PROVIDER_IDS:
        api_key = store.get(f"{pid}_api_key") or os.getenv(API_KEY_ENV[pid], "")
        model = (store.get(f"{pid}_model") or "").strip() or DEFAULT_MODELS[pid]
        providers[pid] = ProviderConfig(provider_id=pid, api_key=api_key.strip(), model=model)

    selected = (store.get("selected_provider") or os.getenv("WINE_PROVIDER", "") or DEFAULT_PROVIDER).strip().lower()
    if selected not in PROVIDER_IDS:
        logger.warning("Unknown provider %r in settings; using %s", selected, DEFAULT_PROVIDER)
        selected = DEFAULT_PROVIDER

    return AppConfig(
        selected_provider=selected,
        providers=providers,
        temperature=_as_float(store.get("temperature"), DEFAULT_TEMPERATURE),
        debug_enabled=_as_bool(store.get("debug_enabled"), True),
        debug_pretty_mode=_as_bool(store.get("debug_pretty_mode"), True),
        request_timeout=_as_float(os.getenv("PROVIDER_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS),
    )


def save_settings(store: SettingsStore, config: AppConfig) -> None:
    store.set("selected_provider", config.selected_provider)
    for pid in PROVIDER_IDS:
        cfg = config.provider(pid)
        store.set(f"{pid}_api_key", cfg.api_key)
        store.set(f"{pid}_model", cfg.model)
    store.set("temperature", str(config.temperature))
    store.set("debug_enabled", "true" if config.debug_enabled else "false")
    store.set("debug_pretty_mode", "true" if config.debug_pretty_mode else "false")
    store.flush()
