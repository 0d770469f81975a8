"""Tests for settings persistence and provider capability flags."""

import json

import pytest
from pydantic import ValidationError

from app.core.config import (
    DEFAULT_MODELS,
    AppConfig,
    ProviderConfig,
    SettingsStore,
    load_settings,
    save_settings,
)


@pytest.fixture(autouse=True)
def _no_env_keys(monkeypatch):
    for name in ("OPENAI_API_KEY", "GEMINI_API_KEY", "XAI_API_KEY", "DEEPSEEK_API_KEY", "WINE_PROVIDER"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_store_is_empty():
    config = load_settings(SettingsStore())
    assert config.selected_provider == "openai"
    assert config.temperature == 0.8
    assert config.debug_enabled is True
    assert config.debug_pretty_mode is True
    assert {pid: cfg.model for pid, cfg in config.providers.items()} == DEFAULT_MODELS
    assert not config.active.has_credential


def test_environment_supplies_missing_credentials(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    config = load_settings(SettingsStore(initial={"selected_provider": "google"}))
    assert config.active.api_key == "from-env"


def test_invalid_values_fall_back_to_defaults():
    store = SettingsStore(
        initial={"selected_provider": "mistral", "temperature": "warm", "debug_enabled": "maybe"}
    )
    config = load_settings(store)
    assert config.selected_provider == "openai"
    assert config.temperature == 0.8
    assert config.debug_enabled is True


def test_save_then_load_round_trip(tmp_path):
    path = tmp_path / "settings" / "wine.json"
    store = SettingsStore(str(path))
    config = load_settings(store).model_copy(
        update={
            "selected_provider": "xai",
            "temperature": 0.2,
            "debug_pretty_mode": False,
            "providers": {
                **load_settings(store).providers,
                "xai": ProviderConfig(provider_id="xai", api_key="x-key", model="grok-2"),
            },
        }
    )
    save_settings(store, config)

    raw = json.loads(path.read_text())
    assert raw["selected_provider"] == "xai"
    assert raw["debug_pretty_mode"] == "false"
    assert all(isinstance(v, str) for v in raw.values())

    reloaded = load_settings(SettingsStore(str(path)))
    assert reloaded == config


def test_unreadable_settings_file_is_ignored(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    assert SettingsStore(str(path)).items() == {}


def test_config_is_immutable():
    config = AppConfig()
    with pytest.raises(ValidationError):
        config.temperature = 0.1


@pytest.mark.parametrize(
    ("provider", "model", "temperature", "vision_model"),
    [
        ("openai", "gpt-4o", True, "gpt-4o"),
        ("openai", "o3-mini", False, "gpt-4o"),
        ("openai", "o4-mini", False, "o4-mini"),
        ("xai", "grok-3", True, "grok-vision-beta"),
        ("deepseek", "deepseek-reasoner", False, "deepseek-vl2"),
        ("deepseek", "janus-pro-7b", True, "janus-pro-7b"),
        ("google", "gemini-2.0-flash-thinking-exp-01-21", False, "gemini-2.0-flash-thinking-exp-01-21"),
    ],
)
def test_capability_flags(provider, model, temperature, vision_model):
    cfg = ProviderConfig(provider_id=provider, api_key="k", model=model)
    assert cfg.supports_temperature is temperature
    assert cfg.vision_model == vision_model

