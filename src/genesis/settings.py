import logging
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from genesis.storage import KEY_API_KEY, KEY_SETTINGS, KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.4
DEFAULT_MAX_TOKENS = 512
MIN_MAX_TOKENS = 64
MAX_MAX_TOKENS = 2048


def _as_float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(result) else result


def _as_int(value: Any, default: int) -> int:
    try:
        return int(_as_float(value, float(default)))
    except (OverflowError, ValueError):
        return default


class Settings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_key: str = ""
    temperature: float = Field(default=DEFAULT_TEMPERATURE)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS)

    @field_validator("api_key", mode="before")
    @classmethod
    def _strip_key(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("temperature", mode="before")
    @classmethod
    def _clamp_temperature(cls, value: Any) -> float:
        return min(1.0, max(0.0, _as_float(value, DEFAULT_TEMPERATURE)))

    @field_validator("max_tokens", mode="before")
    @classmethod
    def _clamp_max_tokens(cls, value: Any) -> int:
        return min(MAX_MAX_TOKENS, max(MIN_MAX_TOKENS, _as_int(value, DEFAULT_MAX_TOKENS)))

    def masked_key(self) -> str:
        if not self.api_key:
            return "(not set)"
        if len(self.api_key) <= 8:
            return "*" * len(self.api_key)
        return f"{self.api_key[:4]}...{self.api_key[-4:]}"


class SettingsStore:
    """Credential and generation settings, persisted under separate keys."""

    def __init__(self, kv: KeyValueStore, fallback_api_key: str = ""):
        self.kv = kv
        self.fallback_api_key = fallback_api_key

    def load(self) -> Settings:
        stored = self.kv.get_json(KEY_SETTINGS, {})
        if not isinstance(stored, dict):
            logger.debug("Stored generation settings are malformed, using defaults")
            stored = {}
        api_key = self.kv.get_string(KEY_API_KEY, "") or self.fallback_api_key
        return Settings(
            api_key=api_key,
            temperature=stored.get("temperature", DEFAULT_TEMPERATURE),
            max_tokens=stored.get("maxTokens", DEFAULT_MAX_TOKENS),
        )

    def save(self, settings: Settings) -> Settings:
        settings = Settings.model_validate(settings.model_dump())
        if settings.api_key:
            self.kv.set_string(KEY_API_KEY, settings.api_key)
        else:
            self.kv.remove(KEY_API_KEY)
        self.kv.set_json(
            KEY_SETTINGS,
            {"temperature": settings.temperature, "maxTokens": settings.max_tokens},
        )
        logger.info(
            f"Settings saved (temperature={settings.temperature}, max_tokens={settings.max_tokens})"
        )
        return settings

    def update(self, **changes: Any) -> Settings:
        current = self.load().model_dump()
        # the environment fallback key is never written back
        current["api_key"] = self.kv.get_string(KEY_API_KEY, "")
        current.update({k: v for k, v in changes.items() if v is not None})
        return self.save(Settings.model_validate(current))
