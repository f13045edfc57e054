import os
import logging
from dataclasses import dataclass, field

from genesis.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _timeout_env(name: str) -> float | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}")


@dataclass
class GenesisConfig:
    data_dir: str = field(
        default_factory=lambda: get_optional_env("GENESIS_DATA_DIR", "data/genesis")
    )
    model: str = field(
        default_factory=lambda: get_optional_env("GENESIS_MODEL", DEFAULT_MODEL)
    )
    api_base: str = field(
        default_factory=lambda: get_optional_env("GENESIS_API_BASE", DEFAULT_API_BASE)
    )
    memory_window: int = field(
        default_factory=lambda: _int_env("GENESIS_MEMORY_WINDOW", 20)
    )
    # None means the HTTP call never times out on our side.
    timeout: float | None = field(default_factory=lambda: _timeout_env("GENESIS_TIMEOUT"))
    fallback_api_key: str = field(
        default_factory=lambda: get_optional_env("GEMINI_API_KEY", "")
    )

    @classmethod
    def from_env(cls) -> "GenesisConfig":
        return cls()

    def validate(self) -> None:
        if not self.data_dir.strip():
            raise ConfigError("data_dir must not be empty")
        if not self.model.strip():
            raise ConfigError("model must not be empty")
        if not self.api_base.startswith(("http://", "https://")):
            raise ConfigError("api_base must be an http(s) URL")
        if self.memory_window < 1:
            raise ConfigError("memory_window must be at least 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be > 0 when set")
        logger.info("Configuration validated successfully")
