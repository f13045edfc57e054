import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

KEY_API_KEY = "apiKey"
KEY_SETTINGS = "genSettings"
KEY_SESSIONS = "sessions"
KEY_ACTIVE_SESSION = "activeSessionId"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


@runtime_checkable
class KeyValueStore(Protocol):
    """Application-scoped key-value persistence.

    Reads use get-or-default semantics: a missing key or a stored value that
    does not decode returns ``default`` instead of raising.
    """

    def get_string(self, key: str, default: str = "") -> str: ...

    def set_string(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def get_json(self, key: str, default: Any = None) -> Any: ...

    def set_json(self, key: str, value: Any) -> None: ...


def atomic_write_text(path: str | Path, payload: str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_suffix(f"{target.suffix}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(payload)
    os.replace(tmp_path, target)


class MemoryStore:
    """Volatile store holding raw strings, the same way the file store does."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_string(self, key: str, default: str = "") -> str:
        return self._data.get(key, default)

    def set_string(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Stored value for {key!r} is not valid JSON, using default")
            return default

    def set_json(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileStore:
    """One file per key under ``root``; every write replaces the file atomically."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root / f"{key}.json"

    def _read(self, key: str) -> str | None:
        try:
            with open(self._path(key), "r", encoding="utf-8") as handle:
                return handle.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read stored value for {key!r}: {e}")
            return None

    def get_string(self, key: str, default: str = "") -> str:
        raw = self._read(key)
        if raw is None:
            return default
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            return default
        return value if isinstance(value, str) else default

    def set_string(self, key: str, value: str) -> None:
        self.set_json(key, str(value))

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self._read(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Stored value for {key!r} is not valid JSON, using default")
            return default

    def set_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, indent=2, ensure_ascii=False)
        atomic_write_text(self._path(key), payload + "\n")
