import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_TITLE = "New chat"
TITLE_MAX_LENGTH = 80


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def coerce_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    if isinstance(value, str) and value.strip().lower() in ("assistant", "model"):
        return Role.ASSISTANT
    return Role.USER


def coerce_timestamp(value: Any, default: datetime) -> datetime:
    """Accept datetimes, ISO-8601 strings and epoch milliseconds; anything else is ``default``."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return default
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return default
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return default


def normalize_title(value: Any) -> str:
    text = str(value).strip() if value is not None else ""
    # trailing whitespace left by the cut is dropped so the title is stable
    text = text[:TITLE_MAX_LENGTH].rstrip()
    return text or DEFAULT_TITLE


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _as_dict(data: Any) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return data if isinstance(data, dict) else {}


class Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    role: Role
    text: str = ""
    ts: datetime

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> dict:
        data = _as_dict(data)
        msg_id = data.get("id")
        text = data.get("text")
        if text is None:
            text = ""
        elif not isinstance(text, str):
            text = str(text)
        return {
            "id": msg_id.strip() if isinstance(msg_id, str) and msg_id.strip() else generate_id(),
            "role": coerce_role(data.get("role")),
            "text": text,
            "ts": coerce_timestamp(data.get("ts"), utc_now()),
        }


class Session(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str = DEFAULT_TITLE
    created_at: datetime
    updated_at: datetime
    messages: list[Message] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> dict:
        data = _as_dict(data)
        now = utc_now()

        session_id = data.get("id")
        if not isinstance(session_id, str) or not session_id.strip():
            session_id = generate_id()

        created_at = coerce_timestamp(_pick(data, "created_at", "createdAt"), now)
        updated_at = coerce_timestamp(_pick(data, "updated_at", "updatedAt"), created_at)
        if updated_at < created_at:
            updated_at = created_at

        raw_messages = data.get("messages")
        messages: list[Message] = []
        seen: set[str] = set()
        for raw in raw_messages if isinstance(raw_messages, list) else []:
            if not isinstance(raw, (dict, Message)):
                continue
            message = Message.model_validate(_as_dict(raw))
            if message.id in seen:
                message = message.model_copy(update={"id": generate_id()})
            seen.add(message.id)
            messages.append(message)

        return {
            "id": session_id.strip(),
            "title": normalize_title(data.get("title")),
            "created_at": created_at,
            "updated_at": updated_at,
            "messages": messages,
        }

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def ensure_shape(candidate: Any) -> Session:
    """Normalize a possibly partial record into a well-formed Session.

    Missing ids and timestamps are generated, so applying this twice gives the
    same session as applying it once.
    """
    return Session.model_validate(_as_dict(candidate))
