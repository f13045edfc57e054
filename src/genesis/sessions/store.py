import logging
from datetime import datetime
from typing import Any

from genesis.sessions.schema import (
    Message,
    Role,
    Session,
    coerce_role,
    ensure_shape,
    generate_id,
    normalize_title,
    utc_now,
)
from genesis.storage import KEY_ACTIVE_SESSION, KEY_SESSIONS, KeyValueStore

logger = logging.getLogger(__name__)


class SessionStore:
    """Owns the persisted session collection and the active-session pointer.

    Every operation reads the collection from the key-value store and writes
    the whole collection back after a mutation. A single writer is assumed.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    # --- collection -----------------------------------------------------------
    def load_all(self) -> list[Session]:
        data = self.kv.get_json(KEY_SESSIONS, [])
        if not isinstance(data, list):
            logger.debug("Stored session collection is malformed, treating as empty")
            return []
        sessions: list[Session] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            sessions.append(ensure_shape(item))
        return sessions

    def _save_all(self, sessions: list[Session]) -> None:
        self.kv.set_json(KEY_SESSIONS, [s.to_record() for s in sessions])

    def get_by_id(self, session_id: str) -> Session | None:
        for session in self.load_all():
            if session.id == session_id:
                return session
        return None

    def create_new_session(self, title: str | None = None) -> Session:
        now = utc_now()
        return Session(
            id=generate_id(),
            title=normalize_title(title),
            created_at=now,
            updated_at=now,
            messages=[],
        )

    def upsert_session(self, session: Session | dict[str, Any]) -> Session:
        normalized = ensure_shape(session)
        sessions = self.load_all()
        for idx, existing in enumerate(sessions):
            if existing.id == normalized.id:
                sessions[idx] = normalized
                break
        else:
            sessions.insert(0, normalized)
        self._save_all(sessions)
        return normalized

    def delete_one(self, session_id: str) -> bool:
        sessions = self.load_all()
        remaining = [s for s in sessions if s.id != session_id]
        if len(remaining) == len(sessions):
            return False
        self._save_all(remaining)
        if self.get_active_id() == session_id:
            if remaining:
                self.kv.set_string(KEY_ACTIVE_SESSION, remaining[0].id)
            else:
                self.kv.remove(KEY_ACTIVE_SESSION)
        logger.info(f"Deleted session {session_id}")
        return True

    def delete_all_sessions(self) -> None:
        self.kv.remove(KEY_SESSIONS)
        self.kv.remove(KEY_ACTIVE_SESSION)
        logger.info("Deleted all sessions")

    # --- single-session mutations ---------------------------------------------
    def rename(self, session_id: str, new_title: str) -> Session | None:
        session = self.get_by_id(session_id)
        if session is None:
            return None
        session.title = normalize_title(new_title)
        session.updated_at = max(utc_now(), session.created_at)
        return self.upsert_session(session)

    def add_message(
        self,
        session_id: str,
        role: Role | str,
        text: str | None,
        ts: datetime | None = None,
    ) -> Session | None:
        session = self.get_by_id(session_id)
        if session is None:
            logger.warning(f"Cannot add message: session {session_id} not found")
            return None
        message = Message.model_validate(
            {"role": coerce_role(role), "text": text, "ts": ts or utc_now()}
        )
        taken = {m.id for m in session.messages}
        while message.id in taken:
            message = message.model_copy(update={"id": generate_id()})
        session.messages.append(message)
        session.updated_at = max(utc_now(), message.ts, session.created_at)
        return self.upsert_session(session)

    # --- active pointer ---------------------------------------------------------
    def get_active_id(self) -> str | None:
        value = self.kv.get_string(KEY_ACTIVE_SESSION, "")
        return value or None

    def set_active_id(self, session_id: str) -> bool:
        if self.get_by_id(session_id) is None:
            return False
        self.kv.set_string(KEY_ACTIVE_SESSION, session_id)
        return True

    def get_active(self) -> Session | None:
        active_id = self.get_active_id()
        return self.get_by_id(active_id) if active_id else None

    def ensure_at_least_one_session(self) -> Session:
        sessions = self.load_all()
        if not sessions:
            session = self.upsert_session(self.create_new_session())
            self.kv.set_string(KEY_ACTIVE_SESSION, session.id)
            logger.info(f"Created default session {session.id}")
            return session

        active_id = self.get_active_id()
        for session in sessions:
            if session.id == active_id:
                return session
        self.kv.set_string(KEY_ACTIVE_SESSION, sessions[0].id)
        logger.debug(f"Active pointer repointed to {sessions[0].id}")
        return sessions[0]
