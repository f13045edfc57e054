from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from genesis import memory
from genesis.errors import (
    BusyError,
    GenesisError,
    GenerationError,
    MissingCredential,
    SessionGone,
)
from genesis.export import build_export, write_export
from genesis.llm.client import GenerationClient, GenerationResult
from genesis.sessions.schema import DEFAULT_TITLE, Message, Role, Session
from genesis.sessions.store import SessionStore
from genesis.settings import Settings, SettingsStore

logger = logging.getLogger(__name__)

EMPTY_REPLY_PLACEHOLDER = "(no response)"
AUTO_TITLE_LENGTH = 40


@dataclass(frozen=True, slots=True)
class SendOutcome:
    session: Session | None
    reply: Message | None = None
    error: GenesisError | None = None
    elapsed_ms: int | None = None
    empty: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def describe_error(error: GenesisError) -> str:
    if isinstance(error, MissingCredential):
        return "API key required. Add your Google API key in settings."
    if isinstance(error, BusyError):
        return "Still waiting for the previous reply."
    return str(error) or type(error).__name__


class ChatService:
    """Wires the session store, settings and generation client together.

    Only one generation call may be in flight at a time; a concurrent ``send``
    is rejected with ``BusyError`` and leaves the store untouched.
    """

    def __init__(
        self,
        sessions: SessionStore,
        settings: SettingsStore,
        client: GenerationClient,
        memory_window: int = memory.DEFAULT_WINDOW,
    ):
        self.sessions = sessions
        self.settings = settings
        self.client = client
        self.memory_window = memory_window
        self._in_flight = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def start(self) -> Session:
        return self.sessions.ensure_at_least_one_session()

    def active_session(self) -> Session:
        return self.sessions.ensure_at_least_one_session()

    # --- chat -------------------------------------------------------------------
    def send(self, text: str, session_id: str | None = None) -> SendOutcome:
        text = (text or "").strip()
        if not text:
            raise ValueError("message is empty")

        if not self._in_flight.acquire(blocking=False):
            logger.info("Rejected send while a request is in flight")
            return SendOutcome(session=None, error=BusyError())
        try:
            return self._send_locked(text, session_id)
        finally:
            self._in_flight.release()

    def _send_locked(self, text: str, session_id: str | None) -> SendOutcome:
        session = (
            self.sessions.get_by_id(session_id) if session_id else self.active_session()
        )
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")

        settings = self.settings.load()
        if not settings.api_key:
            return SendOutcome(session=session, error=MissingCredential())

        session_id = session.id
        is_first = not any(m.role == Role.USER for m in session.messages)
        session = self.sessions.add_message(session_id, Role.USER, text)
        if session is not None and is_first and session.title == DEFAULT_TITLE:
            session = self.sessions.rename(session_id, text[:AUTO_TITLE_LENGTH])
        if session is None:
            return SendOutcome(session=None, error=SessionGone(session_id))

        window = memory.select(session, self.memory_window)
        try:
            result = self.client.generate(window, settings)
        except GenerationError as e:
            logger.warning(f"Generation failed for session {session_id}: {type(e).__name__}")
            return SendOutcome(session=session, error=e)

        empty = not result.text.strip()
        reply_text = EMPTY_REPLY_PLACEHOLDER if empty else result.text
        session = self.sessions.add_message(session_id, Role.ASSISTANT, reply_text)
        if session is None:
            logger.info(f"Session {session_id} deleted before the reply arrived")
            return SendOutcome(
                session=None, error=SessionGone(session_id), elapsed_ms=result.elapsed_ms
            )
        return SendOutcome(
            session=session,
            reply=session.messages[-1],
            elapsed_ms=result.elapsed_ms,
            empty=empty,
        )

    # --- session management ---------------------------------------------------
    def new_session(self, title: str | None = None) -> Session:
        session = self.sessions.upsert_session(self.sessions.create_new_session(title))
        self.sessions.set_active_id(session.id)
        logger.info(f"Created session {session.id}")
        return session

    def switch(self, session_id: str) -> Session | None:
        if not self.sessions.set_active_id(session_id):
            return None
        return self.sessions.get_by_id(session_id)

    def rename(self, session_id: str, title: str) -> Session | None:
        return self.sessions.rename(session_id, title)

    def delete(self, session_id: str) -> Session:
        self.sessions.delete_one(session_id)
        return self.sessions.ensure_at_least_one_session()

    def clear_all(self) -> Session:
        self.sessions.delete_all_sessions()
        return self.sessions.ensure_at_least_one_session()

    def export(self, session_id: str) -> dict[str, Any] | None:
        session = self.sessions.get_by_id(session_id)
        return build_export(session) if session else None

    def export_to(self, session_id: str, directory: str | Path) -> Path | None:
        session = self.sessions.get_by_id(session_id)
        return write_export(session, directory) if session else None

    # --- settings ---------------------------------------------------------------
    def save_settings(self, **changes: Any) -> Settings:
        return self.settings.update(**changes)

    def test_key(self, credential: str | None = None) -> GenerationResult:
        key = credential if credential is not None else self.settings.load().api_key
        return self.client.test_key(key)
