from __future__ import annotations

from dataclasses import dataclass

from genesis.sessions.schema import Role, Session

DEFAULT_WINDOW = 20


@dataclass(frozen=True, slots=True)
class MemoryMessage:
    role: Role
    text: str


def select(session: Session, limit: int = DEFAULT_WINDOW) -> list[MemoryMessage]:
    """Most recent ``limit`` messages of ``session``, oldest first.

    Only role and text survive; ids and timestamps stay in the store.
    """
    if limit <= 0:
        return []
    return [MemoryMessage(role=m.role, text=m.text) for m in session.messages[-limit:]]
