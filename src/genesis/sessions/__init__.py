from genesis.sessions.schema import Message, Role, Session, ensure_shape
from genesis.sessions.store import SessionStore

__all__ = ["Message", "Role", "Session", "SessionStore", "ensure_shape"]
