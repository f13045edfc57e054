class GenesisError(Exception):
    """Base class for all Genesis errors."""


class ConfigError(GenesisError):
    pass


class BusyError(GenesisError):
    """Raised when a generation request is already in flight."""

    def __init__(self, message: str = "A request is already in progress"):
        super().__init__(message)


class GenerationError(GenesisError):
    """Base class for failures of the generation call."""

    status: int | None = None


class MissingCredential(GenerationError):
    def __init__(self, message: str = "No API key configured"):
        super().__init__(message)


class NetworkError(GenerationError):
    status = 0


class UpstreamError(GenerationError):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    def __repr__(self) -> str:
        return f"UpstreamError(status={self.status}, message={self.message!r})"


class MalformedResponse(GenerationError):
    pass


class SessionGone(GenesisError):
    """Raised when a session disappears while a reply is being generated."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} was deleted")
        self.session_id = session_id
