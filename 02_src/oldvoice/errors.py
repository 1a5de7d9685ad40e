"""Exception types raised inside the session engine."""


class OldVoiceError(Exception):
    """Base class for engine errors."""


class StorageNotInitializedError(OldVoiceError, RuntimeError):
    """Storage used before init() or after close()."""

    def __init__(self) -> None:
        super().__init__("Storage not initialized")


class StaleSessionError(OldVoiceError):
    """A session write lost the optimistic version check."""

    def __init__(self, session_id: str, expected_version: int):
        super().__init__(
            f"Session {session_id} changed since version {expected_version} was read"
        )
        self.session_id = session_id
        self.expected_version = expected_version


class DispatchError(OldVoiceError):
    """The downstream call service rejected a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
