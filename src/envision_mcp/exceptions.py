"""Error types raised by the link core."""


class EnvisionError(Exception):
    """Base class for link and protocol errors."""


class LinkLostError(EnvisionError, ConnectionError):
    """The transport is disconnected or the session is closed."""


class ShortResponseError(EnvisionError, ValueError):
    """A response payload is smaller than its fixed layout."""


class ProtocolViolationError(EnvisionError, RuntimeError):
    """A second response wait was started while one is outstanding."""


class SessionStateError(EnvisionError, RuntimeError):
    """An operation is not valid in the session's current state."""


__all__ = [
    "EnvisionError",
    "LinkLostError",
    "ShortResponseError",
    "ProtocolViolationError",
    "SessionStateError",
]
