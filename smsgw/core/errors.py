"""Domain-specific errors for smsgw."""

from __future__ import annotations


class SmsgwError(Exception):
    """Base error for smsgw."""


class ConfigError(SmsgwError):
    """Raised when the console configuration file is unreadable or invalid."""


class ValidationError(SmsgwError):
    """Raised on client-side input checks, before any network call."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class TransportError(SmsgwError):
    """Raised on network failures or undecodable responses."""


class ServerError(SmsgwError):
    """Raised when the service answers with a non-success status."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(ServerError):
    """Raised on 401 after the stored credential has been cleared."""

    def __init__(self, message: str = "Unauthorized, please log in again") -> None:
        super().__init__(message, status_code=401)


class ChannelStateError(SmsgwError):
    """Raised when a channel edit session is asked to act while busy."""
