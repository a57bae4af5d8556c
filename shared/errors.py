from __future__ import annotations
from typing import Optional


class OCoupError(Exception):
    """Base class for every error raised by the OCoup client."""
    pass


class TransportError(OCoupError):
    """Raised when a socket fails to open, faults, or closes before an expected handshake."""
    pass


class ProtocolError(OCoupError):
    """Raised when a payload cannot be decoded against the known message union."""
    pass


class ApplicationError(OCoupError):
    """Raised for an ``{"error": ...}`` envelope intentionally sent by the server."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class OrchestrationError(OCoupError):
    """Raised when an HTTP call fails or its JSON body carries an ``error`` field."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class SessionError(OCoupError):
    """Raised when a connection session is used out of order."""
    pass


class TransitionError(OCoupError):
    def __init__(self, from_state: str, to_state: str, reason: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)
