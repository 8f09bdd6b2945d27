"""
Session lookup and lifecycle error classifications.

Raised before any shared state is touched, so they are never recorded in a
session's trade log.
"""

from typing import Any, Optional

from .trading import TradingError


class SessionNotFoundError(TradingError):
    code = "SessionNotFound"
    default_reason = "Session does not exist."

    def __init__(self, message: Optional[str] = None, session_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.session_id = session_id


class UserNotFoundError(TradingError):
    code = "UserNotFound"
    default_reason = "User does not exist in this session."

    def __init__(self, message: Optional[str] = None, user_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.user_id = user_id


class SessionClosedError(TradingError):
    code = "SessionClosed"
    default_reason = "Session is closed."


class AlreadyExistsError(TradingError):
    code = "AlreadyExists"
    default_reason = "Identifier already in use."


class InvalidConfigError(TradingError):
    """Session configuration overrides failed validation."""

    code = "InvalidConfig"
    default_reason = "Invalid session configuration."

    def __init__(self, message: Optional[str] = None, errors: Optional[list[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []
