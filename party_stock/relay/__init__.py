"""
Registration relay module.

Best-effort forwarding of user registrations to the external queue service.
Relay failures never block local admission of the user.
"""

from typing import Optional

from ..config.defaults import RelayParams
from .base import (
    BaseRegistrationRelay,
    DirectRelay,
    RelayError,
    RelayPermanentError,
    RelayResult,
    RelayRetryableError,
    RelayStatus,
)
from .http_relay import HttpRegistrationRelay


def create_relay(params: Optional[RelayParams]) -> BaseRegistrationRelay:
    """HTTP relay when a url is configured, direct registration otherwise."""
    if params is None or not params.url:
        return DirectRelay()
    return HttpRegistrationRelay("registration", params)


__all__ = [
    "BaseRegistrationRelay",
    "DirectRelay",
    "HttpRegistrationRelay",
    "RelayError",
    "RelayPermanentError",
    "RelayRetryableError",
    "RelayResult",
    "RelayStatus",
    "create_relay",
]
