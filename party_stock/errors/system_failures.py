"""
System failure error classifications for unrecoverable errors.

These exceptions represent broken internal invariants or infrastructure
failures. They are never turned into user-facing trade results.
"""

from typing import Any, Optional


class SystemFailureError(Exception):
    """Base class for unrecoverable system failures."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class InvariantViolationError(SystemFailureError):
    """Market state reached a value that correct flows can never produce."""

    def __init__(self, message: str, invariant: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.invariant = invariant


class SupplyOverflowError(InvariantViolationError):
    """Released shares would exceed a company's initial supply."""

    def __init__(self, message: str, company: Optional[str] = None,
                 attempted: Optional[int] = None, initial_supply: Optional[int] = None, **kwargs):
        super().__init__(message, invariant="remaining_stock<=initial_supply", **kwargs)
        self.company = company
        self.attempted = attempted
        self.initial_supply = initial_supply


class StateTransitionError(SystemFailureError):
    """Invalid session phase transition."""

    def __init__(self, message: str, current_state: Optional[str] = None,
                 attempted_transition: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.current_state = current_state
        self.attempted_transition = attempted_transition


class PersistenceError(SystemFailureError):
    """Database or file system persistence failures."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.target = target
