"""
Error classification system for the trading engine.

Trading errors describe refused requests and are returned to callers as typed
results. System failures describe broken invariants and propagate.
"""

from .session import (
    AlreadyExistsError,
    InvalidConfigError,
    SessionClosedError,
    SessionNotFoundError,
    UserNotFoundError,
)
from .system_failures import (
    InvariantViolationError,
    PersistenceError,
    StateTransitionError,
    SupplyOverflowError,
    SystemFailureError,
)
from .trading import (
    InsufficientFundsError,
    InsufficientSharesError,
    InsufficientSupplyError,
    InvalidQuantityError,
    LoanAlreadyActiveError,
    MarketClosedError,
    NoActiveLoanError,
    OverHoldingLimitError,
    PriceOutOfRangeError,
    RoundLimitExceededError,
    TradingError,
    UnknownCompanyError,
    UserFrozenError,
)

__all__ = [
    # Trade validation
    "TradingError",
    "InsufficientFundsError",
    "InsufficientSharesError",
    "InsufficientSupplyError",
    "OverHoldingLimitError",
    "MarketClosedError",
    "RoundLimitExceededError",
    "LoanAlreadyActiveError",
    "NoActiveLoanError",
    "UserFrozenError",
    "InvalidQuantityError",
    "UnknownCompanyError",
    "PriceOutOfRangeError",
    # Session lookup and lifecycle
    "SessionNotFoundError",
    "UserNotFoundError",
    "SessionClosedError",
    "AlreadyExistsError",
    "InvalidConfigError",
    # System failures
    "SystemFailureError",
    "InvariantViolationError",
    "SupplyOverflowError",
    "StateTransitionError",
    "PersistenceError",
]
