"""
Trade validation error classifications.

These exceptions describe why a trade, loan or session request was refused.
They are expected outcomes of user actions: the engine converts them into
failed results and records them in the trade log so polling clients can
surface a notification.
"""

from typing import Any, Optional


class TradingError(Exception):
    """Base class for refused trading operations."""

    code = "TradingError"
    default_reason = "The request could not be processed."

    def __init__(self, message: Optional[str] = None, context: Optional[dict[str, Any]] = None):
        super().__init__(message or self.default_reason)
        self.reason = message or self.default_reason
        self.context = context or {}
        self.recoverable = True


class InsufficientFundsError(TradingError):
    """Cash balance does not cover the requested cost."""

    code = "InsufficientFunds"
    default_reason = "Not enough money."

    def __init__(self, message: Optional[str] = None, required: Optional[int] = None,
                 available: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.required = required
        self.available = available


class InsufficientSharesError(TradingError):
    """User holds fewer shares than requested for sale."""

    code = "InsufficientShares"
    default_reason = "Not enough shares to sell."

    def __init__(self, message: Optional[str] = None, requested: Optional[int] = None,
                 held: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.requested = requested
        self.held = held


class InsufficientSupplyError(TradingError):
    """Company has fewer remaining shares than requested."""

    code = "InsufficientSupply"
    default_reason = "No shares left to buy."

    def __init__(self, message: Optional[str] = None, requested: Optional[int] = None,
                 remaining: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.requested = requested
        self.remaining = remaining


class OverHoldingLimitError(TradingError):
    """Purchase would push the user past the holding limit."""

    code = "OverHoldingLimit"
    default_reason = "Holding limit reached for this company."


class MarketClosedError(TradingError):
    """Trading is not accepted right now."""

    code = "MarketClosed"
    default_reason = "The market is closed."


class RoundLimitExceededError(TradingError):
    """Session is already at its final round."""

    code = "RoundLimitExceeded"
    default_reason = "The final round has been reached."

    def __init__(self, message: Optional[str] = None, max_rounds: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.max_rounds = max_rounds


class LoanAlreadyActiveError(TradingError):
    code = "LoanAlreadyActive"
    default_reason = "A loan is already active."


class NoActiveLoanError(TradingError):
    code = "NoActiveLoan"
    default_reason = "There is no loan to settle."


class UserFrozenError(TradingError):
    code = "UserFrozen"
    default_reason = "Trading is blocked for this user."


class InvalidQuantityError(TradingError):
    code = "InvalidQuantity"
    default_reason = "Quantity must be a positive integer."


class UnknownCompanyError(TradingError):
    code = "UnknownCompany"
    default_reason = "Unknown company."

    def __init__(self, message: Optional[str] = None, company: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.company = company


class PriceOutOfRangeError(TradingError):
    """Requested round is outside the recorded price history."""

    code = "OutOfRange"
    default_reason = "No price recorded for that round."

    def __init__(self, message: Optional[str] = None, round_index: Optional[int] = None,
                 recorded: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.round_index = round_index
        self.recorded = recorded
