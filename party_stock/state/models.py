"""
Session data models for the trading engine.

This module defines immutable snapshots of users, trade logs, loans and the
published market view. Mutations build new snapshots through the ``with_*``
helpers; the session swaps references under its lock so readers never see a
half-applied trade.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from ..utils.time import format_timestamp, parse_timestamp


class SessionPhase(str, Enum):
    """Session lifecycle phases."""
    OPEN = "open"
    SETTLING = "settling"
    CLOSED = "closed"


class TradeAction(str, Enum):
    """Trade log actions."""
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class LoanRecord:
    """A cash advance taken by a user."""

    principal: int
    start_round: int
    interest_rate: float
    settled: bool = False
    settled_round: Optional[int] = None

    def interest_due(self, current_round: int) -> int:
        """Interest accrued per elapsed round, charged for at least one round."""
        rounds_elapsed = max(1, current_round - self.start_round)
        return int(round(self.principal * self.interest_rate * rounds_elapsed))

    def repayment_due(self, current_round: int) -> int:
        return self.principal + self.interest_due(current_round)

    def with_settled(self, settled_round: int) -> 'LoanRecord':
        return replace(self, settled=True, settled_round=settled_round)

    def to_dict(self) -> dict[str, Any]:
        return {
            "principal": self.principal,
            "start_round": self.start_round,
            "interest_rate": self.interest_rate,
            "settled": self.settled,
            "settled_round": self.settled_round,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'LoanRecord':
        return cls(**data)


@dataclass(frozen=True)
class User:
    """Per-session account snapshot."""

    id: str
    session_id: str
    money: int
    inventory: Mapping[str, int] = field(default_factory=dict)
    is_frozen: bool = False
    loan: Optional[LoanRecord] = None
    introduction: str = ""
    index: int = 0

    # Running average purchase price per open position
    average_costs: Mapping[str, float] = field(default_factory=dict)
    loan_count: int = 0

    def __post_init__(self) -> None:
        # Read-only views so callers cannot edit committed positions
        object.__setattr__(self, "inventory", MappingProxyType(dict(self.inventory)))
        object.__setattr__(self, "average_costs", MappingProxyType(dict(self.average_costs)))

    def holding(self, company: str) -> int:
        return self.inventory.get(company, 0)

    @property
    def has_active_loan(self) -> bool:
        return self.loan is not None and not self.loan.settled

    def with_position(self, company: str, money: int, quantity: int,
                      average_cost: Optional[float]) -> 'User':
        """New snapshot with updated cash and one company position."""
        inventory = dict(self.inventory)
        inventory[company] = quantity
        average_costs = dict(self.average_costs)
        if average_cost is None:
            average_costs.pop(company, None)
        else:
            average_costs[company] = average_cost
        return replace(self, money=money, inventory=inventory, average_costs=average_costs)

    def with_loan(self, money: int, loan: LoanRecord) -> 'User':
        loan_count = self.loan_count if loan.settled else self.loan_count + 1
        return replace(self, money=money, loan=loan, loan_count=loan_count)

    def with_frozen(self, is_frozen: bool) -> 'User':
        return replace(self, is_frozen=is_frozen)

    def with_introduction(self, introduction: str) -> 'User':
        return replace(self, introduction=introduction)

    def with_index(self, index: int) -> 'User':
        return replace(self, index=index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "money": self.money,
            "inventory": dict(self.inventory),
            "is_frozen": self.is_frozen,
            "loan": self.loan.to_dict() if self.loan else None,
            "introduction": self.introduction,
            "index": self.index,
            "average_costs": dict(self.average_costs),
            "loan_count": self.loan_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'User':
        loan = data.get("loan")
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            money=data["money"],
            inventory=dict(data.get("inventory", {})),
            is_frozen=data.get("is_frozen", False),
            loan=LoanRecord.from_dict(loan) if loan else None,
            introduction=data.get("introduction", ""),
            index=data.get("index", 0),
            average_costs=dict(data.get("average_costs", {})),
            loan_count=data.get("loan_count", 0),
        )


@dataclass(frozen=True)
class UserDraft:
    """Registration request for a new user."""

    user_id: str
    introduction: str = ""
    money: Optional[int] = None                      # Defaults to account.initial_money

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "introduction": self.introduction, "money": self.money}


@dataclass(frozen=True)
class TradeLog:
    """Append-only record of a trade attempt."""

    id: int
    session_id: str
    user_id: str
    company: str
    round: int
    action: TradeAction
    quantity: Optional[int]                          # None when the attempt failed
    unit_price: int
    timestamp: datetime
    failed_reason: Optional[str] = None
    failure_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_reason is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "company": self.company,
            "round": self.round,
            "action": self.action.value,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "timestamp": format_timestamp(self.timestamp),
            "failed_reason": self.failed_reason,
            "failure_code": self.failure_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'TradeLog':
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            user_id=data["user_id"],
            company=data["company"],
            round=data["round"],
            action=TradeAction(data["action"]),
            quantity=data.get("quantity"),
            unit_price=data["unit_price"],
            timestamp=parse_timestamp(data["timestamp"]),
            failed_reason=data.get("failed_reason"),
            failure_code=data.get("failure_code"),
        )


@dataclass(frozen=True)
class MarketSnapshot:
    """Committed, read-only view of a session's market."""

    session_id: str
    round: int
    phase: SessionPhase
    is_transaction_open: bool
    fluctuation_interval: int
    max_rounds: int
    companies: tuple[str, ...]
    prices: dict[str, int]
    remaining_stocks: dict[str, int]
    price_history: dict[str, list[int]]

    @property
    def is_tradable(self) -> bool:
        return (self.phase == SessionPhase.OPEN and self.is_transaction_open
                and self.round < self.max_rounds - 1)


@dataclass(frozen=True)
class Position:
    """A user's position in one company as shown to clients."""

    company: str
    quantity: int
    average_purchase_price: Optional[float]
    current_price: int
    profit_rate: Optional[float]
    remaining_stock: int
    is_over_limit: bool


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of registering a user."""

    user: User
    message_id: str                                  # Relay message id or "direct"
