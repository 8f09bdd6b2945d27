"""
Per-session accounts and the append-only trade log.

The ledger owns every user snapshot of one session together with the trade
log. It validates and applies cash/share movements and loans, and computes
derived metrics (average purchase price, profit rate).

Average cost policy:
- BUY moves the average to the quantity-weighted mean of the old position
  and the new shares.
- SELL reduces the quantity but leaves the average of the remaining shares
  unchanged; a position sold down to zero has no average.
The running average is stored on the user and updated with each trade;
``average_purchase_price`` recomputes it from the logs and is kept as the
reference the running value must agree with.
"""

import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Optional

import structlog

from ..config.defaults import LoanParams
from ..errors import (
    AlreadyExistsError,
    InsufficientFundsError,
    InsufficientSharesError,
    LoanAlreadyActiveError,
    NoActiveLoanError,
    TradingError,
    UserNotFoundError,
)
from ..state.models import LoanRecord, TradeAction, TradeLog, User
from ..utils.time import utc_now

logger = structlog.get_logger(__name__)


def next_average_cost(
    average: Optional[float],
    quantity: int,
    action: TradeAction,
    traded: int,
    unit_price: int
) -> Optional[float]:
    """Average cost of a position after one trade."""
    if action == TradeAction.BUY:
        total = quantity + traded
        if quantity <= 0 or average is None:
            return float(unit_price)
        return (average * quantity + unit_price * traded) / total

    remaining = quantity - traded
    if remaining <= 0:
        return None
    return average


def average_purchase_price(
    logs: Iterable[TradeLog],
    company: str,
    current_quantity: int,
    round_index: Optional[int] = None
) -> Optional[float]:
    """
    Recompute the average purchase price of a position from its trade logs.

    Args:
        logs: Trade logs of one user, in append order
        company: Company of the position
        current_quantity: Shares currently held
        round_index: Ignore logs recorded after this round

    Returns:
        Average cost per held share, or None when no shares are held
    """
    if current_quantity <= 0:
        return None

    average: Optional[float] = None
    quantity = 0
    for log in logs:
        if log.company != company or not log.succeeded or not log.quantity:
            continue
        if round_index is not None and log.round > round_index:
            continue
        average = next_average_cost(average, quantity, log.action, log.quantity, log.unit_price)
        quantity += log.quantity if log.action == TradeAction.BUY else -log.quantity

    return average


def profit_rate(current_price: int, average_price: Optional[float]) -> Optional[float]:
    """Percentage gain of current_price over average_price; None without a position."""
    if average_price is None or average_price == 0:
        return None
    return (current_price - average_price) * 100 / average_price


class Ledger:
    """Accounts and trade log of one session."""

    def __init__(self, session_id: str, loan_params: LoanParams) -> None:
        self.session_id = session_id
        self.loan_params = loan_params
        self._users: dict[str, User] = {}
        self._logs: list[TradeLog] = []
        self._next_log_id = 1
        self._log_lock = threading.Lock()

    @classmethod
    def restore(cls, session_id: str, loan_params: LoanParams,
                users: list[User], logs: list[TradeLog]) -> "Ledger":
        ledger = cls(session_id, loan_params)
        ledger._users = {user.id: user for user in users}
        ledger._logs = list(logs)
        ledger._next_log_id = max((log.id for log in logs), default=0) + 1
        return ledger

    # Users

    def get_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not in session {self.session_id}",
                                    user_id=user_id)
        return user

    def has_user(self, user_id: str) -> bool:
        return user_id in self._users

    def users(self) -> list[User]:
        """All users ordered by index."""
        return sorted(self._users.values(), key=lambda u: (u.index, u.id))

    def user_count(self) -> int:
        return len(self._users)

    def add_user(self, user_id: str, money: int, introduction: str = "") -> User:
        """Admit a user with the next free index."""
        if user_id in self._users:
            raise AlreadyExistsError(f"User {user_id} already registered", context={"user_id": user_id})
        index = max((u.index for u in self._users.values()), default=-1) + 1
        user = User(
            id=user_id,
            session_id=self.session_id,
            money=money,
            introduction=introduction,
            index=index,
        )
        self._users[user_id] = user
        return user

    def remove_user(self, user_id: str) -> User:
        self.get_user(user_id)
        return self._users.pop(user_id)

    def remove_all(self) -> int:
        count = len(self._users)
        self._users.clear()
        return count

    def reindex(self) -> list[User]:
        """Compact index gaps, keeping the current order."""
        for position, user in enumerate(self.users()):
            if user.index != position:
                self._users[user.id] = user.with_index(position)
        return self.users()

    def set_introduction(self, user_id: str, introduction: str) -> User:
        user = self.get_user(user_id).with_introduction(introduction)
        self._users[user_id] = user
        return user

    def set_frozen(self, user_id: str, is_frozen: bool) -> User:
        user = self.get_user(user_id).with_frozen(is_frozen)
        self._users[user_id] = user
        return user

    # Trades

    def validate_buy(self, user: User, quantity: int, unit_price: int) -> int:
        """Raise InsufficientFundsError unless the user can pay; returns the cost."""
        cost = quantity * unit_price
        if cost > user.money:
            raise InsufficientFundsError(
                f"Buying {quantity} shares costs {cost} but only {user.money} is available",
                required=cost,
                available=user.money
            )
        return cost

    def validate_sell(self, user: User, company: str, quantity: int) -> None:
        held = user.holding(company)
        if quantity > held:
            raise InsufficientSharesError(
                f"Selling {quantity} shares of {company} but only {held} are held",
                requested=quantity,
                held=held
            )

    def apply_buy(self, user_id: str, company: str, quantity: int,
                  unit_price: int, round_index: int) -> tuple[User, TradeLog]:
        """Debit cash, credit shares and append a BUY log."""
        user = self.get_user(user_id)
        cost = self.validate_buy(user, quantity, unit_price)

        held = user.holding(company)
        average = next_average_cost(user.average_costs.get(company), held,
                                    TradeAction.BUY, quantity, unit_price)
        updated = user.with_position(company, user.money - cost, held + quantity, average)
        log = self._append_log(user_id, company, round_index, TradeAction.BUY, quantity, unit_price)

        self._users[user_id] = updated
        return updated, log

    def apply_sell(self, user_id: str, company: str, quantity: int,
                   unit_price: int, round_index: int) -> tuple[User, TradeLog]:
        """Credit proceeds, debit shares and append a SELL log."""
        user = self.get_user(user_id)
        self.validate_sell(user, company, quantity)

        held = user.holding(company)
        average = next_average_cost(user.average_costs.get(company), held,
                                    TradeAction.SELL, quantity, unit_price)
        updated = user.with_position(company, user.money + quantity * unit_price,
                                     held - quantity, average)
        log = self._append_log(user_id, company, round_index, TradeAction.SELL, quantity, unit_price)

        self._users[user_id] = updated
        return updated, log

    def append_failure(self, user_id: str, company: str, action: TradeAction,
                       round_index: int, unit_price: int, error: TradingError) -> TradeLog:
        """
        Record a refused trade attempt.

        Safe to call without the session lock, so attempts refused while a
        round is settling are still logged.
        """
        return self._append_log(
            user_id, company, round_index, action, None, unit_price,
            failed_reason=error.reason, failure_code=error.code
        )

    def logs(self, user_id: Optional[str] = None, company: Optional[str] = None,
             round_index: Optional[int] = None) -> list[TradeLog]:
        """Trade logs filtered by user, company and round, in append order."""
        with self._log_lock:
            logs = list(self._logs)
        return [
            log for log in logs
            if (user_id is None or log.user_id == user_id)
            and (company is None or log.company == company)
            and (round_index is None or log.round == round_index)
        ]

    def _append_log(self, user_id: str, company: str, round_index: int, action: TradeAction,
                    quantity: Optional[int], unit_price: int,
                    failed_reason: Optional[str] = None,
                    failure_code: Optional[str] = None,
                    timestamp: Optional[datetime] = None) -> TradeLog:
        with self._log_lock:
            log = TradeLog(
                id=self._next_log_id,
                session_id=self.session_id,
                user_id=user_id,
                company=company,
                round=round_index,
                action=action,
                quantity=quantity,
                unit_price=unit_price,
                timestamp=timestamp or utc_now(),
                failed_reason=failed_reason,
                failure_code=failure_code,
            )
            self._logs.append(log)
            self._next_log_id += 1
        return log

    # Loans

    def start_loan(self, user_id: str, round_index: int) -> User:
        """
        Credit the configured principal and record a loan.

        Raises:
            LoanAlreadyActiveError: the user holds an unsettled loan or used up max_loans
        """
        user = self.get_user(user_id)
        if user.has_active_loan:
            raise LoanAlreadyActiveError(context={"user_id": user_id})
        if self.loan_params.max_loans and user.loan_count >= self.loan_params.max_loans:
            raise LoanAlreadyActiveError(
                f"Loan limit of {self.loan_params.max_loans} reached",
                context={"user_id": user_id}
            )

        loan = LoanRecord(
            principal=self.loan_params.principal,
            start_round=round_index,
            interest_rate=self.loan_params.interest_rate,
        )
        updated = user.with_loan(user.money + loan.principal, loan)
        self._users[user_id] = updated

        logger.info(
            "Loan started",
            session_id=self.session_id,
            user_id=user_id,
            principal=loan.principal,
            round=round_index
        )
        return updated

    def settle_loan(self, user_id: str, round_index: int) -> User:
        """
        Repay principal plus interest.

        Raises:
            NoActiveLoanError: no unsettled loan
            InsufficientFundsError: cash does not cover the repayment
        """
        user = self.get_user(user_id)
        if not user.has_active_loan:
            raise NoActiveLoanError(context={"user_id": user_id})

        due = user.loan.repayment_due(round_index)
        if user.money < due:
            raise InsufficientFundsError(
                f"Repayment of {due} exceeds available {user.money}",
                required=due,
                available=user.money
            )

        updated = user.with_loan(user.money - due, user.loan.with_settled(round_index))
        self._users[user_id] = updated

        logger.info(
            "Loan settled",
            session_id=self.session_id,
            user_id=user_id,
            repayment=due,
            round=round_index
        )
        return updated
