"""
Main trading engine coordinator.

Routes trade, loan, round and administration requests to the session they
target, runs each mutation under that session's lock and reports the outcome
as an EngineResult. Refused trades are recorded as failed trade logs and
published on the event bus once the lock has been released.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog
from structlog.contextvars import bound_contextvars

from .config.defaults import DefaultConfig, config_from_dict
from .config.loader import ConfigLoader
from .errors import (
    InvalidQuantityError,
    MarketClosedError,
    OverHoldingLimitError,
    RoundLimitExceededError,
    SessionClosedError,
    SessionNotFoundError,
    TradingError,
    UserFrozenError,
    UserNotFoundError,
)
from .events import TradeEventBus
from .logging.config import get_trade_logger, log_trade_decision
from .market.inventory import HoldingLimitPolicy
from .market.ledger import profit_rate
from .persistence.snapshot_store import SnapshotStore
from .state.models import (
    MarketSnapshot,
    Position,
    SessionPhase,
    TradeAction,
    TradeLog,
    User,
    UserDraft,
)
from .state.registry import SessionRegistry
from .state.session import MarketSession
from .utils.time import utc_now

logger = structlog.get_logger(__name__)
trade_logger = get_trade_logger(__name__)


@dataclass(frozen=True)
class EngineResult:
    """Outcome of one engine operation."""

    ok: bool
    value: Any = None
    log: Optional[TradeLog] = None
    error: Optional[TradingError] = None

    @classmethod
    def success(cls, value: Any = None, log: Optional[TradeLog] = None) -> "EngineResult":
        return cls(ok=True, value=value, log=log)

    @classmethod
    def failure(cls, error: TradingError, log: Optional[TradeLog] = None,
                value: Any = None) -> "EngineResult":
        return cls(ok=False, value=value, log=log, error=error)

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @property
    def failed_reason(self) -> Optional[str]:
        return self.error.reason if self.error else None

    def unwrap(self) -> Any:
        """Return the value, raising the failure if there is one."""
        if self.error is not None:
            raise self.error
        return self.value


class TradeEngine:
    """
    Main coordinator for party stock trading sessions.

    Manages the request pipeline:
    Request → Session lookup → Session lock → Market/Ledger → Snapshot → Events
    """

    def __init__(
        self,
        config_dir: Optional[str] = None,
        registry: Optional[SessionRegistry] = None,
        event_bus: Optional[TradeEventBus] = None,
        store: Optional[SnapshotStore] = None
    ) -> None:
        """Initialize the trading engine."""
        self.logger = logger
        self.trade_logger = trade_logger

        self.config_loader = ConfigLoader.create(config_dir)
        self.config: DefaultConfig = config_from_dict(self.config_loader.merge_config("default"))

        if store is None and self.config.persistence.db_path:
            store = SnapshotStore(self.config.persistence.db_path)
        self.store = store

        self.registry = registry or SessionRegistry(self.config_loader, store=store)
        if self.registry.store is None:
            self.registry.store = store
        self.events = event_bus or TradeEventBus()

        self.logger.info(
            "Trading engine initialized",
            persistence=bool(self.store),
            config_dir=str(self.config_loader.config_dir)
        )

    # Sessions

    def create_session(
        self,
        session_id: str,
        overrides: Optional[dict[str, Any]] = None,
        holding_limit: Optional[HoldingLimitPolicy] = None
    ) -> EngineResult:
        try:
            session = self.registry.create(session_id, overrides, holding_limit)
        except TradingError as e:
            return self._refused("create_session", session_id, None, e)
        return EngineResult.success(session.snapshot)

    def destroy_session(self, session_id: str) -> EngineResult:
        try:
            session = self.registry.destroy(session_id)
        except TradingError as e:
            return self._refused("destroy_session", session_id, None, e)
        return EngineResult.success(session.snapshot)

    def restore_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Reload persisted sessions saved within the retention window.

        Returns:
            Number of sessions restored
        """
        if not self.store:
            return 0

        cutoff = (now or utc_now()) - timedelta(hours=self.config.persistence.retention_hours)
        restored = 0
        for stored in self.store.load_all(newer_than=cutoff):
            try:
                self.registry.restore(stored.payload)
                restored += 1
            except (KeyError, ValueError, TypeError) as e:
                self.logger.error(
                    "Failed to restore session snapshot",
                    session_id=stored.session_id,
                    version=stored.version,
                    error=str(e),
                    error_type=type(e).__name__
                )

        self.logger.info("Restored sessions from snapshots", restored=restored)
        return restored

    def cleanup_expired(self, now: Optional[datetime] = None) -> list[str]:
        """Destroy sessions past their TTL and drop stale snapshots."""
        expired = self.registry.expire_sessions(now)
        if self.store:
            self.store.cleanup_expired(self.config.persistence.retention_hours, now)
        return expired

    # Trades

    def buy(self, session_id: str, user_id: str, company: str, quantity: int,
            expected_round: Optional[int] = None) -> EngineResult:
        return self._trade(TradeAction.BUY, session_id, user_id, company, quantity, expected_round)

    def sell(self, session_id: str, user_id: str, company: str, quantity: int,
             expected_round: Optional[int] = None) -> EngineResult:
        return self._trade(TradeAction.SELL, session_id, user_id, company, quantity, expected_round)

    def sell_all(self, session_id: str, user_id: str, company: str,
                 expected_round: Optional[int] = None) -> EngineResult:
        """Sell the whole position in a company; succeeds without a log when nothing is held."""
        return self._trade(TradeAction.SELL, session_id, user_id, company, None, expected_round,
                           sell_all=True)

    def _trade(
        self,
        action: TradeAction,
        session_id: str,
        user_id: str,
        company: str,
        quantity: Optional[int],
        expected_round: Optional[int],
        sell_all: bool = False
    ) -> EngineResult:
        operation = "sell_all" if sell_all else action.value.lower()

        try:
            session = self.registry.get(session_id)
            session.ledger.get_user(user_id)
        except (SessionNotFoundError, UserNotFoundError) as e:
            return self._refused(operation, session_id, user_id, e)

        # A settling round refuses immediately instead of queueing on the lock
        snapshot = session.snapshot
        if snapshot.phase == SessionPhase.SETTLING:
            error = MarketClosedError("Prices are being settled for the next round")
            log = session.ledger.append_failure(
                user_id, company, action, snapshot.round,
                snapshot.prices.get(company, 0), error
            )
            result = EngineResult.failure(error, log)
        else:
            with session.lock:
                result = self._execute_trade(session, action, user_id, company,
                                             quantity, expected_round, sell_all)

        if result.log is not None:
            self.events.publish(result.log)

        log_trade_decision(
            self.trade_logger,
            action=operation,
            accepted=result.ok,
            session_id=session_id,
            user_id=user_id,
            reason=result.failed_reason,
            context={
                "company": company,
                "quantity": result.log.quantity if result.log else quantity,
                "round": result.log.round if result.log else session.round,
                "code": result.code,
            }
        )
        return result

    def _execute_trade(
        self,
        session: MarketSession,
        action: TradeAction,
        user_id: str,
        company: str,
        quantity: Optional[int],
        expected_round: Optional[int],
        sell_all: bool = False
    ) -> EngineResult:
        """Validate and apply one trade; callers hold the session lock."""
        unit_price = 0
        try:
            user = session.ledger.get_user(user_id)
        except UserNotFoundError as e:
            return EngineResult.failure(e)

        try:
            self._check_tradable(session, user, expected_round)
            unit_price = session.price_series.current_price(company)

            if sell_all:
                quantity = user.holding(company)
                if quantity == 0:
                    return EngineResult.success(user)
            self._check_quantity(quantity)

            if action == TradeAction.BUY:
                updated, log = self._apply_buy(session, user, company, quantity, unit_price)
            else:
                updated, log = self._apply_sell(session, user, company, quantity, unit_price)

        except TradingError as e:
            log = session.ledger.append_failure(
                user_id, company, action, session.round, unit_price, e
            )
            self.registry.commit(session)
            return EngineResult.failure(e, log)

        self.registry.commit(session)
        return EngineResult.success(updated, log)

    def _apply_buy(self, session: MarketSession, user: User, company: str,
                   quantity: int, unit_price: int) -> tuple[User, TradeLog]:
        session.ledger.validate_buy(user, quantity, unit_price)

        initial_supply = session.pool.initial_supply(company)
        if session.holding_limit(session.ledger.user_count(), user.holding(company),
                                 quantity, initial_supply):
            raise OverHoldingLimitError(
                f"Holding {user.holding(company) + quantity} shares of {company} "
                f"exceeds the limit for {session.ledger.user_count()} players",
                context={"company": company, "initial_supply": initial_supply}
            )

        session.pool.reserve(company, quantity)
        try:
            return session.ledger.apply_buy(user.id, company, quantity, unit_price, session.round)
        except TradingError:
            session.pool.release(company, quantity)
            raise

    def _apply_sell(self, session: MarketSession, user: User, company: str,
                    quantity: int, unit_price: int) -> tuple[User, TradeLog]:
        session.ledger.validate_sell(user, company, quantity)

        session.pool.release(company, quantity)
        try:
            return session.ledger.apply_sell(user.id, company, quantity, unit_price, session.round)
        except TradingError:
            session.pool.reserve(company, quantity)
            raise

    def _check_tradable(self, session: MarketSession, user: User,
                        expected_round: Optional[int]) -> None:
        if session.phase != SessionPhase.OPEN:
            raise MarketClosedError(f"Session is {session.phase.value}")
        if not session.is_transaction_open:
            raise MarketClosedError("Trading is closed for this round")
        if session.price_series.is_final_round:
            raise MarketClosedError(
                f"Round {session.round} is the final round; positions are valued, not traded",
                context={"round": session.round}
            )
        if expected_round is not None and expected_round != session.round:
            raise MarketClosedError(
                f"Round {expected_round} has ended; the market is now in round {session.round}",
                context={"expected_round": expected_round, "round": session.round}
            )
        if user.is_frozen:
            raise UserFrozenError(context={"user_id": user.id})

    @staticmethod
    def _check_quantity(quantity: Any) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(
                f"Quantity must be a positive integer, got {quantity!r}",
                context={"quantity": quantity}
            )

    # Loans

    def start_loan(self, session_id: str, user_id: str) -> EngineResult:
        return self._account_operation(
            "start_loan", session_id, user_id,
            lambda session: session.ledger.start_loan(user_id, session.round)
        )

    def settle_loan(self, session_id: str, user_id: str) -> EngineResult:
        return self._account_operation(
            "settle_loan", session_id, user_id,
            lambda session: session.ledger.settle_loan(user_id, session.round)
        )

    def _account_operation(
        self,
        operation: str,
        session_id: str,
        user_id: str,
        apply: Callable[[MarketSession], User]
    ) -> EngineResult:
        try:
            session = self.registry.get(session_id)
            session.ledger.get_user(user_id)
        except (SessionNotFoundError, UserNotFoundError) as e:
            return self._refused(operation, session_id, user_id, e)

        with session.lock:
            try:
                if session.phase == SessionPhase.CLOSED:
                    raise SessionClosedError(f"Session {session_id} is closed")
                if session.ledger.get_user(user_id).is_frozen:
                    raise UserFrozenError(context={"user_id": user_id})
                updated = apply(session)
            except TradingError as e:
                return self._refused(operation, session_id, user_id, e)
            self.registry.commit(session)

        log_trade_decision(
            self.trade_logger,
            action=operation,
            accepted=True,
            session_id=session_id,
            user_id=user_id,
            context={"money": updated.money, "round": session.round}
        )
        return EngineResult.success(updated)

    # Rounds and administration

    def advance_round(self, session_id: str) -> EngineResult:
        """
        Settle the current round and publish the next one.

        At the final round the session closes instead and the result carries
        a RoundLimitExceeded failure with the closing snapshot as its value.
        """
        try:
            session = self.registry.get(session_id)
        except SessionNotFoundError as e:
            return self._refused("advance_round", session_id, None, e)

        with session.lock:
            if session.phase == SessionPhase.CLOSED:
                return self._refused("advance_round", session_id, None,
                                     SessionClosedError(f"Session {session_id} is closed"))

            from_round = session.round
            session.set_phase(SessionPhase.SETTLING, "advance_round", {"round": from_round})
            try:
                with bound_contextvars(session_id=session_id):
                    prices = session.price_series.advance_round()
            except RoundLimitExceededError as e:
                session.is_transaction_open = False
                session.set_phase(SessionPhase.CLOSED, "round_limit",
                                  {"round": from_round, "max_rounds": e.max_rounds})
                self.registry.commit(session)
                return EngineResult.failure(e, value=session.snapshot)
            except Exception:
                session.set_phase(SessionPhase.OPEN, "settlement_aborted", {"round": from_round})
                raise

            session.set_phase(SessionPhase.OPEN, "round_published",
                              {"round": session.round, "prices": prices})
            self.registry.commit(session)

        self.logger.info(
            "Advanced round",
            session_id=session_id,
            round=session.round,
            prices=prices
        )
        return EngineResult.success(session.snapshot)

    def set_transaction_open(self, session_id: str, is_open: bool) -> EngineResult:
        """Open or close the order window of the current round."""
        try:
            session = self.registry.get(session_id)
        except SessionNotFoundError as e:
            return self._refused("set_transaction_open", session_id, None, e)

        with session.lock:
            if is_open and session.phase == SessionPhase.CLOSED:
                return self._refused("set_transaction_open", session_id, None,
                                     SessionClosedError(f"Session {session_id} is closed"))
            session.is_transaction_open = is_open
            self.registry.commit(session)

        self.logger.info("Transaction window changed", session_id=session_id,
                         is_open=is_open, round=session.round)
        return EngineResult.success(session.snapshot)

    def close_session(self, session_id: str) -> EngineResult:
        try:
            session = self.registry.get(session_id)
        except SessionNotFoundError as e:
            return self._refused("close_session", session_id, None, e)

        with session.lock:
            if session.phase != SessionPhase.CLOSED:
                session.is_transaction_open = False
                session.set_phase(SessionPhase.CLOSED, "admin_close", {"round": session.round})
                self.registry.commit(session)
        return EngineResult.success(session.snapshot)

    def freeze_user(self, session_id: str, user_id: str) -> EngineResult:
        return self._set_frozen(session_id, user_id, True)

    def unfreeze_user(self, session_id: str, user_id: str) -> EngineResult:
        return self._set_frozen(session_id, user_id, False)

    def _set_frozen(self, session_id: str, user_id: str, is_frozen: bool) -> EngineResult:
        operation = "freeze_user" if is_frozen else "unfreeze_user"
        try:
            session = self.registry.get(session_id)
            with session.lock:
                user = session.ledger.set_frozen(user_id, is_frozen)
                self.registry.commit(session)
        except TradingError as e:
            return self._refused(operation, session_id, user_id, e)

        self.logger.info("User frozen state changed", session_id=session_id,
                         user_id=user_id, is_frozen=is_frozen)
        return EngineResult.success(user)

    # User maintenance

    def register_user(self, session_id: str, draft: UserDraft) -> EngineResult:
        return self._delegate("register_user", session_id, draft.user_id,
                              lambda: self.registry.register_user(session_id, draft))

    def remove_user(self, session_id: str, user_id: str) -> EngineResult:
        return self._delegate("remove_user", session_id, user_id,
                              lambda: self.registry.remove_user(session_id, user_id))

    def remove_all_users(self, session_id: str) -> EngineResult:
        return self._delegate("remove_all_users", session_id, None,
                              lambda: self.registry.remove_all_users(session_id))

    def align_index(self, session_id: str) -> EngineResult:
        return self._delegate("align_index", session_id, None,
                              lambda: self.registry.align_index(session_id))

    def set_introduction(self, session_id: str, user_id: str, introduction: str) -> EngineResult:
        return self._delegate("set_introduction", session_id, user_id,
                              lambda: self.registry.set_introduction(session_id, user_id, introduction))

    def _delegate(self, operation: str, session_id: str, user_id: Optional[str],
                  call: Callable[[], Any]) -> EngineResult:
        try:
            return EngineResult.success(call())
        except TradingError as e:
            return self._refused(operation, session_id, user_id, e)

    # Queries

    def get_user(self, session_id: str, user_id: str) -> User:
        return self.registry.get_user(session_id, user_id)

    def get_user_list(self, session_id: str) -> list[User]:
        return self.registry.get_user_list(session_id)

    def get_user_count(self, session_id: str) -> int:
        return self.registry.get_user_count(session_id)

    def get_market_snapshot(self, session_id: str) -> MarketSnapshot:
        return self.registry.get(session_id).snapshot

    def get_trade_logs(self, session_id: str, user_id: str, company: Optional[str] = None,
                       round: Optional[int] = None) -> list[TradeLog]:
        """Trade logs of one user, successful and refused, in append order."""
        session = self.registry.get(session_id)
        session.ledger.get_user(user_id)
        return session.ledger.logs(user_id=user_id, company=company, round_index=round)

    def get_position(self, session_id: str, user_id: str, company: str) -> Position:
        """Holding, cost basis and profit of one user's position."""
        session = self.registry.get(session_id)
        snapshot = session.snapshot
        user = session.ledger.get_user(user_id)
        current_price = session.price_series.current_price(company)

        quantity = user.holding(company)
        average = user.average_costs.get(company) if quantity else None
        return Position(
            company=company,
            quantity=quantity,
            average_purchase_price=average,
            current_price=current_price,
            profit_rate=profit_rate(current_price, average),
            remaining_stock=snapshot.remaining_stocks.get(company, 0),
            is_over_limit=session.holding_limit(
                session.ledger.user_count(), quantity, 1, session.pool.initial_supply(company)
            ),
        )

    def get_runtime_stats(self) -> dict[str, Any]:
        """Get runtime statistics."""
        return {
            "sessions": len(self.registry.session_ids()),
            "events": self.events.get_stats(),
            "persistence": self.store.get_stats() if self.store else None,
        }

    def _refused(self, operation: str, session_id: str, user_id: Optional[str],
                 error: TradingError) -> EngineResult:
        log_trade_decision(
            self.trade_logger,
            action=operation,
            accepted=False,
            session_id=session_id,
            user_id=user_id or "-",
            reason=error.reason,
            context={"code": error.code, **error.context}
        )
        return EngineResult.failure(error)
