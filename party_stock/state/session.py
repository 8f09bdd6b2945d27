"""
Per-session market container.

A MarketSession bundles the price series, inventory pool and ledger of one
session behind a single re-entrant lock. Every mutation runs under that
lock; after each commit the session publishes a fresh MarketSnapshot that
lock-free readers pick up in one reference read.
"""

import threading
from datetime import datetime
from typing import Any, Optional

from ..config.defaults import DefaultConfig, config_from_dict, config_to_dict
from ..market.inventory import HoldingLimitPolicy, InventoryPool, build_holding_limit
from ..market.ledger import Ledger
from ..market.price_series import PriceSeries
from ..utils.time import format_timestamp, parse_timestamp, utc_now
from . import machine
from .models import MarketSnapshot, SessionPhase, TradeLog, User


class MarketSession:
    """Mutable market state of one session."""

    def __init__(
        self,
        session_id: str,
        config: DefaultConfig,
        holding_limit: Optional[HoldingLimitPolicy] = None,
        created_at: Optional[datetime] = None
    ) -> None:
        self.id = session_id
        self.config = config
        self.lock = threading.RLock()
        self.created_at = created_at or utc_now()

        market = config.market
        initial_prices = market.initial_prices or {}
        supply = market.supply_by_company or {}

        self.price_series = PriceSeries(
            {c: initial_prices.get(c, market.initial_price) for c in market.companies},
            config.fluctuation,
            market.max_rounds,
            market.price_schedule,
        )
        self.pool = InventoryPool({c: supply.get(c, market.initial_supply) for c in market.companies})
        self.ledger = Ledger(session_id, config.loan)
        self.holding_limit = holding_limit or build_holding_limit(config.holding_limit)

        self.phase = SessionPhase.OPEN
        self.is_transaction_open = True
        self._snapshot: Optional[MarketSnapshot] = None
        self.publish()

    @property
    def round(self) -> int:
        return self.price_series.current_round

    @property
    def companies(self) -> tuple[str, ...]:
        return self.config.market.companies

    @property
    def snapshot(self) -> MarketSnapshot:
        """Last committed market view."""
        return self._snapshot  # type: ignore[return-value]

    def set_phase(self, target: SessionPhase, trigger: str,
                  context: Optional[dict[str, Any]] = None) -> None:
        """Move to another phase and publish it; callers hold the lock."""
        self.phase = machine.transition(self.id, self.phase, target, trigger, context)
        self.publish()

    def publish(self) -> MarketSnapshot:
        """Build and publish the market view of the current state."""
        self._snapshot = MarketSnapshot(
            session_id=self.id,
            round=self.round,
            phase=self.phase,
            is_transaction_open=self.is_transaction_open,
            fluctuation_interval=self.config.market.fluctuation_interval,
            max_rounds=self.config.market.max_rounds,
            companies=self.companies,
            prices=self.price_series.current_prices(),
            remaining_stocks=self.pool.remaining_stocks(),
            price_history=self.price_series.history(),
        )
        return self._snapshot

    def to_dict(self) -> dict[str, Any]:
        """Point-in-time state for the snapshot store; callers hold the lock."""
        return {
            "session_id": self.id,
            "created_at": format_timestamp(self.created_at),
            "config": config_to_dict(self.config),
            "phase": self.phase.value,
            "is_transaction_open": self.is_transaction_open,
            "round": self.round,
            "price_history": self.price_series.history(),
            "rng_state": self.price_series.rng_state(),
            "remaining_stocks": self.pool.remaining_stocks(),
            "users": [user.to_dict() for user in self.ledger.users()],
            "logs": [log.to_dict() for log in self.ledger.logs()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any],
                  holding_limit: Optional[HoldingLimitPolicy] = None) -> "MarketSession":
        """Rebuild a session written by to_dict."""
        config = config_from_dict(data["config"])
        session = cls(data["session_id"], config, holding_limit,
                      created_at=parse_timestamp(data["created_at"]))

        session.price_series = PriceSeries.from_history(
            data["price_history"], config.fluctuation,
            config.market.max_rounds, config.market.price_schedule,
            rng_state=data.get("rng_state")
        )
        session.pool = InventoryPool(session.pool.initial_stocks(), data["remaining_stocks"])
        session.ledger = Ledger.restore(
            session.id, config.loan,
            [User.from_dict(u) for u in data["users"]],
            [TradeLog.from_dict(log) for log in data["logs"]],
        )
        session.phase = SessionPhase(data["phase"])
        session.is_transaction_open = data["is_transaction_open"]
        session.publish()
        return session
