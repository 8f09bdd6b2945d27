"""
Trade event notification.

Every appended trade log, successful or refused, is published to the bus
once its session lock has been released. Subscribers filter by session and
user, so a client gets exactly the notifications for its own attempts
without diffing log lists.
"""

import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ..state.models import TradeAction, TradeLog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TradeNotification:
    """User-facing message derived from a trade log."""

    log: TradeLog
    level: str                                       # "success" or "error"
    message: str

    @classmethod
    def from_log(cls, log: TradeLog) -> "TradeNotification":
        if log.failed_reason:
            return cls(log=log, level="error", message=log.failed_reason)
        if log.action == TradeAction.BUY:
            return cls(log=log, level="success",
                       message=f"Bought {log.quantity} share(s) of {log.company}.")
        return cls(log=log, level="success",
                   message=f"Sold {log.quantity} share(s) of {log.company}.")


TradeSubscriber = Callable[[TradeNotification], None]


@dataclass(frozen=True)
class _Subscription:
    id: str
    callback: TradeSubscriber
    session_id: Optional[str]
    user_id: Optional[str]
    company: Optional[str]

    def matches(self, log: TradeLog) -> bool:
        return ((self.session_id is None or self.session_id == log.session_id)
                and (self.user_id is None or self.user_id == log.user_id)
                and (self.company is None or self.company == log.company))


class TradeEventBus:
    """In-process publish/subscribe channel for trade logs."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, _Subscription] = {}
        self._lock = threading.RLock()
        self._published_count = 0
        self._error_count = 0

    def subscribe(
        self,
        callback: TradeSubscriber,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        company: Optional[str] = None
    ) -> str:
        """
        Register a callback for matching trade logs.

        Returns:
            Subscription id for unsubscribe
        """
        subscription = _Subscription(
            id=uuid.uuid4().hex,
            callback=callback,
            session_id=session_id,
            user_id=user_id,
            company=company,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription.id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def publish(self, log: TradeLog) -> int:
        """
        Deliver a trade log to matching subscribers.

        A failing subscriber is logged and skipped; the others still receive
        the notification.

        Returns:
            Number of subscribers notified successfully
        """
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.matches(log)]

        notification = TradeNotification.from_log(log)
        delivered = 0
        for subscription in targets:
            try:
                subscription.callback(notification)
                delivered += 1
            except Exception as e:
                self._error_count += 1
                logger.error(
                    "Trade subscriber failed",
                    subscription_id=subscription.id,
                    session_id=log.session_id,
                    log_id=log.id,
                    error=str(e),
                    error_type=type(e).__name__
                )

        self._published_count += 1
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def get_stats(self) -> dict[str, int]:
        return {
            "subscribers": self.subscriber_count(),
            "published": self._published_count,
            "subscriber_errors": self._error_count,
        }
