"""
Trade event module.

Publish-on-append notifications for trade logs.
"""

from .bus import TradeEventBus, TradeNotification

__all__ = ["TradeEventBus", "TradeNotification"]
