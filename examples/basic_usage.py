#!/usr/bin/env python3
"""
Basic Usage Example - Party Stock Trading Engine

This script plays a short scripted game against the trading engine. It shows
how to:
- Initialize the engine and create a session
- Register players
- Buy, sell and take loans across rounds
- Watch trade notifications and positions

Run: python examples/basic_usage.py
"""

from party_stock.engine import TradeEngine
from party_stock.events import TradeNotification
from party_stock.logging.config import configure_logging
from party_stock.state.models import UserDraft


SESSION_ID = "demo"

SESSION_OVERRIDES = {
    "market": {
        "companies": ["Koi Foods", "Otter Tech"],
        "initial_supply": 10,
        "max_rounds": 3,
        "price_schedule": {
            "Koi Foods": [90000, 99000, 120000],
            "Otter Tech": [150000, 120000, 135000],
        },
    },
    "account": {"initial_money": 1000000},
}


def print_notification(notification: TradeNotification) -> None:
    """Print a trade notification the way a client toast would show it."""
    marker = "OK " if notification.level == "success" else "ERR"
    log = notification.log
    print(f"   [{marker}] round {log.round} {log.user_id}: {notification.message}")


def print_positions(engine: TradeEngine, user_id: str) -> None:
    """Print cash and every open position of a player."""
    user = engine.get_user(SESSION_ID, user_id)
    print(f"📊 {user_id}: money={user.money}")
    for company in engine.get_market_snapshot(SESSION_ID).companies:
        position = engine.get_position(SESSION_ID, user_id, company)
        if position.quantity:
            print(f"   {company}: {position.quantity} @ {position.average_purchase_price:.0f}"
                  f" (now {position.current_price}, profit {position.profit_rate:+.1f}%)")
    print()


def print_market(engine: TradeEngine) -> None:
    snapshot = engine.get_market_snapshot(SESSION_ID)
    print(f"   Round {snapshot.round} ({snapshot.phase.value})")
    for company in snapshot.companies:
        print(f"   {company}: price={snapshot.prices[company]}"
              f" remaining={snapshot.remaining_stocks[company]}")
    print()


def main():
    """Main demonstration function."""
    configure_logging(level="WARNING")

    print("🚀 Party Stock Trading Engine - Basic Usage Demo")
    print("=" * 60)

    print("1. Initializing the trading engine...")
    engine = TradeEngine()
    engine.events.subscribe(print_notification, session_id=SESSION_ID)
    engine.create_session(SESSION_ID, SESSION_OVERRIDES).unwrap()
    print_market(engine)

    print("2. Registering players...")
    for name, intro in (("alice", "Likes fish"), ("bob", "Otter fan")):
        result = engine.register_user(SESSION_ID, UserDraft(user_id=name, introduction=intro))
        print(f"   Registered {name} ({result.value.message_id})")
    print()

    print("3. Round 0 trading...")
    engine.buy(SESSION_ID, "alice", "Koi Foods", 3)
    engine.buy(SESSION_ID, "bob", "Otter Tech", 4)
    engine.buy(SESSION_ID, "bob", "Otter Tech", 2)       # refused by the holding limit
    engine.sell(SESSION_ID, "alice", "Otter Tech", 1)    # refused, nothing held
    print()

    print("4. Advancing to round 1...")
    engine.advance_round(SESSION_ID).unwrap()
    print_market(engine)
    print_positions(engine, "alice")
    print_positions(engine, "bob")

    print("5. Round 1: a loan and more trading...")
    engine.start_loan(SESSION_ID, "bob")
    engine.buy(SESSION_ID, "bob", "Koi Foods", 5)
    engine.sell_all(SESSION_ID, "alice", "Koi Foods")
    print()

    print("6. Advancing to the final round and closing...")
    engine.advance_round(SESSION_ID).unwrap()
    engine.sell(SESSION_ID, "bob", "Otter Tech", 1)     # refused, the final round only values positions
    repayment = engine.settle_loan(SESSION_ID, "bob")
    print(f"   Loan settlement: {repayment.code or 'settled'}")
    closing = engine.advance_round(SESSION_ID)
    print(f"   Advance at final round: {closing.code}")
    engine.buy(SESSION_ID, "alice", "Otter Tech", 1)
    print_market(engine)

    print("7. Final standings:")
    for user in engine.get_user_list(SESSION_ID):
        print_positions(engine, user.id)

    stats = engine.get_runtime_stats()
    print(f"   Sessions: {stats['sessions']}, notifications published: {stats['events']['published']}")
    print()
    print("✅ Demo completed successfully!")


if __name__ == "__main__":
    main()
