"""Unit tests for the trading engine."""

import pytest
from unittest.mock import patch

from party_stock.engine import EngineResult, TradeEngine
from party_stock.errors import InsufficientFundsError
from party_stock.state.models import SessionPhase, TradeAction, UserDraft


class TestEngineResult:
    """Test the operation result wrapper."""

    def test_success(self):
        result = EngineResult.success("value")
        assert result.ok
        assert result.unwrap() == "value"
        assert result.code is None
        assert result.failed_reason is None

    def test_failure(self):
        error = InsufficientFundsError()
        result = EngineResult.failure(error)

        assert not result.ok
        assert result.code == "InsufficientFunds"
        assert result.failed_reason == "Not enough money."
        with pytest.raises(InsufficientFundsError):
            result.unwrap()


class TestSessionOperations:
    """Test session creation through the engine."""

    def test_create_session(self, engine, market_overrides):
        result = engine.create_session("s1", market_overrides)

        assert result.ok
        assert result.value.companies == ("Koi Foods", "Otter Tech")
        assert result.value.phase == SessionPhase.OPEN

    def test_create_duplicate_session(self, engine):
        engine.create_session("s1")
        result = engine.create_session("s1")
        assert result.code == "AlreadyExists"

    def test_create_invalid_session(self, engine):
        result = engine.create_session("s1", {"loan": {"interest_rate": -1}})
        assert result.code == "InvalidConfig"

    def test_destroy_session(self, engine):
        engine.create_session("s1")
        assert engine.destroy_session("s1").ok
        assert engine.destroy_session("s1").code == "SessionNotFound"

    def test_register_duplicate_user(self, session_with_users):
        result = session_with_users.register_user("s1", UserDraft(user_id="alice"))
        assert result.code == "AlreadyExists"

    def test_register_returns_direct_message_id(self, engine):
        engine.create_session("s1")
        result = engine.register_user("s1", UserDraft(user_id="alice"))
        assert result.value.message_id == "direct"
        assert result.value.user.money == 1000000


class TestBuy:
    """Test buy validation and application."""

    def test_buy_success(self, session_with_users):
        engine = session_with_users
        result = engine.buy("s1", "alice", "Koi Foods", 2)

        assert result.ok
        assert result.value.money == 800000
        assert result.value.holding("Koi Foods") == 2
        assert result.log.action == TradeAction.BUY
        assert result.log.quantity == 2
        assert result.log.unit_price == 100000
        assert engine.get_market_snapshot("s1").remaining_stocks["Koi Foods"] == 8

    def test_buy_insufficient_funds(self, session_with_users):
        engine = session_with_users
        result = engine.buy("s1", "alice", "Koi Foods", 11)

        assert result.code == "InsufficientFunds"
        assert result.log is not None
        assert result.log.failed_reason == result.failed_reason
        assert engine.get_user("s1", "alice").money == 1000000
        assert engine.get_market_snapshot("s1").remaining_stocks["Koi Foods"] == 10

    def test_buy_over_holding_limit(self, session_with_users):
        engine = session_with_users
        assert engine.buy("s1", "alice", "Koi Foods", 5).ok

        result = engine.buy("s1", "alice", "Koi Foods", 1)
        assert result.code == "OverHoldingLimit"
        assert engine.get_market_snapshot("s1").remaining_stocks["Koi Foods"] == 5

    def test_single_player_has_no_holding_limit(self, engine, market_overrides):
        engine.create_session("solo", market_overrides)
        engine.register_user("solo", UserDraft(user_id="alice"))

        assert engine.buy("solo", "alice", "Koi Foods", 10).ok
        assert engine.get_market_snapshot("solo").remaining_stocks["Koi Foods"] == 0

    def test_buy_insufficient_supply(self, engine, market_overrides):
        overrides = dict(market_overrides, holding_limit={"enabled": False})
        engine.create_session("s1", overrides)
        engine.register_user("s1", UserDraft(user_id="alice"))
        engine.register_user("s1", UserDraft(user_id="bob"))

        assert engine.buy("s1", "alice", "Koi Foods", 10).ok
        result = engine.buy("s1", "bob", "Koi Foods", 1)

        assert result.code == "InsufficientSupply"
        assert engine.get_user("s1", "bob").money == 1000000

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, None])
    def test_invalid_quantity(self, session_with_users, quantity):
        result = session_with_users.buy("s1", "alice", "Koi Foods", quantity)
        assert result.code == "InvalidQuantity"

    def test_unknown_company_is_logged(self, session_with_users):
        engine = session_with_users
        result = engine.buy("s1", "alice", "Nope Corp", 1)

        assert result.code == "UnknownCompany"
        assert result.log.company == "Nope Corp"
        assert result.log.unit_price == 0

    def test_unknown_session_is_not_logged(self, engine, event_bus):
        received = []
        event_bus.subscribe(received.append)

        result = engine.buy("missing", "alice", "Koi Foods", 1)

        assert result.code == "SessionNotFound"
        assert result.log is None
        assert received == []

    def test_unknown_user_is_not_logged(self, session_with_users):
        engine = session_with_users
        result = engine.buy("s1", "ghost", "Koi Foods", 1)

        assert result.code == "UserNotFound"
        assert result.log is None
        assert engine.registry.get("s1").ledger.logs() == []

    def test_frozen_user(self, session_with_users):
        engine = session_with_users
        assert engine.freeze_user("s1", "alice").value.is_frozen

        assert engine.buy("s1", "alice", "Koi Foods", 1).code == "UserFrozen"

        engine.unfreeze_user("s1", "alice")
        assert engine.buy("s1", "alice", "Koi Foods", 1).ok

    def test_freeze_unknown_user(self, session_with_users):
        assert session_with_users.freeze_user("s1", "ghost").code == "UserNotFound"

    def test_transaction_window_closed(self, session_with_users):
        engine = session_with_users
        engine.set_transaction_open("s1", False)

        result = engine.buy("s1", "alice", "Koi Foods", 1)
        assert result.code == "MarketClosed"
        assert not engine.get_market_snapshot("s1").is_tradable

        engine.set_transaction_open("s1", True)
        assert engine.buy("s1", "alice", "Koi Foods", 1).ok

    def test_stale_round_rejected(self, session_with_users):
        engine = session_with_users
        engine.advance_round("s1")

        assert engine.buy("s1", "alice", "Koi Foods", 1, expected_round=0).code == "MarketClosed"
        assert engine.buy("s1", "alice", "Koi Foods", 1, expected_round=1).ok


class TestSell:
    """Test sell validation and application."""

    def test_sell_success(self, session_with_users):
        engine = session_with_users
        engine.buy("s1", "alice", "Koi Foods", 3)

        result = engine.sell("s1", "alice", "Koi Foods", 1)

        assert result.ok
        assert result.value.money == 800000
        assert result.value.holding("Koi Foods") == 2
        assert result.value.average_costs["Koi Foods"] == 100000.0
        assert engine.get_market_snapshot("s1").remaining_stocks["Koi Foods"] == 8

    def test_sell_more_than_held(self, session_with_users):
        engine = session_with_users
        engine.buy("s1", "alice", "Koi Foods", 1)

        result = engine.sell("s1", "alice", "Koi Foods", 2)

        assert result.code == "InsufficientShares"
        assert engine.get_user("s1", "alice").holding("Koi Foods") == 1
        assert engine.get_market_snapshot("s1").remaining_stocks["Koi Foods"] == 9

    def test_sell_all(self, session_with_users):
        engine = session_with_users
        engine.buy("s1", "alice", "Otter Tech", 4)

        result = engine.sell_all("s1", "alice", "Otter Tech")

        assert result.ok
        assert result.log.quantity == 4
        assert result.value.holding("Otter Tech") == 0
        assert "Otter Tech" not in result.value.average_costs

    def test_sell_all_without_holding_is_noop(self, session_with_users):
        engine = session_with_users
        result = engine.sell_all("s1", "alice", "Otter Tech")

        assert result.ok
        assert result.log is None
        assert engine.get_trade_logs("s1", "alice") == []


class TestRounds:
    """Test round advancement and session closing."""

    def test_advance_round(self, session_with_users):
        engine = session_with_users
        result = engine.advance_round("s1")

        assert result.ok
        assert result.value.round == 1
        assert result.value.phase == SessionPhase.OPEN
        assert all(len(prices) == 2 for prices in result.value.price_history.values())

    def test_advance_past_final_round_closes(self, session_with_users):
        engine = session_with_users
        engine.advance_round("s1")
        engine.advance_round("s1")

        result = engine.advance_round("s1")

        assert result.code == "RoundLimitExceeded"
        assert result.value.phase == SessionPhase.CLOSED
        assert engine.get_market_snapshot("s1").round == 2
        assert engine.buy("s1", "alice", "Koi Foods", 1).code == "MarketClosed"
        assert engine.sell("s1", "alice", "Koi Foods", 1).code == "MarketClosed"
        assert engine.advance_round("s1").code == "SessionClosed"

    def test_trades_during_settlement_fail_fast(self, session_with_users):
        engine = session_with_users
        session = engine.registry.get("s1")
        publish_next_round = session.price_series.advance_round
        during_settlement = []

        def advance():
            during_settlement.append(engine.buy("s1", "alice", "Koi Foods", 1))
            return publish_next_round()

        session.price_series.advance_round = advance
        engine.advance_round("s1")

        result = during_settlement[0]
        assert result.code == "MarketClosed"
        assert result.log.round == 0
        assert engine.get_user("s1", "alice").holding("Koi Foods") == 0

    def test_settlement_error_reopens_session(self, session_with_users):
        engine = session_with_users
        session = engine.registry.get("s1")

        with patch.object(session.price_series, "advance_round", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                engine.advance_round("s1")

        assert session.phase == SessionPhase.OPEN
        assert engine.buy("s1", "alice", "Koi Foods", 1).ok

    def test_close_session(self, session_with_users):
        engine = session_with_users
        result = engine.close_session("s1")

        assert result.value.phase == SessionPhase.CLOSED
        assert not result.value.is_transaction_open
        assert engine.close_session("s1").ok
        assert engine.set_transaction_open("s1", True).code == "SessionClosed"
        assert engine.register_user("s1", UserDraft(user_id="carol")).code == "SessionClosed"


class TestLoans:
    """Test loan operations through the engine."""

    def test_start_and_settle(self, session_with_users):
        engine = session_with_users

        started = engine.start_loan("s1", "alice")
        assert started.value.money == 2000000

        assert engine.start_loan("s1", "alice").code == "LoanAlreadyActive"

        engine.advance_round("s1")
        engine.advance_round("s1")
        settled = engine.settle_loan("s1", "alice")
        assert settled.value.money == 2000000 - 1100000

    def test_settle_without_loan(self, session_with_users):
        assert session_with_users.settle_loan("s1", "alice").code == "NoActiveLoan"

    def test_loan_after_close(self, session_with_users):
        engine = session_with_users
        engine.close_session("s1")
        assert engine.start_loan("s1", "alice").code == "SessionClosed"

    def test_frozen_user_cannot_borrow(self, session_with_users):
        engine = session_with_users
        engine.freeze_user("s1", "alice")
        assert engine.start_loan("s1", "alice").code == "UserFrozen"

    def test_unknown_user(self, session_with_users):
        assert session_with_users.start_loan("s1", "ghost").code == "UserNotFound"


class TestQueries:
    """Test read queries."""

    def test_trade_logs_include_failures(self, session_with_users):
        engine = session_with_users
        engine.buy("s1", "alice", "Koi Foods", 1)
        engine.buy("s1", "alice", "Koi Foods", 50)
        engine.buy("s1", "bob", "Otter Tech", 1)

        logs = engine.get_trade_logs("s1", "alice")
        assert [log.succeeded for log in logs] == [True, False]
        assert logs[1].failed_reason is not None
        assert engine.get_trade_logs("s1", "alice", company="Otter Tech") == []
        assert len(engine.get_trade_logs("s1", "bob", round=0)) == 1

    def test_user_list_and_count(self, session_with_users):
        engine = session_with_users
        assert [u.id for u in engine.get_user_list("s1")] == ["alice", "bob"]
        assert engine.get_user_count("s1") == 2

    def test_position(self, engine):
        engine.create_session("s1", {
            "market": {
                "companies": ["A"],
                "max_rounds": 3,
                "price_schedule": {"A": [90000, 99000, 80000]},
            },
        })
        engine.register_user("s1", UserDraft(user_id="alice"))
        engine.buy("s1", "alice", "A", 3)
        engine.advance_round("s1")

        position = engine.get_position("s1", "alice", "A")

        assert position.quantity == 3
        assert position.average_purchase_price == 90000.0
        assert position.current_price == 99000
        assert position.profit_rate == pytest.approx(10.0)
        assert position.remaining_stock == 7
        assert position.is_over_limit is False

    def test_position_without_shares(self, session_with_users):
        position = session_with_users.get_position("s1", "alice", "Koi Foods")
        assert position.quantity == 0
        assert position.average_purchase_price is None
        assert position.profit_rate is None


class TestMaintenance:
    """Test user maintenance through the engine."""

    def test_remove_and_align(self, session_with_users):
        engine = session_with_users
        assert engine.remove_user("s1", "alice").ok
        users = engine.align_index("s1").value
        assert [(u.id, u.index) for u in users] == [("bob", 0)]

    def test_remove_all_users(self, session_with_users):
        assert session_with_users.remove_all_users("s1").value == 2
        assert session_with_users.get_user_count("s1") == 0

    def test_set_introduction(self, session_with_users):
        result = session_with_users.set_introduction("s1", "bob", "Owns a boat")
        assert result.value.introduction == "Owns a boat"

    def test_remove_unknown_user(self, session_with_users):
        assert session_with_users.remove_user("s1", "ghost").code == "UserNotFound"


class TestEventsAndLogging:
    """Test notifications and audit logging."""

    def test_notifications_for_success_and_failure(self, session_with_users, event_bus):
        engine = session_with_users
        received = []
        event_bus.subscribe(received.append, session_id="s1", user_id="alice")

        engine.buy("s1", "alice", "Koi Foods", 2)
        engine.sell("s1", "alice", "Koi Foods", 5)
        engine.buy("s1", "bob", "Koi Foods", 1)

        assert [n.level for n in received] == ["success", "error"]
        assert received[0].message == "Bought 2 share(s) of Koi Foods."
        assert received[1].message == received[1].log.failed_reason

    def test_subscriber_runs_without_session_lock(self, session_with_users, event_bus):
        engine = session_with_users
        session = engine.registry.get("s1")
        owned = []

        event_bus.subscribe(lambda n: owned.append(session.lock._is_owned()))
        engine.buy("s1", "alice", "Koi Foods", 1)

        assert owned == [False]

    def test_trade_decision_logged(self, session_with_users):
        engine = session_with_users
        with patch("party_stock.engine.log_trade_decision") as mock_log:
            engine.buy("s1", "alice", "Koi Foods", 50)

        kwargs = mock_log.call_args.kwargs
        assert kwargs["action"] == "buy"
        assert kwargs["accepted"] is False
        assert kwargs["context"]["code"] == "InsufficientFunds"


class TestPersistence:
    """Test snapshot persistence through the engine."""

    def test_restore_sessions(self, config_dir, tmp_path, market_overrides):
        db_path = tmp_path / "sessions.db"
        from party_stock.persistence.snapshot_store import SnapshotStore

        first = TradeEngine(config_dir=str(config_dir), store=SnapshotStore(db_path))
        first.create_session("s1", market_overrides)
        first.register_user("s1", UserDraft(user_id="alice"))
        first.buy("s1", "alice", "Koi Foods", 2)
        first.advance_round("s1")

        second = TradeEngine(config_dir=str(config_dir), store=SnapshotStore(db_path))
        assert second.restore_sessions() == 1

        assert second.get_user("s1", "alice").holding("Koi Foods") == 2
        assert second.get_market_snapshot("s1").round == 1
        assert second.get_market_snapshot("s1").remaining_stocks["Koi Foods"] == 8
        assert len(second.get_trade_logs("s1", "alice")) == 1

    def test_restore_without_store(self, engine):
        assert engine.restore_sessions() == 0

    def test_store_from_config(self, tmp_path):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        db_path = tmp_path / "from_config.db"
        (config_dir / "sessions.yaml").write_text(
            f"sessions:\n  default:\n    persistence:\n      db_path: {db_path}\n"
        )

        engine = TradeEngine(config_dir=str(config_dir))
        engine.create_session("s1")

        assert engine.store is not None
        assert engine.store.load("s1") is not None
