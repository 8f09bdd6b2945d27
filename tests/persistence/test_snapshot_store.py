"""Tests for the session snapshot store."""

import pytest
import sqlite3
import tempfile
import threading
import os
from pathlib import Path
from datetime import timedelta
from unittest.mock import patch

from party_stock.config.loader import ConfigLoader
from party_stock.config.defaults import config_from_dict
from party_stock.errors import PersistenceError
from party_stock.persistence.snapshot_store import SnapshotStore, StoredSnapshot
from party_stock.state.models import SessionPhase, TradeAction
from party_stock.state.session import MarketSession
from party_stock.utils.time import utc_now


def _payload(session_id="s1", round_index=0, phase="open"):
    return {"session_id": session_id, "round": round_index, "phase": phase, "users": []}


class TestStoredSnapshot:
    """Test StoredSnapshot dataclass."""

    def test_stored_snapshot_creation(self):
        snapshot = StoredSnapshot(
            session_id="s1",
            round=2,
            phase="open",
            payload={"session_id": "s1"},
            saved_at="2024-01-01T12:00:00+00:00"
        )

        assert snapshot.session_id == "s1"
        assert snapshot.round == 2
        assert snapshot.version == 1


class TestSnapshotStore:
    """Test SnapshotStore class."""

    def setup_method(self):
        """Setup test database."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test_sessions.db")
        self.store = SnapshotStore(self.db_path)

    def teardown_method(self):
        """Cleanup test database."""
        import shutil
        shutil.rmtree(self.temp_dir)

    def test_init_database(self):
        """Test database initialization."""
        assert Path(self.db_path).exists()

        with self.store._get_connection() as conn:
            cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = [row[0] for row in cursor.fetchall()]
            assert "session_snapshots" in tables

    def test_save_and_load(self):
        version = self.store.save(_payload(round_index=3))
        loaded = self.store.load("s1")

        assert version == 1
        assert loaded.round == 3
        assert loaded.phase == "open"
        assert loaded.payload == _payload(round_index=3)

    def test_save_replaces_and_bumps_version(self):
        self.store.save(_payload(round_index=0))
        version = self.store.save(_payload(round_index=1, phase="closed"))

        loaded = self.store.load("s1")
        assert version == 2
        assert loaded.version == 2
        assert loaded.phase == "closed"
        assert self.store.session_ids() == ["s1"]

    def test_load_missing(self):
        assert self.store.load("missing") is None

    def test_load_all_and_cutoff(self):
        self.store.save(_payload("a"))
        self.store.save(_payload("b"))

        assert {s.session_id for s in self.store.load_all()} == {"a", "b"}
        assert self.store.load_all(newer_than=utc_now() + timedelta(hours=1)) == []

    def test_delete(self):
        self.store.save(_payload())
        assert self.store.delete("s1")
        assert not self.store.delete("s1")

    def test_cleanup_expired(self):
        self.store.save(_payload("a"))
        self.store.save(_payload("b"))

        assert self.store.cleanup_expired(24.0) == 0
        assert self.store.cleanup_expired(1.0, now=utc_now() + timedelta(hours=2)) == 2
        assert self.store.session_ids() == []

    def test_get_stats(self):
        self.store.save(_payload("a"))
        self.store.save(_payload("b", phase="closed"))

        stats = self.store.get_stats()
        assert stats["total_snapshots"] == 2
        assert stats["snapshots_by_phase"] == {"open": 1, "closed": 1}

    def test_database_error_raises_persistence_error(self):
        with patch("party_stock.persistence.snapshot_store.sqlite3.connect",
                   side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(PersistenceError) as exc_info:
                self.store.load("s1")

        assert exc_info.value.operation == "sqlite"


class TestSessionSnapshotRoundTrip:
    """A persisted session restores users, prices, logs and remaining stock."""

    def test_round_trip_through_store(self, tmp_path, market_overrides):
        loader = ConfigLoader.create("/nonexistent")
        session = MarketSession("s1", config_from_dict(loader.merge_config("s1", market_overrides)))

        with session.lock:
            session.ledger.add_user("alice", 1000000, "hi")
            session.pool.reserve("Koi Foods", 2)
            session.ledger.apply_buy("alice", "Koi Foods", 2, 100000, 0)
            session.price_series.advance_round()
            session.ledger.start_loan("alice", 1)
            session.is_transaction_open = False
            session.publish()

        store = SnapshotStore(tmp_path / "sessions.db")
        store.save(session.to_dict())
        restored = MarketSession.from_dict(store.load("s1").payload)

        assert restored.round == 1
        assert restored.companies == session.companies
        assert restored.price_series.history() == session.price_series.history()
        assert restored.pool.remaining_stocks() == {"Koi Foods": 8, "Otter Tech": 10}
        assert restored.ledger.get_user("alice") == session.ledger.get_user("alice")
        assert restored.ledger.logs() == session.ledger.logs()
        assert restored.ledger.logs()[0].action == TradeAction.BUY
        assert restored.phase == SessionPhase.OPEN
        assert restored.is_transaction_open is False
        assert restored.created_at == session.created_at
        assert restored.snapshot.remaining_stocks["Koi Foods"] == 8

    def test_restored_session_continues_price_moves(self, tmp_path, market_overrides):
        loader = ConfigLoader.create("/nonexistent")
        session = MarketSession("s1", config_from_dict(loader.merge_config("s1", market_overrides)))
        session.price_series.advance_round()

        store = SnapshotStore(tmp_path / "sessions.db")
        store.save(session.to_dict())
        restored = MarketSession.from_dict(store.load("s1").payload)

        assert restored.price_series.advance_round() == session.price_series.advance_round()


class TestWriteLocks:
    """Writes to one session do not wait on another session's writes."""

    def test_other_session_saves_while_one_is_locked(self, tmp_path):
        store = SnapshotStore(tmp_path / "sessions.db")
        finished = threading.Event()

        def save_other():
            store.save(_payload("s2"))
            finished.set()

        with store._write_lock("s1"):
            worker = threading.Thread(target=save_other)
            worker.start()
            assert finished.wait(timeout=5)
        worker.join()

        assert store.load("s2").version == 1

    def test_same_session_shares_lock(self, tmp_path):
        store = SnapshotStore(tmp_path / "sessions.db")
        assert store._write_lock("s1") is store._write_lock("s1")
        assert store._write_lock("s1") is not store._write_lock("s2")
