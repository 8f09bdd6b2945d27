"""Pytest configuration and shared fixtures."""

import pytest
from typing import Dict, Any
from pathlib import Path

from party_stock.config.defaults import get_default_config, config_from_dict
from party_stock.config.loader import ConfigLoader
from party_stock.engine import TradeEngine
from party_stock.events import TradeEventBus
from party_stock.state.models import UserDraft
from party_stock.state.registry import SessionRegistry


@pytest.fixture
def config_dir(tmp_path) -> Path:
    """Empty configuration directory so tests never read the repo's sessions.yaml."""
    directory = tmp_path / "config"
    directory.mkdir()
    return directory


@pytest.fixture
def market_overrides() -> Dict[str, Any]:
    """Small deterministic market used across engine tests."""
    return {
        "market": {
            "companies": ["Koi Foods", "Otter Tech"],
            "initial_price": 100000,
            "initial_supply": 10,
            "max_rounds": 3,
        },
        "fluctuation": {"seed": 7},
        "account": {"initial_money": 1000000},
    }


@pytest.fixture
def default_config():
    """Default configuration dataclass."""
    return get_default_config()


@pytest.fixture
def small_config(market_overrides):
    """DefaultConfig built from market_overrides on top of the defaults."""
    loader = ConfigLoader.create("/nonexistent")
    return config_from_dict(loader.merge_config("test", market_overrides))


@pytest.fixture
def event_bus() -> TradeEventBus:
    return TradeEventBus()


@pytest.fixture
def engine(config_dir, event_bus) -> TradeEngine:
    """Engine without persistence and with direct registration."""
    registry = SessionRegistry(ConfigLoader.create(config_dir))
    return TradeEngine(config_dir=str(config_dir), registry=registry, event_bus=event_bus)


@pytest.fixture
def session_with_users(engine, market_overrides):
    """Engine with session "s1" holding users "alice" and "bob"."""
    engine.create_session("s1", market_overrides).unwrap()
    engine.register_user("s1", UserDraft(user_id="alice", introduction="Likes fish")).unwrap()
    engine.register_user("s1", UserDraft(user_id="bob")).unwrap()
    return engine
