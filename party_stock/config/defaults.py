"""Default configuration parameters for trading sessions."""

from dataclasses import asdict, dataclass, field
from typing import Optional


@dataclass(frozen=True)
class MarketParams:
    """Companies, supply and round structure of a session."""
    companies: tuple[str, ...] = ("Koi Foods", "Otter Tech", "Heron Air", "Badger Mining")
    initial_price: int = 100000                      # Round 0 price for every company
    initial_supply: int = 10                         # Tradable shares per company
    max_rounds: int = 10                             # Rounds 0..max_rounds-1
    fluctuation_interval: int = 5                    # Minutes between rounds (client timer)
    initial_prices: Optional[dict[str, int]] = None  # Per-company round 0 overrides
    supply_by_company: Optional[dict[str, int]] = None
    price_schedule: Optional[dict[str, list[int]]] = None  # Scripted prices per round


@dataclass(frozen=True)
class FluctuationParams:
    """Per-round price change bounds."""
    max_change_pct: float = 0.3                      # Max relative move per round
    price_step: int = 100                            # Prices are multiples of this
    min_price: int = 1000
    max_price: int = 10000000
    seed: Optional[int] = None                       # RNG seed for reproducible sessions


@dataclass(frozen=True)
class AccountParams:
    """New user account parameters."""
    initial_money: int = 1000000


@dataclass(frozen=True)
class LoanParams:
    """Loan principal and interest."""
    principal: int = 1000000
    interest_rate: float = 0.05                      # Per elapsed round, minimum one round
    max_loans: int = 0                               # Loans per user per session, 0 = unlimited


@dataclass(frozen=True)
class HoldingLimitParams:
    """Holding cap as a fraction of a company's float."""
    enabled: bool = True
    fraction: float = 0.5


@dataclass(frozen=True)
class RelayParams:
    """Registration relay endpoint. No url means direct registration."""
    url: Optional[str] = None
    timeout_seconds: float = 3.0
    retry_attempts: int = 0
    retry_delay_seconds: float = 0.5
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PersistenceParams:
    """Snapshot store parameters."""
    db_path: Optional[str] = None                    # None disables snapshots
    retention_hours: float = 24.0


@dataclass(frozen=True)
class SessionParams:
    """Session lifecycle parameters."""
    ttl_hours: float = 12.0                          # 0 keeps sessions until destroyed


@dataclass(frozen=True)
class DefaultConfig:
    """Complete default configuration."""
    market: MarketParams
    fluctuation: FluctuationParams
    account: AccountParams
    loan: LoanParams
    holding_limit: HoldingLimitParams
    relay: RelayParams
    persistence: PersistenceParams
    session: SessionParams


def get_default_config() -> DefaultConfig:
    """Get the default configuration instance."""
    return DefaultConfig(
        market=MarketParams(),
        fluctuation=FluctuationParams(),
        account=AccountParams(),
        loan=LoanParams(),
        holding_limit=HoldingLimitParams(),
        relay=RelayParams(),
        persistence=PersistenceParams(),
        session=SessionParams(),
    )


def config_from_dict(data: dict) -> DefaultConfig:
    """Build a DefaultConfig from a merged configuration dictionary."""
    market = dict(data.get("market", {}))
    if "companies" in market:
        market["companies"] = tuple(market["companies"])

    return DefaultConfig(
        market=MarketParams(**market),
        fluctuation=FluctuationParams(**data.get("fluctuation", {})),
        account=AccountParams(**data.get("account", {})),
        loan=LoanParams(**data.get("loan", {})),
        holding_limit=HoldingLimitParams(**data.get("holding_limit", {})),
        relay=RelayParams(**data.get("relay", {})),
        persistence=PersistenceParams(**data.get("persistence", {})),
        session=SessionParams(**data.get("session", {})),
    )


def config_to_dict(config: DefaultConfig) -> dict:
    """Plain-dict form of a configuration, suitable for snapshots."""
    return asdict(config)
