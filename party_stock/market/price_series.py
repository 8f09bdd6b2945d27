"""
Per-company price history and round-to-round fluctuation.

Price series are append-only: advancing a round appends one price per
company and never rewrites earlier rounds, so charts can replay history and
trades can be audited against the price of their round.
"""

import random
from typing import Any, Optional

import structlog

from ..config.defaults import FluctuationParams
from ..errors import PriceOutOfRangeError, RoundLimitExceededError, UnknownCompanyError

logger = structlog.get_logger(__name__)


def fluctuate(price: int, rng: random.Random, params: FluctuationParams) -> int:
    """
    Compute the next round's price from the current one.

    The move is uniform in [-max_change_pct, +max_change_pct], rounded to
    price_step and clamped to [min_price, max_price].
    """
    change = rng.uniform(-params.max_change_pct, params.max_change_pct)
    raw = price * (1.0 + change)
    stepped = int(round(raw / params.price_step)) * params.price_step
    return max(params.min_price, min(params.max_price, stepped))


class PriceSeries:
    """Ordered per-round prices for every company of a session."""

    def __init__(
        self,
        initial_prices: dict[str, int],
        params: FluctuationParams,
        max_rounds: int,
        schedule: Optional[dict[str, list[int]]] = None,
        rng: Optional[random.Random] = None
    ) -> None:
        self.params = params
        self.max_rounds = max_rounds
        self.schedule = schedule or {}
        self._rng = rng or random.Random(params.seed)
        self._series: dict[str, list[int]] = {}

        for company, price in initial_prices.items():
            scripted = self.schedule.get(company)
            self._series[company] = [scripted[0] if scripted else price]

    @classmethod
    def from_history(
        cls,
        history: dict[str, list[int]],
        params: FluctuationParams,
        max_rounds: int,
        schedule: Optional[dict[str, list[int]]] = None,
        rng_state: Optional[list[Any]] = None
    ) -> "PriceSeries":
        """
        Rebuild a series from a persisted history.

        With rng_state the fluctuation sequence resumes where it stopped;
        without it the generator is re-seeded from params.
        """
        series = cls({c: prices[0] for c, prices in history.items()}, params, max_rounds, schedule)
        series._series = {c: list(prices) for c, prices in history.items()}
        if rng_state is not None:
            version, internal, gauss_next = rng_state
            series._rng.setstate((version, tuple(internal), gauss_next))
        return series

    def rng_state(self) -> list[Any]:
        """JSON-friendly state of the fluctuation generator."""
        version, internal, gauss_next = self._rng.getstate()
        return [version, list(internal), gauss_next]

    @property
    def companies(self) -> tuple[str, ...]:
        return tuple(self._series)

    @property
    def current_round(self) -> int:
        """Index of the latest recorded round; all series have equal length."""
        return len(next(iter(self._series.values()))) - 1 if self._series else 0

    @property
    def is_final_round(self) -> bool:
        return self.current_round >= self.max_rounds - 1

    def _prices_for(self, company: str) -> list[int]:
        prices = self._series.get(company)
        if prices is None:
            raise UnknownCompanyError(f"Unknown company: {company}", company=company)
        return prices

    def get_price(self, company: str, round_index: int) -> int:
        """
        Get the recorded price of a company for a round.

        Raises:
            UnknownCompanyError: company is not part of the session
            PriceOutOfRangeError: round has not been recorded
        """
        prices = self._prices_for(company)
        if round_index < 0 or round_index >= len(prices):
            raise PriceOutOfRangeError(
                f"No price for round {round_index} of {company}",
                round_index=round_index,
                recorded=len(prices)
            )
        return prices[round_index]

    def current_price(self, company: str) -> int:
        return self._prices_for(company)[-1]

    def current_prices(self) -> dict[str, int]:
        return {company: prices[-1] for company, prices in self._series.items()}

    def history(self, company: Optional[str] = None,
                upto_round: Optional[int] = None) -> dict[str, list[int]]:
        """Copy of the price history, optionally for one company and up to a round."""
        companies = [company] if company is not None else list(self._series)
        end = None if upto_round is None else upto_round + 1
        return {c: list(self._prices_for(c)[:end]) for c in companies}

    def advance_round(self) -> dict[str, int]:
        """
        Append the next round's price for every company.

        Returns:
            Mapping of company to its new price

        Raises:
            RoundLimitExceededError: the series already holds the final round
        """
        if self.is_final_round:
            raise RoundLimitExceededError(
                f"Round {self.current_round} is the last of {self.max_rounds}",
                max_rounds=self.max_rounds
            )

        next_round = self.current_round + 1
        new_prices = {}
        for company, prices in self._series.items():
            scripted = self.schedule.get(company)
            if scripted and next_round < len(scripted):
                price = scripted[next_round]
            else:
                price = fluctuate(prices[-1], self._rng, self.params)
            prices.append(price)
            new_prices[company] = price

        logger.debug(
            "Advanced price series",
            round=next_round,
            prices=new_prices
        )

        return new_prices
