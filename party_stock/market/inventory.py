"""Remaining share inventory per company and holding-limit policies."""

import math
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from ..config.defaults import HoldingLimitParams
from ..errors import InsufficientSupplyError, SupplyOverflowError, UnknownCompanyError

# (user_count, holding, quantity, initial_supply) -> True when over the limit
HoldingLimitPolicy = Callable[[int, int, int, int], bool]


@dataclass(frozen=True)
class FloatFractionLimit:
    """Caps one user's holding at a fraction of the company's float."""

    fraction: float = 0.5

    def cap(self, initial_supply: int) -> int:
        return max(1, math.floor(initial_supply * self.fraction))

    def __call__(self, user_count: int, holding: int, quantity: int, initial_supply: int) -> bool:
        if user_count <= 1:
            return False
        return holding + quantity > self.cap(initial_supply)


def no_limit(user_count: int, holding: int, quantity: int, initial_supply: int) -> bool:
    return False


class InventoryPool:
    """Tradable shares left per company within one session."""

    def __init__(self, initial_supply: dict[str, int],
                 remaining: Optional[dict[str, int]] = None) -> None:
        self._initial = dict(initial_supply)
        self._remaining = dict(remaining) if remaining is not None else dict(initial_supply)
        self._lock = threading.Lock()

    def initial_supply(self, company: str) -> int:
        self._check_company(company)
        return self._initial[company]

    def remaining(self, company: str) -> int:
        self._check_company(company)
        return self._remaining[company]

    def remaining_stocks(self) -> dict[str, int]:
        with self._lock:
            return dict(self._remaining)

    def initial_stocks(self) -> dict[str, int]:
        return dict(self._initial)

    def reserve(self, company: str, quantity: int) -> int:
        """
        Take shares out of the pool.

        Returns:
            Remaining shares after the reservation

        Raises:
            InsufficientSupplyError: fewer than quantity shares remain; pool unchanged
        """
        self._check_company(company)
        with self._lock:
            remaining = self._remaining[company]
            if remaining < quantity:
                raise InsufficientSupplyError(
                    f"Only {remaining} shares of {company} remain",
                    requested=quantity,
                    remaining=remaining
                )
            self._remaining[company] = remaining - quantity
            return self._remaining[company]

    def release(self, company: str, quantity: int) -> int:
        """
        Return shares to the pool.

        Raises:
            SupplyOverflowError: the pool would exceed the initial supply
        """
        self._check_company(company)
        with self._lock:
            updated = self._remaining[company] + quantity
            if updated > self._initial[company]:
                raise SupplyOverflowError(
                    f"Releasing {quantity} shares of {company} exceeds initial supply",
                    company=company,
                    attempted=updated,
                    initial_supply=self._initial[company]
                )
            self._remaining[company] = updated
            return updated

    def _check_company(self, company: str) -> None:
        if company not in self._initial:
            raise UnknownCompanyError(f"Unknown company: {company}", company=company)


def build_holding_limit(params: HoldingLimitParams) -> HoldingLimitPolicy:
    """Policy described by the session's holding_limit configuration."""
    if not params.enabled:
        return no_limit
    return FloatFractionLimit(params.fraction)
