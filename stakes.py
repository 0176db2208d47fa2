"""Equal-payout stake allocation for bookmaker and exchange combinations.

Every calculator has a matching ``validate_*`` that recomputes the result
from the produced stakes. Detectors call both and drop any candidate that
raises ``StakeError``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

EPSILON = 1e-6


class StakeError(Exception):
    """Base class for stake calculation failures."""


class InvalidInputError(StakeError):
    """Raised for odds <= 1.0, non-positive stakes or commission outside [0, 1)."""


class StakeMismatchError(StakeError):
    """Raised when recomputed profit disagrees with the declared figure."""


def _close(a: float, b: float, epsilon: float = EPSILON) -> bool:
    return abs(a - b) <= epsilon * max(1.0, abs(a), abs(b))


def _check_odds(odds: Sequence[float]) -> Tuple[float, ...]:
    values = tuple(odds or ())
    if len(values) < 2:
        raise InvalidInputError(f"Need at least two legs, got {len(values)}")
    for price in values:
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise InvalidInputError(f"Odds must be numeric, got {price!r}")
        if not math.isfinite(price) or price <= 1.0:
            raise InvalidInputError(f"Odds must be greater than 1.0, got {price}")
    return tuple(float(price) for price in values)


def _check_single_odds(price: float, label: str) -> float:
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise InvalidInputError(f"{label} must be numeric, got {price!r}")
    if not math.isfinite(price) or price <= 1.0:
        raise InvalidInputError(f"{label} must be greater than 1.0, got {price}")
    return float(price)


def _check_positive(value: float, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{label} must be numeric, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidInputError(f"{label} must be positive, got {value}")
    return float(value)


def _check_commission(rate: float) -> float:
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        raise InvalidInputError(f"Commission must be numeric, got {rate!r}")
    if not 0 <= rate < 1:
        raise InvalidInputError(f"Commission must be in [0, 1), got {rate}")
    return float(rate)


# ---------------------------------------------------------------------------
# Book vs book
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BookStakes:
    stakes: Tuple[float, ...]
    returns: Tuple[float, ...]
    total_stake: float
    implied_sum: float
    guaranteed_return: float
    guaranteed_profit: float
    profit_percentage: float


def stakes_for_book_vs_book(odds: Sequence[float], total_stake: float) -> BookStakes:
    """Split ``total_stake`` so every leg returns the same amount.

    ``stake_i = total_stake * (1/odds_i) / sum(1/odds_j)``
    """
    prices = _check_odds(odds)
    total = _check_positive(total_stake, "Total stake")
    inverses = [1.0 / price for price in prices]
    implied_sum = sum(inverses)
    stakes = tuple(total * inverse / implied_sum for inverse in inverses)
    returns = tuple(stake * price for stake, price in zip(stakes, prices))
    guaranteed_return = total / implied_sum
    return BookStakes(
        stakes=stakes,
        returns=returns,
        total_stake=total,
        implied_sum=implied_sum,
        guaranteed_return=guaranteed_return,
        guaranteed_profit=guaranteed_return - total,
        profit_percentage=(1.0 / implied_sum - 1.0) * 100,
    )


def validate_book_vs_book(
    odds: Sequence[float],
    stakes: Sequence[float],
    profit_percentage: float,
    total_stake: Optional[float] = None,
    epsilon: float = EPSILON,
) -> None:
    """Raise StakeMismatchError unless ``stakes`` pay out equally at the declared profit."""
    prices = _check_odds(odds)
    if len(stakes) != len(prices):
        raise StakeMismatchError(f"{len(stakes)} stakes for {len(prices)} legs")
    for stake in stakes:
        _check_positive(stake, "Stake")
    staked = sum(stakes)
    if total_stake is not None and not _close(staked, total_stake, epsilon):
        raise StakeMismatchError(f"Stakes sum to {staked}, expected {total_stake}")
    payouts = [stake * price for stake, price in zip(stakes, prices)]
    low, high = min(payouts), max(payouts)
    if not _close(low, high, epsilon):
        raise StakeMismatchError(f"Unequal payouts: {low} vs {high}")
    achieved = (low / staked - 1.0) * 100
    if not _close(achieved, profit_percentage, epsilon):
        raise StakeMismatchError(
            f"Achieved profit {achieved:.6f}% does not match declared {profit_percentage:.6f}%"
        )


# ---------------------------------------------------------------------------
# Book vs exchange (back / lay)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LayStakes:
    back_stake: float
    lay_stake: float
    liability: float
    profit_if_back_wins: float
    profit_if_lay_wins: float
    guaranteed_profit: float
    total_outlay: float
    profit_percentage: float


def minimum_back_odds(lay_odds: float, commission_rate: float) -> float:
    """Back odds above this value lock in a profit against ``lay_odds``."""
    lay = _check_single_odds(lay_odds, "Lay odds")
    commission = _check_commission(commission_rate)
    return (lay - commission) / (1.0 - commission)


def stakes_for_book_vs_betfair(
    back_odds: float, back_stake: float, lay_odds: float, commission_rate: float
) -> LayStakes:
    """Size the lay bet so the result is equal whichever side wins.

    Commission is charged on the lay bet's net winnings only:

    - back wins: ``back_stake * (back_odds - 1) - liability``
    - lay wins: ``lay_stake * (1 - commission) - back_stake``

    Equating both gives ``lay_stake = back_stake * back_odds / (lay_odds - commission)``.
    """
    back = _check_single_odds(back_odds, "Back odds")
    lay = _check_single_odds(lay_odds, "Lay odds")
    stake = _check_positive(back_stake, "Back stake")
    commission = _check_commission(commission_rate)
    lay_stake = stake * back / (lay - commission)
    liability = lay_stake * (lay - 1.0)
    profit_back = stake * (back - 1.0) - liability
    profit_lay = lay_stake * (1.0 - commission) - stake
    outlay = stake + liability
    guaranteed = min(profit_back, profit_lay)
    return LayStakes(
        back_stake=stake,
        lay_stake=lay_stake,
        liability=liability,
        profit_if_back_wins=profit_back,
        profit_if_lay_wins=profit_lay,
        guaranteed_profit=guaranteed,
        total_outlay=outlay,
        profit_percentage=guaranteed / outlay * 100,
    )


def stakes_for_book_vs_betfair_total(
    back_odds: float, lay_odds: float, commission_rate: float, total_outlay: float
) -> LayStakes:
    """Same as ``stakes_for_book_vs_betfair`` but sized from back stake plus liability."""
    back = _check_single_odds(back_odds, "Back odds")
    lay = _check_single_odds(lay_odds, "Lay odds")
    commission = _check_commission(commission_rate)
    outlay = _check_positive(total_outlay, "Total outlay")
    back_stake = outlay / (1.0 + back * (lay - 1.0) / (lay - commission))
    return stakes_for_book_vs_betfair(back, back_stake, lay, commission)


def validate_book_vs_betfair(
    result: LayStakes,
    back_odds: float,
    lay_odds: float,
    commission_rate: float,
    epsilon: float = EPSILON,
) -> None:
    """Recompute both settlement branches and compare with the declared figures."""
    back = _check_single_odds(back_odds, "Back odds")
    lay = _check_single_odds(lay_odds, "Lay odds")
    commission = _check_commission(commission_rate)
    liability = result.lay_stake * (lay - 1.0)
    if not _close(liability, result.liability, epsilon):
        raise StakeMismatchError(f"Liability {result.liability} should be {liability}")
    profit_back = result.back_stake * (back - 1.0) - liability
    profit_lay = result.lay_stake * (1.0 - commission) - result.back_stake
    if not _close(profit_back, profit_lay, epsilon):
        raise StakeMismatchError(f"Unequal outcomes: back {profit_back} vs lay {profit_lay}")
    achieved = min(profit_back, profit_lay) / (result.back_stake + liability) * 100
    if not _close(achieved, result.profit_percentage, epsilon):
        raise StakeMismatchError(
            f"Achieved profit {achieved:.6f}% does not match declared {result.profit_percentage:.6f}%"
        )
