"""Spread / totals arbitrage and middle-bet detection with probability and EV helpers."""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from arbitrage import (
    PricedOutcome,
    classify_implied_sum,
    implied_probability_sum,
    priced_outcomes,
)
from config import (
    DEFAULT_COMMISSION,
    EXCHANGE_KEYS,
    MAX_MIDDLE_LOSS_PERCENT,
    MIN_MIDDLE_GAP,
)
from models import Event, Leg, LineArb, MiddleOpportunity
from stakes import StakeError, stakes_for_book_vs_book, validate_book_vs_book

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Gap geometry
# ---------------------------------------------------------------------------

def spread_gap_info(favorite_line: float, underdog_line: float) -> Optional[dict]:
    """Return gap metadata for a spread middle, or None if no gap exists.

    ``favorite_line`` should be negative (e.g. -3) and
    ``underdog_line`` positive (e.g. +3.5).
    """
    if favorite_line is None or underdog_line is None:
        return None
    if favorite_line >= 0 or underdog_line <= 0:
        return None
    fav_abs = abs(favorite_line)
    if fav_abs >= underdog_line:
        return None
    gap = round(underdog_line - fav_abs, 2)
    start = math.floor(fav_abs) + 1
    end = math.ceil(underdog_line) - 1
    if end < start:
        return None
    middle_integers = list(range(start, end + 1))
    return {
        "gap_points": gap,
        "middle_integers": middle_integers,
        "integer_count": len(middle_integers),
    }


def total_gap_info(over_line: float, under_line: float) -> Optional[dict]:
    """Return gap metadata for a totals middle, or None if no gap exists."""
    if over_line is None or under_line is None:
        return None
    if over_line >= under_line:
        return None
    gap = under_line - over_line
    lower = math.floor(over_line) + 1
    upper = math.ceil(under_line) - 1
    if upper < lower:
        return None
    middle_integers = list(range(lower, upper + 1))
    return {
        "gap_points": round(gap, 2),
        "middle_integers": middle_integers,
        "integer_count": len(middle_integers),
    }


# ---------------------------------------------------------------------------
# Probability estimation
# ---------------------------------------------------------------------------

# Default probability per integer in the window for each market type
PROBABILITY_PER_INTEGER_DEFAULT = 0.030

# NFL/NCAAF key number boost table
NFL_KEY_NUMBER_PROBABILITY = {
    3: 0.150,
    7: 0.090,
    10: 0.060,
    6: 0.050,
    14: 0.045,
    4: 0.040,
    1: 0.035,
    17: 0.035,
    13: 0.030,
    11: 0.025,
}

KEY_NUMBER_SPORTS = {"americanfootball_nfl", "americanfootball_ncaaf"}
MAX_MIDDLE_PROBABILITY = 0.35

# Sport-specific per-integer base probabilities
PROBABILITY_PER_INTEGER = {
    "americanfootball_nfl_spreads": 0.025,
    "americanfootball_ncaaf_spreads": 0.025,
    "basketball_nba_spreads": 0.025,
    "basketball_ncaab_spreads": 0.025,
    "baseball_mlb_spreads": 0.030,
    "icehockey_nhl_spreads": 0.030,
    "aussierules_afl_spreads": 0.015,
    "rugbyleague_nrl_spreads": 0.020,
    "americanfootball_nfl_totals": 0.030,
    "americanfootball_ncaaf_totals": 0.030,
    "basketball_nba_totals": 0.020,
    "basketball_ncaab_totals": 0.020,
    "baseball_mlb_totals": 0.045,
    "icehockey_nhl_totals": 0.055,
    "aussierules_afl_totals": 0.012,
    "rugbyleague_nrl_totals": 0.020,
    "default": PROBABILITY_PER_INTEGER_DEFAULT,
}


def estimate_middle_probability(
    middle_integers: List[int], sport_key: str, market_key: str
) -> float:
    """Estimate the probability that the result lands inside the middle window."""
    if not middle_integers:
        return 0.0
    lookup_key = f"{sport_key}_{market_key}"
    base_prob = PROBABILITY_PER_INTEGER.get(lookup_key, PROBABILITY_PER_INTEGER["default"])
    total = 0.0
    is_key_sport = sport_key in KEY_NUMBER_SPORTS
    for integer in middle_integers:
        abs_int = abs(integer)
        if is_key_sport and abs_int in NFL_KEY_NUMBER_PROBABILITY:
            total += NFL_KEY_NUMBER_PROBABILITY[abs_int]
        else:
            total += base_prob
    return min(total, MAX_MIDDLE_PROBABILITY)


# ---------------------------------------------------------------------------
# Outcomes and EV
# ---------------------------------------------------------------------------

def calculate_middle_outcomes(
    stake_a: float, stake_b: float, odds_a: float, odds_b: float
) -> dict:
    """Return profit/loss for each result scenario."""
    total = stake_a + stake_b
    payout_a = stake_a * odds_a
    payout_b = stake_b * odds_b
    return {
        "win_both_profit": payout_a + payout_b - total,
        "side_a_wins_profit": payout_a - total,
        "side_b_wins_profit": payout_b - total,
    }


def calculate_middle_ev(
    win_both_profit: float,
    side_a_profit: float,
    side_b_profit: float,
    probability: float,
) -> float:
    """Return expected value of the middle bet; a miss is split evenly between sides."""
    probability = max(0.0, min(probability, 1.0))
    miss_probability = 1.0 - probability
    miss_ev = 0.5 * side_a_profit + 0.5 * side_b_profit
    return (probability * win_both_profit) + (miss_probability * miss_ev)


def leg_wins(market: str, leg: Leg, result: float) -> bool:
    """Settle one line leg.

    ``result`` is the final total for totals legs and the leg team's
    margin (its score minus the opponent's) for spread legs. A push
    counts as not winning.
    """
    if leg.point is None:
        raise ValueError(f"{market} leg {leg.outcome!r} has no line")
    if market == "totals":
        if _is_over(leg.outcome):
            return result > leg.point
        if _is_under(leg.outcome):
            return result < leg.point
        raise ValueError(f"Unknown totals outcome {leg.outcome!r}")
    if market == "spreads":
        return result + leg.point > 0
    raise ValueError(f"Unsupported line market {market!r}")


def format_middle_zone(
    description_source: str, middle_integers: List[int], is_total: bool
) -> str:
    """Return a human-readable description of the middle window."""
    if not middle_integers:
        return description_source
    middle_integers = sorted(middle_integers)
    if len(middle_integers) == 1:
        range_text = str(middle_integers[0])
    else:
        range_text = f"{middle_integers[0]}-{middle_integers[-1]}"
    if is_total:
        return f"Total {range_text}"
    return f"{description_source} by {range_text}"


# ---------------------------------------------------------------------------
# Offer grouping
# ---------------------------------------------------------------------------

def _line(point: float) -> float:
    return round(float(point), 2)


def _line_offers(
    event: Event, market: str, commission_rate: float, exchange_keys: Iterable[str]
) -> List[PricedOutcome]:
    offers = []
    for quote in event.quotes_for(market):
        for offer in priced_outcomes(quote, commission_rate, exchange_keys):
            if offer.point is None:
                continue
            offers.append(offer)
    return offers


def _is_over(name: str) -> bool:
    return name.strip().lower().startswith("over")


def _is_under(name: str) -> bool:
    return name.strip().lower().startswith("under")


def _build_line_arb(
    kind: str,
    event: Event,
    line: float,
    legs: Sequence[PricedOutcome],
    near_arb_threshold: float,
    total_stake: float,
) -> Optional[LineArb]:
    prices = [offer.effective_odds for offer in legs]
    implied_sum = implied_probability_sum(prices)
    arb_type = classify_implied_sum(implied_sum, near_arb_threshold)
    if arb_type is None:
        return None
    try:
        stakes = stakes_for_book_vs_book(prices, total_stake)
        validate_book_vs_book(prices, stakes.stakes, stakes.profit_percentage, total_stake)
    except StakeError as exc:
        logger.warning("Dropping %s %s candidate for event %s: %s", kind, arb_type, event.id, exc)
        return None
    return LineArb(
        kind=kind,
        arb_type=arb_type,
        event=event.ref(),
        line=line,
        legs=tuple(offer.to_leg(stake) for offer, stake in zip(legs, stakes.stakes)),
        implied_sum=implied_sum,
        profit_percentage=stakes.profit_percentage,
        total_stake=stakes.total_stake,
        guaranteed_return=stakes.guaranteed_return,
    )


# ---------------------------------------------------------------------------
# Line arbitrage
# ---------------------------------------------------------------------------

def _best_cross_book_pair(
    first: Sequence[PricedOutcome], second: Sequence[PricedOutcome]
) -> Optional[List[PricedOutcome]]:
    """Lowest implied sum over pairs whose legs sit at two different bookmakers."""
    pairs = [
        (a, b) for a in first for b in second if a.bookmaker_key != b.bookmaker_key
    ]
    if not pairs:
        return None
    a, b = min(
        pairs,
        key=lambda pair: (
            implied_probability_sum([pair[0].effective_odds, pair[1].effective_odds]),
            pair[0].bookmaker_key,
            pair[1].bookmaker_key,
        ),
    )
    return [a, b]


def find_spread_arbs(
    event: Event,
    near_arb_threshold: float,
    total_stake: float,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
) -> List[LineArb]:
    """One team at -p against the other team at +p, best cross-book price per side."""
    teams = (event.home_team, event.away_team)
    by_side: Dict[Tuple[str, float], List[PricedOutcome]] = {}
    for offer in _line_offers(event, "spreads", commission_rate, exchange_keys):
        if offer.outcome not in teams:
            logger.debug("Ignoring spread outcome %r for event %s", offer.outcome, event.id)
            continue
        by_side.setdefault((offer.outcome, _line(offer.point)), []).append(offer)
    arbs: List[LineArb] = []
    for favorite, underdog in (teams, teams[::-1]):
        for (team, point), favorites in sorted(by_side.items()):
            if team != favorite or point > 0:
                continue
            # pick'em lines are paired once, home first
            if point == 0 and favorite == event.away_team:
                continue
            underdogs = by_side.get((underdog, -point))
            if not underdogs:
                continue
            legs = _best_cross_book_pair(favorites, underdogs)
            if legs is None:
                continue
            arb = _build_line_arb(
                "spread", event, abs(point), legs, near_arb_threshold, total_stake
            )
            if arb is not None:
                arbs.append(arb)
    return arbs


def find_totals_arbs(
    event: Event,
    near_arb_threshold: float,
    total_stake: float,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
) -> List[LineArb]:
    """Over p against Under p at the same line, best cross-book price per side."""
    overs: Dict[float, List[PricedOutcome]] = {}
    unders: Dict[float, List[PricedOutcome]] = {}
    for offer in _line_offers(event, "totals", commission_rate, exchange_keys):
        if _is_over(offer.outcome):
            overs.setdefault(_line(offer.point), []).append(offer)
        elif _is_under(offer.outcome):
            unders.setdefault(_line(offer.point), []).append(offer)
    arbs: List[LineArb] = []
    for line in sorted(set(overs) & set(unders)):
        legs = _best_cross_book_pair(overs[line], unders[line])
        if legs is None:
            continue
        arb = _build_line_arb("totals", event, line, legs, near_arb_threshold, total_stake)
        if arb is not None:
            arbs.append(arb)
    return arbs


# ---------------------------------------------------------------------------
# Middles
# ---------------------------------------------------------------------------

def _build_middle(
    event: Event,
    market: str,
    first: PricedOutcome,
    second: PricedOutcome,
    low: float,
    high: float,
    gap: dict,
    total_stake: float,
    description_source: str,
) -> Optional[MiddleOpportunity]:
    prices = [first.effective_odds, second.effective_odds]
    try:
        stakes = stakes_for_book_vs_book(prices, total_stake)
        validate_book_vs_book(prices, stakes.stakes, stakes.profit_percentage, total_stake)
    except StakeError as exc:
        logger.warning("Dropping %s middle for event %s: %s", market, event.id, exc)
        return None
    outcomes = calculate_middle_outcomes(stakes.stakes[0], stakes.stakes[1], prices[0], prices[1])
    probability = estimate_middle_probability(gap["middle_integers"], event.sport_key, market)
    expected_value = calculate_middle_ev(
        outcomes["win_both_profit"],
        outcomes["side_a_wins_profit"],
        outcomes["side_b_wins_profit"],
        probability,
    )
    return MiddleOpportunity(
        event=event.ref(),
        market=market,
        legs=(first.to_leg(stakes.stakes[0]), second.to_leg(stakes.stakes[1])),
        low=low,
        high=high,
        expected_profit=min(outcomes["side_a_wins_profit"], outcomes["side_b_wins_profit"]),
        potential_profit=outcomes["win_both_profit"],
        middle_probability=probability,
        expected_value=expected_value,
        total_stake=stakes.total_stake,
        description=format_middle_zone(
            description_source, gap["middle_integers"], market == "totals"
        ),
    )


def _keep_middle(middle: MiddleOpportunity, max_loss_percent: float) -> bool:
    if middle.expected_value >= 0:
        return True
    return -middle.expected_profit <= middle.total_stake * max_loss_percent / 100


def _middle_rank(middle: MiddleOpportunity) -> tuple:
    return -middle.expected_value, tuple(leg.bookmaker_key for leg in middle.legs)


def _spread_middle_candidates(
    offers: List[PricedOutcome],
) -> Iterable[Tuple[PricedOutcome, PricedOutcome, float, float, dict, str]]:
    favorites = [offer for offer in offers if offer.point < 0]
    underdogs = [offer for offer in offers if offer.point > 0]
    for favorite in favorites:
        for underdog in underdogs:
            if underdog.outcome == favorite.outcome:
                continue
            if underdog.bookmaker_key == favorite.bookmaker_key:
                continue
            gap = spread_gap_info(favorite.point, underdog.point)
            if gap is None:
                continue
            yield favorite, underdog, abs(favorite.point), float(underdog.point), gap, favorite.outcome


def _totals_middle_candidates(
    offers: List[PricedOutcome],
) -> Iterable[Tuple[PricedOutcome, PricedOutcome, float, float, dict, str]]:
    overs = [offer for offer in offers if _is_over(offer.outcome)]
    unders = [offer for offer in offers if _is_under(offer.outcome)]
    for over in overs:
        for under in unders:
            if under.bookmaker_key == over.bookmaker_key:
                continue
            gap = total_gap_info(over.point, under.point)
            if gap is None:
                continue
            yield over, under, float(over.point), float(under.point), gap, "Total"


def find_middles(
    event: Event,
    total_stake: float,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
    min_gap: Optional[Dict[str, float]] = None,
    max_loss_percent: float = MAX_MIDDLE_LOSS_PERCENT,
) -> List[MiddleOpportunity]:
    """Crossing lines from different bookmakers that can both win.

    Totals: Over at the lower line with Under at the higher line.
    Spreads: favourite at -a with the other team at +b where b > a.
    Only the best pair per (market, low, high) window is kept.
    """
    min_gap = MIN_MIDDLE_GAP if min_gap is None else min_gap
    best: Dict[Tuple[str, float, float], MiddleOpportunity] = {}
    for market, candidates in (
        ("spreads", _spread_middle_candidates),
        ("totals", _totals_middle_candidates),
    ):
        offers = _line_offers(event, market, commission_rate, exchange_keys)
        for first, second, low, high, gap, source in candidates(offers):
            if high - low < min_gap.get(market, 0.0):
                continue
            middle = _build_middle(event, market, first, second, low, high, gap, total_stake, source)
            if middle is None or not _keep_middle(middle, max_loss_percent):
                continue
            key = (market, _line(low), _line(high))
            current = best.get(key)
            if current is None or _middle_rank(middle) < _middle_rank(current):
                best[key] = middle
    return [best[key] for key in sorted(best)]
