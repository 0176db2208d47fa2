"""Arbitrage opportunity detection and odds math helpers."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config import DEFAULT_COMMISSION, EXCHANGE_KEYS, allowed_outcome_counts
from models import ArbOpportunity, BackLayArb, BookmakerQuote, Event, Leg
from stakes import (
    StakeError,
    minimum_back_odds,
    stakes_for_book_vs_betfair_total,
    stakes_for_book_vs_book,
    validate_book_vs_betfair,
    validate_book_vs_book,
)

logger = logging.getLogger(__name__)

DRAW_NAMES = {"draw", "tie", "x"}


# ---------------------------------------------------------------------------
# Odds math
# ---------------------------------------------------------------------------

def is_valid_price(price: object) -> bool:
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return False
    return math.isfinite(price) and price > 1.0


def implied_probability_sum(prices: Sequence[float]) -> float:
    """Return sum(1/odds); below 1.0 means the prices lock in a profit."""
    return sum(1.0 / price for price in prices)


def classify_implied_sum(implied_sum: float, near_arb_threshold: float) -> Optional[str]:
    """Return ``arb``, ``near-arb`` or None for an implied probability sum."""
    if implied_sum < 1.0:
        return "arb"
    if implied_sum < 1.0 + near_arb_threshold:
        return "near-arb"
    return None


def fair_odds_from_prices(prices: Sequence[float]) -> List[float]:
    """Remove vig from a list of outcome prices (any number of outcomes)."""
    if not prices or any(p <= 1 for p in prices):
        return list(prices)
    implied = [1.0 / p for p in prices]
    total = sum(implied)
    if total <= 0:
        return list(prices)
    true_probs = [i / total for i in implied]
    return [1.0 / tp if tp > 0 else p for tp, p in zip(true_probs, prices)]


def calculate_edge_percent(soft_odds: float, fair_odds: float) -> float:
    """Return the edge of offered odds vs fair odds as a percentage."""
    if fair_odds <= 0:
        return 0.0
    return (soft_odds / fair_odds - 1.0) * 100


def apply_commission(price: float, commission_rate: float, is_exchange: bool) -> float:
    """Reduce an exchange price by the commission rate; pass through bookmaker prices."""
    if not is_exchange:
        return price
    edge = price - 1.0
    if edge <= 0:
        return price
    return 1.0 + edge * (1.0 - commission_rate)


# ---------------------------------------------------------------------------
# Offer collection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricedOutcome:
    """A single bookmaker's price for one outcome."""

    outcome: str
    bookmaker_key: str
    bookmaker: str
    odds: float
    effective_odds: float
    point: Optional[float] = None

    def to_leg(self, stake: float) -> Leg:
        return Leg(
            outcome=self.outcome,
            bookmaker_key=self.bookmaker_key,
            bookmaker=self.bookmaker,
            odds=self.odds,
            effective_odds=self.effective_odds,
            stake=stake,
            point=self.point,
        )


def priced_outcomes(
    quote: BookmakerQuote,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
) -> List[PricedOutcome]:
    """Return the valid prices of a quote; prices <= 1.0 are dropped."""
    is_exchange = quote.bookmaker_key in set(exchange_keys)
    offers = []
    for outcome in quote.outcomes:
        if not outcome.name or not is_valid_price(outcome.price):
            continue
        offers.append(
            PricedOutcome(
                outcome=outcome.name,
                bookmaker_key=quote.bookmaker_key,
                bookmaker=quote.display_name,
                odds=float(outcome.price),
                effective_odds=apply_commission(float(outcome.price), commission_rate, is_exchange),
                point=outcome.point,
            )
        )
    return offers


def best_offer(offers: Sequence[PricedOutcome]) -> Optional[PricedOutcome]:
    """Highest effective odds; ties go to the lexicographically smallest bookmaker key."""
    if not offers:
        return None
    return min(offers, key=lambda offer: (-offer.effective_odds, offer.bookmaker_key))


def _outcome_sort_key(event: Event, name: str) -> Tuple[int, str]:
    if name == event.home_team:
        return 0, name
    if name == event.away_team:
        return 1, name
    if name.strip().lower() in DRAW_NAMES:
        return 2, name
    return 3, name


def moneyline_outcomes(event: Event, market: str = "h2h") -> List[str]:
    """Return the canonical outcome names of an event's moneyline market.

    Books disagreeing on the outcome set (2-way vs 3-way) are resolved in
    favour of the set with the most outcomes, then the most books quoting it.
    The result is empty when the sport does not allow that outcome count.
    """
    counts: Dict[frozenset, int] = {}
    for quote in event.quotes_for(market):
        names = frozenset(outcome.name for outcome in quote.outcomes if outcome.name)
        if len(names) != len(quote.outcomes):
            continue
        counts[names] = counts.get(names, 0) + 1
    if not counts:
        return []
    names = min(counts, key=lambda item: (-len(item), -counts[item], sorted(item)))
    if len(names) not in allowed_outcome_counts(event.sport_key):
        return []
    return sorted(names, key=lambda name: _outcome_sort_key(event, name))


def collect_moneyline_offers(
    event: Event,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
) -> Tuple[List[str], Dict[str, List[PricedOutcome]]]:
    """Return canonical outcome names and every valid offer per outcome."""
    outcomes = moneyline_outcomes(event)
    by_outcome: Dict[str, List[PricedOutcome]] = {name: [] for name in outcomes}
    if not outcomes:
        return outcomes, by_outcome
    wanted = set(outcomes)
    for quote in event.quotes_for("h2h"):
        if {outcome.name for outcome in quote.outcomes} != wanted:
            continue
        for offer in priced_outcomes(quote, commission_rate, exchange_keys):
            by_outcome[offer.outcome].append(offer)
    return outcomes, by_outcome


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def find_event_arb(
    event: Event,
    near_arb_threshold: float,
    total_stake: float,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
) -> Optional[ArbOpportunity]:
    """Return the best-odds arb or near-arb for one event, if any."""
    if len({quote.bookmaker_key for quote in event.quotes_for("h2h")}) < 2:
        return None
    outcomes, by_outcome = collect_moneyline_offers(event, commission_rate, exchange_keys)
    if not outcomes:
        return None
    best: List[PricedOutcome] = []
    for name in outcomes:
        offer = best_offer(by_outcome[name])
        if offer is None:
            return None
        best.append(offer)
    prices = [offer.effective_odds for offer in best]
    implied_sum = implied_probability_sum(prices)
    kind = classify_implied_sum(implied_sum, near_arb_threshold)
    if kind is None:
        return None
    try:
        stakes = stakes_for_book_vs_book(prices, total_stake)
        validate_book_vs_book(prices, stakes.stakes, stakes.profit_percentage, total_stake)
    except StakeError as exc:
        logger.warning("Dropping %s candidate for event %s: %s", kind, event.id, exc)
        return None
    return ArbOpportunity(
        kind=kind,
        event=event.ref(),
        market="h2h" if len(outcomes) == 2 else "h2h-3way",
        legs=tuple(offer.to_leg(stake) for offer, stake in zip(best, stakes.stakes)),
        implied_sum=implied_sum,
        profit_percentage=stakes.profit_percentage,
        total_stake=stakes.total_stake,
        guaranteed_return=stakes.guaranteed_return,
    )


def find_back_lay_arbs(
    event: Event,
    total_stake: float,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
) -> List[BackLayArb]:
    """Back at a bookmaker and lay the same outcome on an exchange.

    One candidate per (outcome, exchange): the best bookmaker back price
    against that exchange's lay price.
    """
    exchanges = set(exchange_keys)
    outcomes, by_outcome = collect_moneyline_offers(event, commission_rate, exchanges)
    if not outcomes:
        return []
    arbs: List[BackLayArb] = []
    for lay_quote in sorted(event.quotes_for("h2h_lay"), key=lambda quote: quote.bookmaker_key):
        if lay_quote.bookmaker_key not in exchanges:
            continue
        for lay_outcome in lay_quote.outcomes:
            if lay_outcome.name not in by_outcome or not is_valid_price(lay_outcome.price):
                continue
            backs = [
                offer for offer in by_outcome[lay_outcome.name] if offer.bookmaker_key not in exchanges
            ]
            back = best_offer(backs)
            if back is None:
                continue
            lay_odds = float(lay_outcome.price)
            try:
                if back.odds <= minimum_back_odds(lay_odds, commission_rate):
                    continue
                result = stakes_for_book_vs_betfair_total(
                    back.odds, lay_odds, commission_rate, total_stake
                )
                validate_book_vs_betfair(result, back.odds, lay_odds, commission_rate)
            except StakeError as exc:
                logger.warning("Dropping back/lay candidate for event %s: %s", event.id, exc)
                continue
            arbs.append(
                BackLayArb(
                    event=event.ref(),
                    outcome=lay_outcome.name,
                    back_bookmaker_key=back.bookmaker_key,
                    back_bookmaker=back.bookmaker,
                    back_odds=back.odds,
                    back_stake=result.back_stake,
                    exchange_key=lay_quote.bookmaker_key,
                    exchange=lay_quote.display_name,
                    lay_odds=lay_odds,
                    lay_stake=result.lay_stake,
                    liability=result.liability,
                    commission=commission_rate,
                    guaranteed_profit=result.guaranteed_profit,
                    profit_percentage=result.profit_percentage,
                )
            )
    return arbs
