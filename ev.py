"""Value bet detection against a de-vigged consensus or an exchange lay price."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from arbitrage import (
    PricedOutcome,
    calculate_edge_percent,
    collect_moneyline_offers,
    fair_odds_from_prices,
    is_valid_price,
)
from config import DEFAULT_COMMISSION, EXCHANGE_KEYS, MIN_CONSENSUS_BOOKS
from models import Event, ValueBet

logger = logging.getLogger(__name__)


def consensus_fair_probabilities(
    outcomes: Sequence[str], by_outcome: Dict[str, List[PricedOutcome]]
) -> Tuple[Dict[str, float], int]:
    """Average each complete book's vig-free probabilities.

    Returns the averaged probability per outcome and the number of books used.
    A book only counts when it prices every outcome of the market.
    """
    books: Dict[str, Dict[str, float]] = {}
    for name in outcomes:
        for offer in by_outcome.get(name, []):
            books.setdefault(offer.bookmaker_key, {}).setdefault(name, offer.effective_odds)
    complete = [prices for prices in books.values() if len(prices) == len(outcomes)]
    if not complete:
        return {}, 0
    totals = {name: 0.0 for name in outcomes}
    for prices in complete:
        fair = fair_odds_from_prices([prices[name] for name in outcomes])
        for name, odds in zip(outcomes, fair):
            totals[name] += 1.0 / odds
    return {name: total / len(complete) for name, total in totals.items()}, len(complete)


def exchange_fair_odds(lay_price: float, commission_rate: float) -> float:
    """Fair odds implied by a lay price when commission is charged on lay winnings."""
    return (lay_price - commission_rate) / (1.0 - commission_rate)


def _exchange_references(
    event: Event, outcomes: Sequence[str], commission_rate: float, exchange_keys: set
) -> Dict[str, Tuple[float, str]]:
    """Tightest lay price per outcome as (fair_odds, exchange_key)."""
    references: Dict[str, Tuple[float, str]] = {}
    wanted = set(outcomes)
    for quote in sorted(event.quotes_for("h2h_lay"), key=lambda item: item.bookmaker_key):
        if quote.bookmaker_key not in exchange_keys:
            continue
        for outcome in quote.outcomes:
            if outcome.name not in wanted or not is_valid_price(outcome.price):
                continue
            fair = exchange_fair_odds(float(outcome.price), commission_rate)
            current = references.get(outcome.name)
            if current is None or fair < current[0]:
                references[outcome.name] = (fair, quote.bookmaker_key)
    return references


def find_value_bets(
    event: Event,
    value_threshold: float,
    total_stake: float,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Iterable[str] = EXCHANGE_KEYS,
    min_books: int = MIN_CONSENSUS_BOOKS,
) -> List[ValueBet]:
    """Flag every offer whose edge over the fair price reaches ``value_threshold``.

    An exchange lay price, when quoted, is the reference for that outcome;
    otherwise the consensus of at least ``min_books`` complete books is used.
    """
    exchanges = set(exchange_keys)
    outcomes, by_outcome = collect_moneyline_offers(event, commission_rate, exchanges)
    if not outcomes:
        return []
    consensus, books_used = consensus_fair_probabilities(outcomes, by_outcome)
    lay_refs = _exchange_references(event, outcomes, commission_rate, exchanges)
    value_bets: List[ValueBet] = []
    for name in outcomes:
        for offer in sorted(by_outcome[name], key=lambda item: item.bookmaker_key):
            reference: Optional[str] = None
            fair_odds = 0.0
            books = 0
            lay_ref = lay_refs.get(name)
            if lay_ref is not None and lay_ref[1] != offer.bookmaker_key:
                reference, fair_odds, books = "exchange", lay_ref[0], 1
            elif books_used >= min_books and consensus.get(name, 0) > 0:
                reference, fair_odds, books = "consensus", 1.0 / consensus[name], books_used
            if reference is None:
                continue
            edge = calculate_edge_percent(offer.effective_odds, fair_odds)
            if edge < value_threshold:
                continue
            value_bets.append(
                ValueBet(
                    event=event.ref(),
                    leg=offer.to_leg(total_stake),
                    fair_odds=fair_odds,
                    fair_probability=1.0 / fair_odds,
                    edge_percentage=edge,
                    reference=reference,
                    books_in_consensus=books,
                )
            )
    if value_bets:
        logger.debug("Event %s: %d value bets", event.id, len(value_bets))
    return value_bets
