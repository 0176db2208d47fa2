"""Batch opportunity detection over a list of events, with aggregate stats."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from arbitrage import find_back_lay_arbs, find_event_arb
from config import (
    DEFAULT_COMMISSION,
    DEFAULT_TOTAL_STAKE,
    EXCHANGE_KEYS,
    MAX_MIDDLE_LOSS_PERCENT,
    NEAR_ARB_THRESHOLD,
    VALUE_THRESHOLD,
)
from ev import find_value_bets
from middles import find_middles, find_spread_arbs, find_totals_arbs
from models import (
    ArbOpportunity,
    BackLayArb,
    Event,
    LineArb,
    LineStats,
    MiddleOpportunity,
    Opportunity,
    ScanStats,
    ValueBet,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    arbs: List[ArbOpportunity] = field(default_factory=list)
    back_lay_arbs: List[BackLayArb] = field(default_factory=list)
    value_bets: List[ValueBet] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)

    @property
    def opportunities(self) -> List[Opportunity]:
        """Arbs, near-arbs and back/lay arbs in one profit-ordered list."""
        return sort_by_profit([*self.arbs, *self.back_lay_arbs])


@dataclass(frozen=True)
class LineDetectionResult:
    spread_arbs: List[LineArb] = field(default_factory=list)
    totals_arbs: List[LineArb] = field(default_factory=list)
    middles: List[MiddleOpportunity] = field(default_factory=list)
    stats: LineStats = field(default_factory=LineStats)


def _bookmaker_sort_key(opportunity: Opportunity) -> tuple:
    key = opportunity.key()
    return key.event_id, key.bookmakers, key.detail


def sort_by_profit(items: Iterable[Opportunity]) -> List[Opportunity]:
    """Profit descending, then event id and bookmakers so equal profits keep a stable order."""
    return sorted(items, key=lambda item: (-item.profit_percentage, *_bookmaker_sort_key(item)))


def sort_by_edge(items: Iterable[ValueBet]) -> List[ValueBet]:
    return sorted(items, key=lambda item: (-item.edge_percentage, *_bookmaker_sort_key(item)))


def sort_by_expected_value(items: Iterable[MiddleOpportunity]) -> List[MiddleOpportunity]:
    return sorted(items, key=lambda item: (-item.expected_value, *_bookmaker_sort_key(item)))


def detect_opportunities(
    events: Sequence[Event],
    near_arb_threshold: float = NEAR_ARB_THRESHOLD,
    value_threshold: float = VALUE_THRESHOLD,
    total_stake: float = DEFAULT_TOTAL_STAKE,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Optional[Iterable[str]] = None,
) -> DetectionResult:
    """Find moneyline arbs, near-arbs, back/lay arbs and value bets.

    Pure over its input: the same event list always produces the same result.
    """
    exchanges = set(EXCHANGE_KEYS if exchange_keys is None else exchange_keys)
    arbs: List[ArbOpportunity] = []
    back_lay: List[BackLayArb] = []
    value_bets: List[ValueBet] = []
    bookmakers = set()
    sports = set()
    multi_book_events = 0

    for event in events:
        sports.add(event.sport_key)
        event_books = event.bookmaker_keys()
        bookmakers.update(event_books)
        if len(event_books) >= 2:
            multi_book_events += 1
        arb = find_event_arb(event, near_arb_threshold, total_stake, commission_rate, exchanges)
        if arb is not None:
            arbs.append(arb)
        back_lay.extend(find_back_lay_arbs(event, total_stake, commission_rate, exchanges))
        value_bets.extend(
            find_value_bets(event, value_threshold, total_stake, commission_rate, exchanges)
        )

    stats = ScanStats(
        total_events=len(events),
        events_with_multiple_bookmakers=multi_book_events,
        total_bookmakers=len(bookmakers),
        arbs_found=sum(1 for arb in arbs if arb.kind == "arb"),
        near_arbs_found=sum(1 for arb in arbs if arb.kind == "near-arb"),
        value_bets_found=len(value_bets),
        back_lay_arbs_found=len(back_lay),
        sports_scanned=len(sports),
        sports_total=len(sports),
    )
    logger.debug("Moneyline detection stats: %s", stats)
    return DetectionResult(
        arbs=sort_by_profit(arbs),
        back_lay_arbs=sort_by_profit(back_lay),
        value_bets=sort_by_edge(value_bets),
        stats=stats,
    )


def detect_line_opportunities(
    events: Sequence[Event],
    near_arb_threshold: float = NEAR_ARB_THRESHOLD,
    total_stake: float = DEFAULT_TOTAL_STAKE,
    commission_rate: float = DEFAULT_COMMISSION,
    exchange_keys: Optional[Iterable[str]] = None,
    max_middle_loss_percent: float = MAX_MIDDLE_LOSS_PERCENT,
) -> LineDetectionResult:
    """Find spread arbs, totals arbs and middles."""
    exchanges = set(EXCHANGE_KEYS if exchange_keys is None else exchange_keys)
    spread_arbs: List[LineArb] = []
    totals_arbs: List[LineArb] = []
    middles: List[MiddleOpportunity] = []

    for event in events:
        spread_arbs.extend(
            find_spread_arbs(event, near_arb_threshold, total_stake, commission_rate, exchanges)
        )
        totals_arbs.extend(
            find_totals_arbs(event, near_arb_threshold, total_stake, commission_rate, exchanges)
        )
        middles.extend(
            find_middles(
                event,
                total_stake,
                commission_rate,
                exchanges,
                max_loss_percent=max_middle_loss_percent,
            )
        )

    stats = LineStats(
        total_events=len(events),
        spread_arbs_found=sum(1 for arb in spread_arbs if arb.arb_type == "arb"),
        totals_arbs_found=sum(1 for arb in totals_arbs if arb.arb_type == "arb"),
        middles_found=len(middles),
        near_arbs_found=sum(
            1 for arb in [*spread_arbs, *totals_arbs] if arb.arb_type == "near-arb"
        ),
    )
    return LineDetectionResult(
        spread_arbs=sort_by_profit(spread_arbs),
        totals_arbs=sort_by_profit(totals_arbs),
        middles=sort_by_expected_value(middles),
        stats=stats,
    )
