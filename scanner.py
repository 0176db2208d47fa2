"""Region scan orchestration, rotation scheduling and merged-result queries."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from config import (
    BOOKMAKERS_BY_REGION,
    CACHE_MAX_AGE_SECONDS,
    DEFAULT_COMMISSION,
    DEFAULT_ONLY_SCANS_BETWEEN_ROTATIONS,
    DEFAULT_REGION,
    DEFAULT_TOTAL_STAKE,
    FILTER_REGION_BOOKMAKERS,
    H2H_MARKETS,
    LINE_MARKETS,
    MAX_HOURS_UNTIL_START,
    MIN_PROFIT,
    NEAR_ARB_THRESHOLD,
    ROTATION_ORDER,
    SCAN_TIME_BUDGET_SECONDS,
    SPORTS_PER_BATCH,
    VALUE_THRESHOLD,
    is_line_sport,
)
from detector import (
    detect_line_opportunities,
    detect_opportunities,
    sort_by_edge,
    sort_by_expected_value,
    sort_by_profit,
)
from models import (
    Event,
    LineStats,
    RegionScanData,
    ScanProgressBatch,
    ScanStats,
    opportunity_to_dict,
    to_iso,
    utc_now,
)
from progress import ScanProgressStream, new_scan_id
from providers import OddsProvider, ProviderError
from scan_cache import MergedScan, ScanCache

logger = logging.getLogger(__name__)


class ScannerError(Exception):
    """Raised for recoverable scanner issues."""


def _chunks(items: Sequence[str], size: int) -> Iterable[List[str]]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------

def regions_for_cycle(
    counter: int,
    default_region: str = DEFAULT_REGION,
    rotation_order: Sequence[str] = ROTATION_ORDER,
    default_only_between: int = DEFAULT_ONLY_SCANS_BETWEEN_ROTATIONS,
) -> List[str]:
    """Regions to scan for the cycle numbered ``counter``.

    The default region is scanned every cycle. With ``default_only_between``
    at 0 every cycle also takes the next rotation region in turn; otherwise
    that many default-only cycles sit between rotation slots.
    """
    regions = [default_region]
    if not rotation_order:
        return regions
    cycle = max(0, default_only_between) + 1
    if counter % cycle == 0:
        rotated = rotation_order[(counter // cycle) % len(rotation_order)]
        if rotated != default_region:
            regions.append(rotated)
    return regions


# ---------------------------------------------------------------------------
# Region scan
# ---------------------------------------------------------------------------

@dataclass
class _ScanState:
    """Running totals for one region scan."""

    sports_total: int
    arbs: list = field(default_factory=list)
    back_lay: list = field(default_factory=list)
    value_bets: list = field(default_factory=list)
    spread_arbs: list = field(default_factory=list)
    totals_arbs: list = field(default_factory=list)
    middles: list = field(default_factory=list)
    event_ids: set = field(default_factory=set)
    multi_book_event_ids: set = field(default_factory=set)
    line_event_ids: set = field(default_factory=set)
    bookmakers: set = field(default_factory=set)
    sports_scanned: set = field(default_factory=set)
    sport_errors: list = field(default_factory=list)
    remaining_credits: Optional[int] = None
    batch_index: int = 0

    def stats(self) -> ScanStats:
        return ScanStats(
            total_events=len(self.event_ids),
            events_with_multiple_bookmakers=len(self.multi_book_event_ids),
            total_bookmakers=len(self.bookmakers),
            arbs_found=sum(1 for arb in self.arbs if arb.kind == "arb"),
            near_arbs_found=sum(1 for arb in self.arbs if arb.kind == "near-arb"),
            value_bets_found=len(self.value_bets),
            back_lay_arbs_found=len(self.back_lay),
            sports_scanned=len(self.sports_scanned),
            sports_total=self.sports_total,
        )

    def line_stats(self) -> LineStats:
        line_arbs = [*self.spread_arbs, *self.totals_arbs]
        return LineStats(
            total_events=len(self.line_event_ids),
            spread_arbs_found=sum(1 for arb in self.spread_arbs if arb.arb_type == "arb"),
            totals_arbs_found=sum(1 for arb in self.totals_arbs if arb.arb_type == "arb"),
            middles_found=len(self.middles),
            near_arbs_found=sum(1 for arb in line_arbs if arb.arb_type == "near-arb"),
        )

    def opportunities(self) -> tuple:
        return tuple(sort_by_profit([*self.arbs, *self.back_lay]))


class RegionScanner:
    """Scans one region at a time and publishes results to the cache and progress stream."""

    def __init__(
        self,
        provider: OddsProvider,
        cache: ScanCache,
        progress: ScanProgressStream,
        near_arb_threshold: float = NEAR_ARB_THRESHOLD,
        value_threshold: float = VALUE_THRESHOLD,
        total_stake: float = DEFAULT_TOTAL_STAKE,
        commission_rate: float = DEFAULT_COMMISSION,
        sports_per_batch: int = SPORTS_PER_BATCH,
        time_budget_seconds: float = SCAN_TIME_BUDGET_SECONDS,
        max_hours_until_start: float = MAX_HOURS_UNTIL_START,
        filter_region_bookmakers: bool = FILTER_REGION_BOOKMAKERS,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.progress = progress
        self.near_arb_threshold = near_arb_threshold
        self.value_threshold = value_threshold
        self.total_stake = total_stake
        self.commission_rate = commission_rate
        self.sports_per_batch = sports_per_batch
        self.time_budget_seconds = time_budget_seconds
        self.max_hours_until_start = max_hours_until_start
        self.filter_region_bookmakers = filter_region_bookmakers
        self._clock = clock
        self._monotonic = monotonic

    def _prepare_events(self, events: Sequence[Event], region: str, now: datetime) -> List[Event]:
        """Drop started or far-off events and quotes from books outside the region."""
        horizon = now + timedelta(hours=self.max_hours_until_start)
        allowed = set(BOOKMAKERS_BY_REGION.get(region, []))
        prepared = []
        for event in events:
            if not now < event.commence_time <= horizon:
                continue
            if self.filter_region_bookmakers and allowed:
                quotes = tuple(quote for quote in event.quotes if quote.bookmaker_key in allowed)
                if len(quotes) != len(event.quotes):
                    event = Event(
                        id=event.id,
                        sport_key=event.sport_key,
                        home_team=event.home_team,
                        away_team=event.away_team,
                        commence_time=event.commence_time,
                        quotes=quotes,
                        sport_title=event.sport_title,
                    )
            prepared.append(event)
        return prepared

    def _fetch_group(
        self, region: str, sport_keys: Sequence[str], markets: Sequence[str], state: _ScanState
    ) -> tuple:
        events: List[Event] = []
        fetched: List[str] = []
        for sport_key in sport_keys:
            try:
                result = self.provider.fetch_odds([sport_key], markets, region)
            except ProviderError as exc:
                logger.warning("%s scan: skipping %s (%s)", region, sport_key, exc)
                state.sport_errors.append(f"{sport_key}: {exc}")
                continue
            fetched.append(sport_key)
            events.extend(result.events)
            if result.meta.remaining_requests is not None:
                state.remaining_credits = result.meta.remaining_requests
        return events, fetched

    def _write_batch(
        self,
        region: str,
        scan_id: str,
        sport_keys: Sequence[str],
        phase: str,
        state: _ScanState,
        is_last_batch: bool = False,
    ) -> None:
        batch = ScanProgressBatch(
            region=region,
            scan_id=scan_id,
            batch_index=state.batch_index,
            sport_keys=tuple(sport_keys),
            phase=phase,
            created_at=self.progress.now(),
            opportunities=state.opportunities(),
            value_bets=tuple(sort_by_edge(state.value_bets)),
            spread_arbs=tuple(sort_by_profit(state.spread_arbs)),
            totals_arbs=tuple(sort_by_profit(state.totals_arbs)),
            middles=tuple(sort_by_expected_value(state.middles)),
            stats=state.stats(),
            line_stats=state.line_stats(),
            is_last_batch=is_last_batch,
        )
        self.progress.write_batch(batch)
        state.batch_index += 1

    def _over_budget(self, started: float) -> bool:
        return self._monotonic() - started > self.time_budget_seconds

    def scan_region(self, region: str) -> RegionScanData:
        """Run the h2h then lines phases for ``region`` and store the result.

        Failed sports and an exhausted time budget leave a partial result
        (``sports_scanned < sports_total``) that is still stored.
        """
        if region not in BOOKMAKERS_BY_REGION:
            raise ScannerError(f"Unknown region: {region}")
        started = self._monotonic()
        scan_id = new_scan_id(region, self._clock())
        self.progress.start_scan(region, scan_id)
        logger.info("Starting %s scan %s", region, scan_id)

        try:
            sports = self.provider.get_supported_sports()
        except ProviderError as exc:
            logger.error("%s scan: could not list sports: %s", region, exc)
            state = _ScanState(sports_total=0)
            self._write_batch(region, scan_id, [], "complete", state, is_last_batch=True)
            data = RegionScanData(
                region=region,
                scanned_at=self._clock(),
                scan_duration_ms=int((self._monotonic() - started) * 1000),
                error=str(exc),
            )
            self.cache.update_region_scan(region, data)
            return data

        sport_keys = [sport["key"] for sport in sports if isinstance(sport.get("key"), str)]
        line_keys = [key for key in sport_keys if is_line_sport(key)]
        state = _ScanState(sports_total=len(sport_keys))
        timed_out = False

        for phase, markets, keys in (("h2h", H2H_MARKETS, sport_keys), ("lines", LINE_MARKETS, line_keys)):
            for group in _chunks(keys, self.sports_per_batch):
                if self._over_budget(started):
                    timed_out = True
                    break
                raw_events, fetched = self._fetch_group(region, group, markets, state)
                events = self._prepare_events(raw_events, region, self._clock())
                if phase == "h2h":
                    self._apply_moneyline(events, fetched, state)
                else:
                    self._apply_lines(events, state)
                self._write_batch(region, scan_id, group, phase, state)
            if timed_out:
                logger.warning(
                    "%s scan stopped after %.0fs budget: %d/%d sports scanned",
                    region,
                    self.time_budget_seconds,
                    len(state.sports_scanned),
                    state.sports_total,
                )
                break

        self._write_batch(region, scan_id, [], "complete", state, is_last_batch=True)
        data = RegionScanData(
            region=region,
            scanned_at=self._clock(),
            opportunities=state.opportunities(),
            value_bets=tuple(sort_by_edge(state.value_bets)),
            spread_arbs=tuple(sort_by_profit(state.spread_arbs)),
            totals_arbs=tuple(sort_by_profit(state.totals_arbs)),
            middles=tuple(sort_by_expected_value(state.middles)),
            stats=state.stats(),
            line_stats=state.line_stats(),
            scan_duration_ms=int((self._monotonic() - started) * 1000),
            remaining_credits=state.remaining_credits,
            sport_errors=tuple(state.sport_errors),
        )
        self.cache.update_region_scan(region, data)
        logger.info(
            "Finished %s scan in %dms: %d arbs, %d near-arbs, %d value bets, %d middles",
            region,
            data.scan_duration_ms,
            data.stats.arbs_found,
            data.stats.near_arbs_found,
            data.stats.value_bets_found,
            data.line_stats.middles_found,
        )
        return data

    def _apply_moneyline(self, events: List[Event], fetched: Sequence[str], state: _ScanState) -> None:
        state.sports_scanned.update(fetched)
        for event in events:
            state.event_ids.add(event.id)
            books = event.bookmaker_keys()
            state.bookmakers.update(books)
            if len(books) >= 2:
                state.multi_book_event_ids.add(event.id)
        result = detect_opportunities(
            events,
            near_arb_threshold=self.near_arb_threshold,
            value_threshold=self.value_threshold,
            total_stake=self.total_stake,
            commission_rate=self.commission_rate,
        )
        state.arbs.extend(result.arbs)
        state.back_lay.extend(result.back_lay_arbs)
        state.value_bets.extend(result.value_bets)

    def _apply_lines(self, events: List[Event], state: _ScanState) -> None:
        for event in events:
            state.line_event_ids.add(event.id)
            state.bookmakers.update(event.bookmaker_keys())
        result = detect_line_opportunities(
            events,
            near_arb_threshold=self.near_arb_threshold,
            total_stake=self.total_stake,
            commission_rate=self.commission_rate,
        )
        state.spread_arbs.extend(result.spread_arbs)
        state.totals_arbs.extend(result.totals_arbs)
        state.middles.extend(result.middles)


def run_scan_cycle(
    scanner: RegionScanner,
    default_region: str = DEFAULT_REGION,
    rotation_order: Sequence[str] = ROTATION_ORDER,
    default_only_between: int = DEFAULT_ONLY_SCANS_BETWEEN_ROTATIONS,
) -> Dict[str, Optional[RegionScanData]]:
    """Take one rotation slot and scan the regions it maps to, each independently."""
    counter = scanner.cache.get_and_increment_rotation()
    regions = regions_for_cycle(counter, default_region, rotation_order, default_only_between)
    logger.info("Scan cycle %d: regions %s", counter, ", ".join(regions))
    results: Dict[str, Optional[RegionScanData]] = {}
    for region in regions:
        try:
            results[region] = scanner.scan_region(region)
        except Exception:
            logger.exception("%s scan failed", region)
            results[region] = None
    return results


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QueryFilters:
    min_profit: float = MIN_PROFIT
    max_hours: float = MAX_HOURS_UNTIL_START
    max_age_seconds: int = CACHE_MAX_AGE_SECONDS
    include_h2h: bool = True
    include_value_bets: bool = True
    include_spreads: bool = True
    include_totals: bool = True
    include_middles: bool = True


def _in_window(commence_time: datetime, now: datetime, max_hours: float) -> bool:
    return now < commence_time <= now + timedelta(hours=max_hours)


def build_query_response(
    merged: MergedScan, filters: QueryFilters, now: Optional[datetime] = None
) -> dict:
    """Filter a merged scan by event window, minimum profit and market toggles."""
    now = now or utc_now()

    def window(items):
        return [item for item in items if _in_window(item.event.commence_time, now, filters.max_hours)]

    def profitable(items):
        return [item for item in window(items) if item.profit_percentage >= filters.min_profit]

    opportunities = profitable(merged.opportunities) if filters.include_h2h else []
    value_bets = window(merged.value_bets) if filters.include_value_bets else []
    spread_arbs = profitable(merged.spread_arbs) if filters.include_spreads else []
    totals_arbs = profitable(merged.totals_arbs) if filters.include_totals else []
    middles = window(merged.middles) if filters.include_middles else []

    return {
        "success": True,
        "opportunities": [opportunity_to_dict(item) for item in opportunities],
        "value_bets": [opportunity_to_dict(item) for item in value_bets],
        "spread_arbs": [opportunity_to_dict(item) for item in spread_arbs],
        "totals_arbs": [opportunity_to_dict(item) for item in totals_arbs],
        "middles": [opportunity_to_dict(item) for item in middles],
        "stats": merged.stats.to_dict(),
        "line_stats": merged.line_stats.to_dict(),
        "scanned_at": to_iso(merged.scanned_at) if merged.scanned_at else None,
        "region_ages": dict(merged.region_ages),
        "remaining_credits": merged.remaining_credits,
        "regions_included": list(merged.regions_included),
    }
