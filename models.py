"""Typed event inputs, opportunity records and their dict (de)serialization.

Every opportunity carries a ``kind`` discriminant:

    arb | near-arb | back-lay | value-bet | spread | totals | middle

``opportunity_to_dict`` / ``opportunity_from_dict`` are the only way
opportunities cross a boundary (snapshot files, API responses), and
``opportunity_from_dict`` rejects anything it cannot fully validate.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union


class SerializationError(ValueError):
    """Raised when a stored or received record does not match its declared kind."""


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise SerializationError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise SerializationError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_point(value: Optional[float]) -> str:
    if value is None:
        return ""
    return f"{float(value):g}"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OutcomePrice:
    name: str
    price: float
    point: Optional[float] = None


@dataclass(frozen=True)
class BookmakerQuote:
    """One bookmaker's prices for one market of an event."""

    bookmaker_key: str
    market: str
    outcomes: Tuple[OutcomePrice, ...]
    title: str = ""
    last_update: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.title or self.bookmaker_key


@dataclass(frozen=True)
class EventRef:
    id: str
    sport_key: str
    home_team: str
    away_team: str
    commence_time: datetime
    sport_title: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sport_key": self.sport_key,
            "sport_title": self.sport_title,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "commence_time": to_iso(self.commence_time),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "EventRef":
        return cls(
            id=_require_str(payload, "id"),
            sport_key=_require_str(payload, "sport_key"),
            home_team=_require_str(payload, "home_team"),
            away_team=_require_str(payload, "away_team"),
            commence_time=parse_iso(payload.get("commence_time")),
            sport_title=str(payload.get("sport_title") or ""),
        )


@dataclass(frozen=True)
class Event:
    id: str
    sport_key: str
    home_team: str
    away_team: str
    commence_time: datetime
    quotes: Tuple[BookmakerQuote, ...] = ()
    sport_title: str = ""

    def quotes_for(self, market: str) -> List[BookmakerQuote]:
        return [quote for quote in self.quotes if quote.market == market]

    def bookmaker_keys(self) -> set:
        return {quote.bookmaker_key for quote in self.quotes}

    def ref(self) -> EventRef:
        return EventRef(
            id=self.id,
            sport_key=self.sport_key,
            home_team=self.home_team,
            away_team=self.away_team,
            commence_time=self.commence_time,
            sport_title=self.sport_title,
        )


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------

class OpportunityKey(NamedTuple):
    """Composite identity used to collapse duplicates across regions."""

    family: str
    event_id: str
    bookmakers: Tuple[str, ...]
    detail: Tuple[str, ...]


@dataclass(frozen=True)
class Leg:
    outcome: str
    bookmaker_key: str
    bookmaker: str
    odds: float
    effective_odds: float
    stake: float
    point: Optional[float] = None

    @property
    def payout(self) -> float:
        return self.stake * self.effective_odds

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "bookmaker_key": self.bookmaker_key,
            "bookmaker": self.bookmaker,
            "odds": self.odds,
            "effective_odds": self.effective_odds,
            "stake": self.stake,
            "point": self.point,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Leg":
        point = payload.get("point")
        return cls(
            outcome=_require_str(payload, "outcome"),
            bookmaker_key=_require_str(payload, "bookmaker_key"),
            bookmaker=str(payload.get("bookmaker") or payload["bookmaker_key"]),
            odds=_require_float(payload, "odds"),
            effective_odds=_require_float(payload, "effective_odds"),
            stake=_require_float(payload, "stake"),
            point=float(point) if point is not None else None,
        )


@dataclass(frozen=True)
class ArbOpportunity:
    KINDS: ClassVar[Tuple[str, ...]] = ("arb", "near-arb")

    kind: str
    event: EventRef
    market: str
    legs: Tuple[Leg, ...]
    implied_sum: float
    profit_percentage: float
    total_stake: float
    guaranteed_return: float

    def key(self) -> OpportunityKey:
        return OpportunityKey(
            "h2h",
            self.event.id,
            tuple(leg.bookmaker_key for leg in self.legs),
            tuple(leg.outcome for leg in self.legs),
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "event": self.event.to_dict(),
            "market": self.market,
            "legs": [leg.to_dict() for leg in self.legs],
            "implied_sum": self.implied_sum,
            "profit_percentage": self.profit_percentage,
            "total_stake": self.total_stake,
            "guaranteed_return": self.guaranteed_return,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ArbOpportunity":
        opportunity = cls(
            kind=payload["kind"],
            event=EventRef.from_dict(payload["event"]),
            market=_require_str(payload, "market"),
            legs=_legs(payload, minimum=2, maximum=3),
            implied_sum=_require_float(payload, "implied_sum"),
            profit_percentage=_require_float(payload, "profit_percentage"),
            total_stake=_require_float(payload, "total_stake"),
            guaranteed_return=_require_float(payload, "guaranteed_return"),
        )
        if (opportunity.profit_percentage > 0) != (opportunity.kind == "arb"):
            raise SerializationError(
                f"{opportunity.kind} with profit {opportunity.profit_percentage} is inconsistent"
            )
        return opportunity


@dataclass(frozen=True)
class BackLayArb:
    KINDS: ClassVar[Tuple[str, ...]] = ("back-lay",)

    event: EventRef
    outcome: str
    back_bookmaker_key: str
    back_bookmaker: str
    back_odds: float
    back_stake: float
    exchange_key: str
    exchange: str
    lay_odds: float
    lay_stake: float
    liability: float
    commission: float
    guaranteed_profit: float
    profit_percentage: float
    kind: str = "back-lay"

    def key(self) -> OpportunityKey:
        return OpportunityKey(
            "back-lay",
            self.event.id,
            (self.back_bookmaker_key, self.exchange_key),
            (self.outcome,),
        )

    def to_dict(self) -> dict:
        payload = {name: getattr(self, name) for name in _field_names(self) if name != "event"}
        payload["event"] = self.event.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "BackLayArb":
        return cls(
            event=EventRef.from_dict(payload["event"]),
            outcome=_require_str(payload, "outcome"),
            back_bookmaker_key=_require_str(payload, "back_bookmaker_key"),
            back_bookmaker=_require_str(payload, "back_bookmaker"),
            back_odds=_require_float(payload, "back_odds"),
            back_stake=_require_float(payload, "back_stake"),
            exchange_key=_require_str(payload, "exchange_key"),
            exchange=_require_str(payload, "exchange"),
            lay_odds=_require_float(payload, "lay_odds"),
            lay_stake=_require_float(payload, "lay_stake"),
            liability=_require_float(payload, "liability"),
            commission=_require_float(payload, "commission"),
            guaranteed_profit=_require_float(payload, "guaranteed_profit"),
            profit_percentage=_require_float(payload, "profit_percentage"),
        )


@dataclass(frozen=True)
class ValueBet:
    KINDS: ClassVar[Tuple[str, ...]] = ("value-bet",)

    event: EventRef
    leg: Leg
    fair_odds: float
    fair_probability: float
    edge_percentage: float
    reference: str
    books_in_consensus: int
    kind: str = "value-bet"

    def key(self) -> OpportunityKey:
        return OpportunityKey(
            "value-bet", self.event.id, (self.leg.bookmaker_key,), (self.leg.outcome,)
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "event": self.event.to_dict(),
            "leg": self.leg.to_dict(),
            "fair_odds": self.fair_odds,
            "fair_probability": self.fair_probability,
            "edge_percentage": self.edge_percentage,
            "reference": self.reference,
            "books_in_consensus": self.books_in_consensus,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ValueBet":
        leg = payload.get("leg")
        if not isinstance(leg, dict):
            raise SerializationError("value-bet requires a leg object")
        reference = _require_str(payload, "reference")
        if reference not in {"consensus", "exchange"}:
            raise SerializationError(f"Unknown value-bet reference: {reference}")
        return cls(
            event=EventRef.from_dict(payload["event"]),
            leg=Leg.from_dict(leg),
            fair_odds=_require_float(payload, "fair_odds"),
            fair_probability=_require_float(payload, "fair_probability"),
            edge_percentage=_require_float(payload, "edge_percentage"),
            reference=reference,
            books_in_consensus=int(payload.get("books_in_consensus") or 0),
        )


@dataclass(frozen=True)
class LineArb:
    """Spread or totals arbitrage on one matched line value."""

    KINDS: ClassVar[Tuple[str, ...]] = ("spread", "totals")

    kind: str
    arb_type: str
    event: EventRef
    line: float
    legs: Tuple[Leg, ...]
    implied_sum: float
    profit_percentage: float
    total_stake: float
    guaranteed_return: float

    def key(self) -> OpportunityKey:
        return OpportunityKey(
            self.kind,
            self.event.id,
            tuple(leg.bookmaker_key for leg in self.legs),
            tuple(f"{leg.outcome}{_format_point(leg.point)}" for leg in self.legs),
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "type": self.arb_type,
            "event": self.event.to_dict(),
            "line": self.line,
            "legs": [leg.to_dict() for leg in self.legs],
            "implied_sum": self.implied_sum,
            "profit_percentage": self.profit_percentage,
            "total_stake": self.total_stake,
            "guaranteed_return": self.guaranteed_return,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "LineArb":
        arb_type = _require_str(payload, "type")
        if arb_type not in ArbOpportunity.KINDS:
            raise SerializationError(f"Unknown line arb type: {arb_type}")
        return cls(
            kind=payload["kind"],
            arb_type=arb_type,
            event=EventRef.from_dict(payload["event"]),
            line=_require_float(payload, "line"),
            legs=_legs(payload, minimum=2, maximum=2),
            implied_sum=_require_float(payload, "implied_sum"),
            profit_percentage=_require_float(payload, "profit_percentage"),
            total_stake=_require_float(payload, "total_stake"),
            guaranteed_return=_require_float(payload, "guaranteed_return"),
        )


@dataclass(frozen=True)
class MiddleOpportunity:
    """Two opposite-side bets on different lines that both win inside (low, high)."""

    KINDS: ClassVar[Tuple[str, ...]] = ("middle",)

    event: EventRef
    market: str
    legs: Tuple[Leg, ...]
    low: float
    high: float
    expected_profit: float
    potential_profit: float
    middle_probability: float
    expected_value: float
    total_stake: float
    description: str = ""
    kind: str = "middle"

    @property
    def middle_range(self) -> Tuple[float, float]:
        return self.low, self.high

    @property
    def gap(self) -> float:
        return self.high - self.low

    def key(self) -> OpportunityKey:
        return OpportunityKey(
            "middle",
            self.event.id,
            tuple(leg.bookmaker_key for leg in self.legs),
            (self.market, _format_point(self.low), _format_point(self.high)),
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "event": self.event.to_dict(),
            "market": self.market,
            "legs": [leg.to_dict() for leg in self.legs],
            "middle_range": {"low": self.low, "high": self.high},
            "expected_profit": self.expected_profit,
            "potential_profit": self.potential_profit,
            "middle_probability": self.middle_probability,
            "expected_value": self.expected_value,
            "total_stake": self.total_stake,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "MiddleOpportunity":
        middle_range = payload.get("middle_range")
        if not isinstance(middle_range, dict):
            raise SerializationError("middle requires a middle_range object")
        low = _require_float(middle_range, "low")
        high = _require_float(middle_range, "high")
        if low >= high:
            raise SerializationError(f"middle_range low {low} must be below high {high}")
        return cls(
            event=EventRef.from_dict(payload["event"]),
            market=_require_str(payload, "market"),
            legs=_legs(payload, minimum=2, maximum=2),
            low=low,
            high=high,
            expected_profit=_require_float(payload, "expected_profit"),
            potential_profit=_require_float(payload, "potential_profit"),
            middle_probability=_require_float(payload, "middle_probability"),
            expected_value=_require_float(payload, "expected_value"),
            total_stake=_require_float(payload, "total_stake"),
            description=str(payload.get("description") or ""),
        )


Opportunity = Union[ArbOpportunity, BackLayArb, ValueBet, LineArb, MiddleOpportunity]

_KIND_TYPES: Dict[str, type] = {
    kind: opportunity_type
    for opportunity_type in (ArbOpportunity, BackLayArb, ValueBet, LineArb, MiddleOpportunity)
    for kind in opportunity_type.KINDS
}


def opportunity_to_dict(opportunity: Opportunity) -> dict:
    if opportunity.kind not in _KIND_TYPES:
        raise SerializationError(f"Unknown opportunity kind: {opportunity.kind!r}")
    return opportunity.to_dict()


def opportunity_from_dict(payload: Any) -> Opportunity:
    if not isinstance(payload, dict):
        raise SerializationError("Opportunity payload must be an object")
    kind = payload.get("kind")
    opportunity_type = _KIND_TYPES.get(kind) if isinstance(kind, str) else None
    if opportunity_type is None:
        raise SerializationError(f"Unknown opportunity kind: {kind!r}")
    try:
        return opportunity_type.from_dict(payload)
    except SerializationError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise SerializationError(f"Invalid {kind} payload: {exc}") from exc


def opportunities_from_list(items: Any, expected_kinds: Sequence[str]) -> Tuple[Opportunity, ...]:
    if not isinstance(items, list):
        raise SerializationError("Opportunity list must be an array")
    parsed = []
    for item in items:
        opportunity = opportunity_from_dict(item)
        if opportunity.kind not in expected_kinds:
            raise SerializationError(
                f"Unexpected kind {opportunity.kind!r}, expected one of {', '.join(expected_kinds)}"
            )
        parsed.append(opportunity)
    return tuple(parsed)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScanStats:
    COUNTERS: ClassVar[Tuple[str, ...]] = (
        "total_events",
        "events_with_multiple_bookmakers",
        "arbs_found",
        "near_arbs_found",
        "value_bets_found",
        "back_lay_arbs_found",
    )
    GAUGES: ClassVar[Tuple[str, ...]] = ("total_bookmakers", "sports_scanned", "sports_total")

    total_events: int = 0
    events_with_multiple_bookmakers: int = 0
    total_bookmakers: int = 0
    arbs_found: int = 0
    near_arbs_found: int = 0
    value_bets_found: int = 0
    back_lay_arbs_found: int = 0
    sports_scanned: int = 0
    sports_total: int = 0

    def merge(self, other: "ScanStats") -> "ScanStats":
        """Combine stats of two regions: counters add up, gauges keep the maximum."""
        values = {name: getattr(self, name) + getattr(other, name) for name in self.COUNTERS}
        values.update({name: max(getattr(self, name), getattr(other, name)) for name in self.GAUGES})
        return ScanStats(**values)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, payload: Any) -> "ScanStats":
        return cls(**_int_fields(cls, payload))


@dataclass(frozen=True)
class LineStats:
    total_events: int = 0
    spread_arbs_found: int = 0
    totals_arbs_found: int = 0
    middles_found: int = 0
    near_arbs_found: int = 0

    def merge(self, other: "LineStats") -> "LineStats":
        return LineStats(
            **{name: getattr(self, name) + getattr(other, name) for name in _field_names(self)}
        )

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, payload: Any) -> "LineStats":
        return cls(**_int_fields(cls, payload))


# ---------------------------------------------------------------------------
# Region scans and progress batches
# ---------------------------------------------------------------------------

ARB_KINDS = ("arb", "near-arb", "back-lay")
LINE_KINDS = {"spread_arbs": ("spread",), "totals_arbs": ("totals",), "middles": ("middle",)}


@dataclass(frozen=True)
class RegionScanData:
    region: str
    scanned_at: datetime
    opportunities: Tuple[Opportunity, ...] = ()
    value_bets: Tuple[ValueBet, ...] = ()
    spread_arbs: Tuple[LineArb, ...] = ()
    totals_arbs: Tuple[LineArb, ...] = ()
    middles: Tuple[MiddleOpportunity, ...] = ()
    stats: ScanStats = field(default_factory=ScanStats)
    line_stats: LineStats = field(default_factory=LineStats)
    scan_duration_ms: int = 0
    remaining_credits: Optional[int] = None
    error: Optional[str] = None
    sport_errors: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "region": self.region,
            "scanned_at": to_iso(self.scanned_at),
            "opportunities": [opportunity_to_dict(item) for item in self.opportunities],
            "value_bets": [opportunity_to_dict(item) for item in self.value_bets],
            "spread_arbs": [opportunity_to_dict(item) for item in self.spread_arbs],
            "totals_arbs": [opportunity_to_dict(item) for item in self.totals_arbs],
            "middles": [opportunity_to_dict(item) for item in self.middles],
            "stats": self.stats.to_dict(),
            "line_stats": self.line_stats.to_dict(),
            "scan_duration_ms": self.scan_duration_ms,
            "remaining_credits": self.remaining_credits,
            "error": self.error,
            "sport_errors": list(self.sport_errors),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "RegionScanData":
        if not isinstance(payload, dict):
            raise SerializationError("Region scan payload must be an object")
        try:
            remaining = payload.get("remaining_credits")
            return cls(
                region=_require_str(payload, "region"),
                scanned_at=parse_iso(payload.get("scanned_at")),
                opportunities=opportunities_from_list(payload.get("opportunities", []), ARB_KINDS),
                value_bets=opportunities_from_list(payload.get("value_bets", []), ("value-bet",)),
                spread_arbs=opportunities_from_list(
                    payload.get("spread_arbs", []), LINE_KINDS["spread_arbs"]
                ),
                totals_arbs=opportunities_from_list(
                    payload.get("totals_arbs", []), LINE_KINDS["totals_arbs"]
                ),
                middles=opportunities_from_list(payload.get("middles", []), LINE_KINDS["middles"]),
                stats=ScanStats.from_dict(payload.get("stats")),
                line_stats=LineStats.from_dict(payload.get("line_stats")),
                scan_duration_ms=int(payload.get("scan_duration_ms") or 0),
                remaining_credits=int(remaining) if remaining is not None else None,
                error=payload.get("error") or None,
                sport_errors=tuple(str(item) for item in payload.get("sport_errors") or []),
            )
        except SerializationError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"Invalid region scan payload: {exc}") from exc


PHASES = ("h2h", "lines", "complete")


@dataclass(frozen=True)
class ScanProgressBatch:
    """Running snapshot of a scan after one sport group; never mutated once written."""

    region: str
    scan_id: str
    batch_index: int
    sport_keys: Tuple[str, ...]
    phase: str
    created_at: datetime
    opportunities: Tuple[Opportunity, ...] = ()
    value_bets: Tuple[ValueBet, ...] = ()
    spread_arbs: Tuple[LineArb, ...] = ()
    totals_arbs: Tuple[LineArb, ...] = ()
    middles: Tuple[MiddleOpportunity, ...] = ()
    stats: ScanStats = field(default_factory=ScanStats)
    line_stats: LineStats = field(default_factory=LineStats)
    is_last_batch: bool = False

    def __post_init__(self) -> None:
        if self.phase not in PHASES:
            raise ValueError(f"Unknown scan phase: {self.phase}")

    def to_dict(self) -> dict:
        return {
            "region": self.region,
            "scan_id": self.scan_id,
            "batch_index": self.batch_index,
            "sport_keys": list(self.sport_keys),
            "phase": self.phase,
            "is_last_batch": self.is_last_batch,
            "created_at": to_iso(self.created_at),
            "opportunities": [opportunity_to_dict(item) for item in self.opportunities],
            "value_bets": [opportunity_to_dict(item) for item in self.value_bets],
            "spread_arbs": [opportunity_to_dict(item) for item in self.spread_arbs],
            "totals_arbs": [opportunity_to_dict(item) for item in self.totals_arbs],
            "middles": [opportunity_to_dict(item) for item in self.middles],
            "stats": self.stats.to_dict(),
            "line_stats": self.line_stats.to_dict(),
        }


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _field_names(instance: Any) -> List[str]:
    return [item.name for item in dataclasses.fields(instance)]


def _require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise SerializationError(f"Missing or invalid field: {key}")
    return value


def _require_float(payload: dict, key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SerializationError(f"Missing or invalid number: {key}")
    return float(value)


def _legs(payload: dict, minimum: int, maximum: int) -> Tuple[Leg, ...]:
    items = payload.get("legs")
    if not isinstance(items, list) or not minimum <= len(items) <= maximum:
        raise SerializationError(f"Expected {minimum}-{maximum} legs")
    if not all(isinstance(item, dict) for item in items):
        raise SerializationError("Legs must be objects")
    return tuple(Leg.from_dict(item) for item in items)


def _int_fields(cls: type, payload: Any) -> Dict[str, int]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise SerializationError(f"{cls.__name__} payload must be an object")
    names = {item.name for item in dataclasses.fields(cls)}
    return {key: int(value) for key, value in payload.items() if key in names}
