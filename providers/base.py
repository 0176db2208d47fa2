from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from models import BookmakerQuote, Event, OutcomePrice, SerializationError, parse_iso

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised for provider-specific recoverable issues."""


@dataclass(frozen=True)
class ProviderMeta:
    source: str
    remaining_requests: Optional[int] = None
    used_requests: Optional[int] = None
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProviderResult:
    events: List[Event]
    meta: ProviderMeta


class OddsProvider(Protocol):
    name: str

    def get_supported_sports(self) -> List[dict]:
        ...

    def fetch_odds(self, sport_keys: Sequence[str], markets: Sequence[str], region: str) -> ProviderResult:
        ...


def _parse_outcome(payload: object) -> Optional[OutcomePrice]:
    if not isinstance(payload, dict):
        return None
    name = payload.get("name")
    price = payload.get("price")
    if not isinstance(name, str) or not name.strip():
        return None
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return None
    point = payload.get("point")
    if point is not None:
        try:
            point = float(point)
        except (TypeError, ValueError):
            return None
    return OutcomePrice(name=name.strip(), price=float(price), point=point)


def parse_event(payload: object) -> Optional[Event]:
    """Convert an odds-feed event dict into an Event; None when it is unusable.

    Bookmakers and markets that fail to parse are skipped, the event survives.
    """
    if not isinstance(payload, dict):
        return None
    try:
        event_id = str(payload["id"])
        sport_key = str(payload["sport_key"])
        home_team = str(payload["home_team"])
        away_team = str(payload["away_team"])
        commence_time = parse_iso(payload.get("commence_time"))
    except (KeyError, SerializationError) as exc:
        logger.debug("Skipping malformed event %r: %s", payload.get("id"), exc)
        return None
    quotes = []
    for book in payload.get("bookmakers") or []:
        if not isinstance(book, dict) or not isinstance(book.get("key"), str):
            continue
        for market in book.get("markets") or []:
            if not isinstance(market, dict) or not isinstance(market.get("key"), str):
                continue
            outcomes = [_parse_outcome(item) for item in market.get("outcomes") or []]
            outcomes = [item for item in outcomes if item is not None]
            if not outcomes:
                continue
            quotes.append(
                BookmakerQuote(
                    bookmaker_key=book["key"],
                    market=market["key"],
                    outcomes=tuple(outcomes),
                    title=str(book.get("title") or ""),
                    last_update=market.get("last_update") or book.get("last_update"),
                )
            )
    return Event(
        id=event_id,
        sport_key=sport_key,
        home_team=home_team,
        away_team=away_team,
        commence_time=commence_time,
        quotes=tuple(quotes),
        sport_title=str(payload.get("sport_title") or ""),
    )


def parse_events(payload: object) -> List[Event]:
    if not isinstance(payload, list):
        raise ProviderError("Odds payload must be a JSON array")
    events = [parse_event(item) for item in payload]
    return [event for event in events if event is not None]
