from __future__ import annotations

import json
import os
from typing import Dict, List, Optional, Sequence

from models import Event

from .base import ProviderError, ProviderMeta, ProviderResult, parse_events

PROVIDER_TITLE = "Static odds file"

STATIC_ODDS_PATH = os.getenv(
    "STATIC_ODDS_PATH",
    os.path.join("data", "sample_odds.json"),
).strip()


def load_file_events(path: str) -> List[Event]:
    if not path:
        raise ProviderError("STATIC_ODDS_PATH is empty")
    if not os.path.exists(path):
        raise ProviderError(f"Static odds file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ProviderError(f"Failed to read static odds file: {exc}") from exc
    return parse_events(payload)


class StaticOddsProvider:
    """Serves a fixed event list; used for development and offline runs."""

    name = PROVIDER_TITLE

    def __init__(
        self,
        events: Sequence[Event],
        sport_titles: Optional[Dict[str, str]] = None,
        remaining_requests: Optional[int] = None,
    ) -> None:
        self._events = list(events)
        self._titles = dict(sport_titles or {})
        self._remaining = remaining_requests

    @classmethod
    def from_file(cls, path: str = STATIC_ODDS_PATH) -> "StaticOddsProvider":
        return cls(load_file_events(path))

    def get_supported_sports(self) -> List[dict]:
        keys = sorted({event.sport_key for event in self._events})
        return [
            {"key": key, "title": self._titles.get(key, key), "active": True, "has_outrights": False}
            for key in keys
        ]

    def fetch_odds(self, sport_keys: Sequence[str], markets: Sequence[str], region: str) -> ProviderResult:
        wanted_sports = set(sport_keys)
        wanted_markets = set(markets)
        events = []
        for event in self._events:
            if event.sport_key not in wanted_sports:
                continue
            quotes = tuple(quote for quote in event.quotes if quote.market in wanted_markets)
            events.append(
                Event(
                    id=event.id,
                    sport_key=event.sport_key,
                    home_team=event.home_team,
                    away_team=event.away_team,
                    commence_time=event.commence_time,
                    quotes=quotes,
                    sport_title=event.sport_title,
                )
            )
        return ProviderResult(
            events=events,
            meta=ProviderMeta(source=self.name, remaining_requests=self._remaining),
        )
