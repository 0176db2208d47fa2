from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Sequence

import requests

from config import PRIORITY_SPORTS, REGION_CONFIG

from .base import ProviderError, ProviderMeta, ProviderResult, parse_events

logger = logging.getLogger(__name__)

PROVIDER_TITLE = "The Odds API"

BASE_URL = os.getenv("ODDS_API_BASE_URL", "https://api.the-odds-api.com/v4").strip().rstrip("/")
REQUEST_TIMEOUT = 30
LOW_CREDIT_FLOOR = 10


def _header_int(resp: requests.Response, name: str) -> Optional[int]:
    raw = resp.headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        return None


def sort_by_priority(sport_keys: Sequence[str]) -> List[str]:
    """Priority sports first in their listed order, then the rest as given."""
    order = {key: index for index, key in enumerate(PRIORITY_SPORTS)}
    priority = sorted((key for key in sport_keys if key in order), key=order.__getitem__)
    return priority + [key for key in sport_keys if key not in order]


class TheOddsApiProvider:
    name = PROVIDER_TITLE

    def __init__(self, api_key: str, base_url: str = BASE_URL, timeout: int = REQUEST_TIMEOUT) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.remaining_requests: Optional[int] = None
        self.used_requests: Optional[int] = None

    def _request(self, url: str, params: Dict[str, str]) -> requests.Response:
        if not self.api_key:
            raise ProviderError("ODDS_API_KEY is not configured")
        try:
            resp = requests.get(url, params={"apiKey": self.api_key, **params}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderError(f"Network error: {exc}") from exc
        remaining = _header_int(resp, "x-requests-remaining")
        used = _header_int(resp, "x-requests-used")
        if remaining is not None:
            self.remaining_requests = remaining
        if used is not None:
            self.used_requests = used
        if resp.status_code >= 400:
            try:
                payload = resp.json()
                message = payload.get("message") or payload.get("error")
            except (ValueError, AttributeError):
                message = resp.text or "Unknown error"
            raise ProviderError(message or f"API request failed ({resp.status_code})")
        return resp

    def get_supported_sports(self) -> List[dict]:
        """Active sports without outrights, priority sports first."""
        resp = self._request(f"{self.base_url}/sports/", {})
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError("Failed to parse sports list") from exc
        if not isinstance(payload, list):
            raise ProviderError("Sports payload must be a JSON array")
        sports = {
            item["key"]: item
            for item in payload
            if isinstance(item, dict)
            and isinstance(item.get("key"), str)
            and item.get("active")
            and not item.get("has_outrights")
        }
        return [sports[key] for key in sort_by_priority(list(sports))]

    def _fetch_sport(self, sport_key: str, markets: Sequence[str], api_regions: Sequence[str]) -> list:
        resp = self._request(
            f"{self.base_url}/sports/{sport_key}/odds/",
            {
                "regions": ",".join(api_regions),
                "markets": ",".join(markets),
                "oddsFormat": "decimal",
                "dateFormat": "iso",
            },
        )
        try:
            return parse_events(resp.json())
        except ValueError as exc:
            raise ProviderError(f"Failed to parse odds for {sport_key}") from exc

    def fetch_odds(self, sport_keys: Sequence[str], markets: Sequence[str], region: str) -> ProviderResult:
        """Fetch every sport in turn; failed sports are listed in ``meta.errors``.

        Raises ProviderError when nothing could be fetched at all.
        """
        region_meta = REGION_CONFIG.get(region)
        if region_meta is None:
            raise ProviderError(f"Unknown region: {region}")
        events = []
        errors = []
        fetched = 0
        for sport_key in sort_by_priority(list(sport_keys)):
            if self.remaining_requests is not None and self.remaining_requests < LOW_CREDIT_FLOOR:
                logger.warning("Low on API credits (%s left), stopping", self.remaining_requests)
                errors.append(f"{sport_key}: skipped, low on API credits")
                continue
            try:
                events.extend(self._fetch_sport(sport_key, markets, region_meta["api_regions"]))
                fetched += 1
            except ProviderError as exc:
                logger.warning("Failed to fetch %s odds for %s: %s", region, sport_key, exc)
                errors.append(f"{sport_key}: {exc}")
        if sport_keys and not fetched:
            raise ProviderError("; ".join(errors) or "No sports fetched")
        return ProviderResult(
            events=events,
            meta=ProviderMeta(
                source=self.name,
                remaining_requests=self.remaining_requests,
                used_requests=self.used_requests,
                errors=errors,
            ),
        )
