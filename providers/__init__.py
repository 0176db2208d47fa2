from __future__ import annotations

from typing import Callable, Dict, Optional

from config import ODDS_API_KEY

from .base import (
    OddsProvider,
    ProviderError,
    ProviderMeta,
    ProviderResult,
    parse_event,
    parse_events,
)
from .static import StaticOddsProvider
from .the_odds_api import TheOddsApiProvider

ProviderFactory = Callable[[], OddsProvider]

PROVIDER_FACTORIES: Dict[str, ProviderFactory] = {
    "the_odds_api": lambda: TheOddsApiProvider(ODDS_API_KEY),
    "static": StaticOddsProvider.from_file,
}

PROVIDER_ALIASES: Dict[str, str] = {
    "the-odds-api": "the_odds_api",
    "theoddsapi": "the_odds_api",
    "odds_api": "the_odds_api",
    "file": "static",
    "mock": "static",
    "demo": "static",
}


def resolve_provider_key(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    raw = value.strip().lower()
    if not raw:
        return None
    if raw in PROVIDER_FACTORIES:
        return raw
    if raw in PROVIDER_ALIASES:
        return PROVIDER_ALIASES[raw]
    compact = raw.replace("-", "_").replace(" ", "_")
    if compact in PROVIDER_FACTORIES:
        return compact
    return PROVIDER_ALIASES.get(compact)


def build_provider(value: object) -> OddsProvider:
    key = resolve_provider_key(value)
    if key is None:
        raise ProviderError(f"Unknown odds provider: {value!r}")
    return PROVIDER_FACTORIES[key]()

__all__ = [
    "OddsProvider",
    "ProviderError",
    "ProviderMeta",
    "ProviderResult",
    "StaticOddsProvider",
    "TheOddsApiProvider",
    "build_provider",
    "parse_event",
    "parse_events",
    "resolve_provider_key",
]
