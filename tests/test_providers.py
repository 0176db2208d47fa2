import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import requests

from providers import (
    ProviderError,
    StaticOddsProvider,
    TheOddsApiProvider,
    build_provider,
    parse_event,
    parse_events,
    resolve_provider_key,
)
from providers.the_odds_api import sort_by_priority

EVENT_PAYLOAD = {
    "id": "evt-1",
    "sport_key": "basketball_nba",
    "sport_title": "NBA",
    "home_team": "Boston Celtics",
    "away_team": "Miami Heat",
    "commence_time": "2026-01-10T14:00:00Z",
    "bookmakers": [
        {
            "key": "sportsbet",
            "title": "SportsBet",
            "markets": [
                {
                    "key": "h2h",
                    "outcomes": [
                        {"name": "Boston Celtics", "price": 1.5},
                        {"name": "Miami Heat", "price": 2.7},
                    ],
                },
                {
                    "key": "totals",
                    "outcomes": [
                        {"name": "Over", "price": 1.91, "point": 220.5},
                        {"name": "Under", "price": "n/a", "point": 220.5},
                    ],
                },
            ],
        },
        {"title": "missing key", "markets": []},
    ],
}


def _response(payload, status_code=200, headers=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = headers or {}
    resp.json.return_value = payload
    resp.text = json.dumps(payload)
    return resp


class ParseEventTests(unittest.TestCase):
    def test_parses_quotes(self) -> None:
        event = parse_event(EVENT_PAYLOAD)
        self.assertEqual(event.id, "evt-1")
        self.assertEqual(event.sport_title, "NBA")
        self.assertEqual([quote.market for quote in event.quotes], ["h2h", "totals"])
        self.assertEqual(event.quotes[0].display_name, "SportsBet")
        totals = event.quotes[1]
        self.assertEqual(len(totals.outcomes), 1)
        self.assertEqual(totals.outcomes[0].point, 220.5)

    def test_malformed_event_is_skipped(self) -> None:
        self.assertIsNone(parse_event({"id": "x"}))
        self.assertIsNone(parse_event({**EVENT_PAYLOAD, "commence_time": "soon"}))
        self.assertIsNone(parse_event("evt"))

    def test_parse_events_requires_list(self) -> None:
        with self.assertRaises(ProviderError):
            parse_events({"events": []})
        self.assertEqual(len(parse_events([EVENT_PAYLOAD, {"id": "bad"}])), 1)


class TheOddsApiProviderTests(unittest.TestCase):
    def test_fetch_odds_reads_credit_headers(self) -> None:
        provider = TheOddsApiProvider("key")
        resp = _response([EVENT_PAYLOAD], headers={"x-requests-remaining": "480", "x-requests-used": "20"})
        with patch("providers.the_odds_api.requests.get", return_value=resp) as mocked:
            result = provider.fetch_odds(["basketball_nba"], ["h2h", "h2h_lay"], "AU")
        self.assertEqual(len(result.events), 1)
        self.assertEqual(result.meta.remaining_requests, 480)
        self.assertEqual(result.meta.used_requests, 20)
        params = mocked.call_args.kwargs["params"]
        self.assertEqual(params["regions"], "au")
        self.assertEqual(params["markets"], "h2h,h2h_lay")
        self.assertEqual(params["oddsFormat"], "decimal")
        self.assertEqual(params["apiKey"], "key")

    def test_missing_api_key(self) -> None:
        with self.assertRaises(ProviderError):
            TheOddsApiProvider("").fetch_odds(["basketball_nba"], ["h2h"], "AU")

    def test_http_error_raises_when_nothing_fetched(self) -> None:
        provider = TheOddsApiProvider("key")
        resp = _response({"message": "Quota exceeded"}, status_code=429)
        with patch("providers.the_odds_api.requests.get", return_value=resp):
            with self.assertRaises(ProviderError) as ctx:
                provider.fetch_odds(["basketball_nba"], ["h2h"], "AU")
        self.assertIn("Quota exceeded", str(ctx.exception))

    def test_network_error(self) -> None:
        provider = TheOddsApiProvider("key")
        with patch("providers.the_odds_api.requests.get", side_effect=requests.ConnectionError("down")):
            with self.assertRaises(ProviderError):
                provider.fetch_odds(["basketball_nba"], ["h2h"], "US")

    def test_unknown_region(self) -> None:
        with self.assertRaises(ProviderError):
            TheOddsApiProvider("key").fetch_odds(["basketball_nba"], ["h2h"], "MARS")

    def test_supported_sports_filtered_and_prioritised(self) -> None:
        payload = [
            {"key": "darts_pdc", "active": True, "has_outrights": False},
            {"key": "basketball_nba", "active": True, "has_outrights": False},
            {"key": "golf_masters_winner", "active": True, "has_outrights": True},
            {"key": "baseball_kbo", "active": False, "has_outrights": False},
            {"key": "aussierules_afl", "active": True, "has_outrights": False},
        ]
        with patch("providers.the_odds_api.requests.get", return_value=_response(payload)):
            sports = TheOddsApiProvider("key").get_supported_sports()
        self.assertEqual([sport["key"] for sport in sports], ["aussierules_afl", "basketball_nba", "darts_pdc"])

    def test_sort_by_priority(self) -> None:
        self.assertEqual(
            sort_by_priority(["zz_other", "basketball_nba", "aussierules_afl"]),
            ["aussierules_afl", "basketball_nba", "zz_other"],
        )


class StaticProviderTests(unittest.TestCase):
    def test_from_file_filters_markets(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "odds.json")
            with open(path, "w", encoding="utf-8") as handle:
                json.dump([EVENT_PAYLOAD], handle)
            provider = StaticOddsProvider.from_file(path)
        self.assertEqual([sport["key"] for sport in provider.get_supported_sports()], ["basketball_nba"])
        result = provider.fetch_odds(["basketball_nba"], ["totals"], "AU")
        self.assertEqual([quote.market for quote in result.events[0].quotes], ["totals"])
        self.assertEqual(provider.fetch_odds(["soccer_epl"], ["h2h"], "AU").events, [])

    def test_missing_file(self) -> None:
        with self.assertRaises(ProviderError):
            StaticOddsProvider.from_file("/nonexistent/odds.json")


class ProviderRegistryTests(unittest.TestCase):
    def test_resolve_aliases(self) -> None:
        self.assertEqual(resolve_provider_key("The-Odds-API"), "the_odds_api")
        self.assertEqual(resolve_provider_key("mock"), "static")
        self.assertIsNone(resolve_provider_key("nope"))
        self.assertIsNone(resolve_provider_key(None))

    def test_build_unknown_provider(self) -> None:
        with self.assertRaises(ProviderError):
            build_provider("nope")

    def test_build_the_odds_api(self) -> None:
        self.assertIsInstance(build_provider("the_odds_api"), TheOddsApiProvider)


if __name__ == "__main__":
    unittest.main()
