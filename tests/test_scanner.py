"""Tests for scanner.py: rotation, region scans and merged queries."""

import itertools
import unittest
from datetime import timedelta
from unittest.mock import MagicMock, patch

from models import RegionScanData
from odds_fixtures import NOW, make_event, quote, scenario_b_quotes
from progress import ScanProgressStream
from providers import ProviderError, ProviderMeta, ProviderResult, StaticOddsProvider
from scan_cache import ScanCache
from scanner import QueryFilters, RegionScanner, build_query_response, regions_for_cycle, run_scan_cycle

ROTATION = ["UK", "US", "EU"]


def _nba_event():
    return make_event(
        quote("sportsbet", "h2h", ("Home", 2.10), ("Away", 1.80)),
        quote("tab", "h2h", ("Home", 1.90), ("Away", 2.05)),
        quote("pinnacle", "h2h", ("Home", 5.00), ("Away", 5.00)),
        *scenario_b_quotes(("sportsbet", "tab")),
    )


def _far_event():
    return make_event(
        quote("sportsbet", "h2h", ("Home", 3.00), ("Away", 3.00)),
        quote("tab", "h2h", ("Home", 3.00), ("Away", 3.00)),
        event_id="evt-far",
        starts_in_hours=100,
    )


class TestRegionsForCycle(unittest.TestCase):
    def test_every_cycle_takes_next_rotation_region(self):
        cycles = [regions_for_cycle(counter, "AU", ROTATION, 0) for counter in range(4)]
        self.assertEqual(cycles, [["AU", "UK"], ["AU", "US"], ["AU", "EU"], ["AU", "UK"]])

    def test_default_only_cycles_between_rotations(self):
        cycles = [regions_for_cycle(counter, "AU", ROTATION, 1) for counter in range(5)]
        self.assertEqual(cycles, [["AU", "UK"], ["AU"], ["AU", "US"], ["AU"], ["AU", "EU"]])

    def test_empty_rotation(self):
        self.assertEqual(regions_for_cycle(7, "AU", [], 0), ["AU"])


class ScannerTestCase(unittest.TestCase):
    def setUp(self):
        self.cache = ScanCache(clock=lambda: NOW)
        self.progress = ScanProgressStream(clock=lambda: NOW)

    def _scanner(self, provider, **kwargs):
        kwargs.setdefault("monotonic", lambda: 0.0)
        return RegionScanner(provider, self.cache, self.progress, clock=lambda: NOW, **kwargs)


class TestScanRegion(ScannerTestCase):
    def test_full_scan(self):
        scanner = self._scanner(StaticOddsProvider([_nba_event(), _far_event()]))
        data = scanner.scan_region("AU")

        self.assertIsNone(data.error)
        self.assertEqual(data.stats.arbs_found, 1)
        self.assertEqual(data.stats.total_events, 1)
        self.assertEqual((data.stats.sports_scanned, data.stats.sports_total), (1, 1))
        self.assertEqual(data.line_stats.middles_found, 1)
        self.assertEqual(len(data.middles), 1)
        arb = data.opportunities[0]
        self.assertEqual({leg.bookmaker_key for leg in arb.legs}, {"sportsbet", "tab"})
        self.assertIs(self.cache.get_region_scan("AU"), data)

        batches = self.progress.get_progress_since("AU")
        self.assertEqual([batch.phase for batch in batches], ["h2h", "lines", "complete"])
        self.assertEqual([batch.batch_index for batch in batches], [0, 1, 2])
        self.assertTrue(batches[-1].is_last_batch)
        self.assertEqual(len({batch.scan_id for batch in batches}), 1)
        self.assertEqual(len(batches[0].opportunities), 1)
        self.assertEqual(len(batches[0].middles), 0)
        self.assertEqual(len(batches[1].middles), 1)

    def test_bookmakers_outside_region_filtered(self):
        scanner = self._scanner(StaticOddsProvider([_nba_event()]))
        data = scanner.scan_region("UK")
        self.assertEqual(data.opportunities, ())
        self.assertEqual(data.middles, ())

    def test_failed_sport_gives_partial_result(self):
        provider = MagicMock()
        provider.get_supported_sports.return_value = [{"key": "basketball_nba"}, {"key": "tennis_atp"}]

        def fetch(sport_keys, markets, region):
            if sport_keys == ["tennis_atp"]:
                raise ProviderError("boom")
            return ProviderResult(events=[_nba_event()], meta=ProviderMeta(source="mock", remaining_requests=42))

        provider.fetch_odds.side_effect = fetch
        data = self._scanner(provider).scan_region("AU")
        self.assertIsNone(data.error)
        self.assertEqual((data.stats.sports_scanned, data.stats.sports_total), (1, 2))
        self.assertEqual(data.sport_errors, ("tennis_atp: boom",))
        self.assertEqual(data.remaining_credits, 42)
        self.assertEqual(data.stats.arbs_found, 1)

    def test_sports_list_failure_stores_error(self):
        provider = MagicMock()
        provider.get_supported_sports.side_effect = ProviderError("no key")
        data = self._scanner(provider).scan_region("AU")
        self.assertEqual(data.error, "no key")
        self.assertIs(self.cache.get_region_scan("AU"), data)
        latest = self.progress.get_latest_batch("AU")
        self.assertEqual(latest.phase, "complete")
        self.assertTrue(latest.is_last_batch)

    def test_time_budget_stops_scan(self):
        provider = MagicMock()
        provider.get_supported_sports.return_value = [{"key": "basketball_nba"}]
        ticks = itertools.count(0, 100)
        data = self._scanner(provider, monotonic=lambda: next(ticks)).scan_region("AU")
        provider.fetch_odds.assert_not_called()
        self.assertEqual((data.stats.sports_scanned, data.stats.sports_total), (0, 1))
        self.assertIs(self.cache.get_region_scan("AU"), data)
        self.assertTrue(self.progress.get_latest_batch("AU").is_last_batch)

    def test_new_scan_replaces_previous_progress(self):
        provider = StaticOddsProvider([_nba_event()])
        self._scanner(provider).scan_region("AU")
        later = NOW + timedelta(seconds=1)
        RegionScanner(provider, self.cache, self.progress, clock=lambda: later, monotonic=lambda: 0.0).scan_region("AU")
        scan_ids = {batch.scan_id for batch in self.progress.get_progress_since("AU")}
        self.assertEqual(len(scan_ids), 1)
        self.assertEqual(self.cache.get_region_scan("AU").scanned_at, later)


class TestRunScanCycle(ScannerTestCase):
    def test_scans_default_and_rotation_region(self):
        scanner = self._scanner(StaticOddsProvider([_nba_event()]))
        results = run_scan_cycle(scanner, "AU", ROTATION, 0)
        self.assertEqual(list(results), ["AU", "UK"])
        self.assertEqual(results["AU"].stats.arbs_found, 1)
        self.assertEqual(results["UK"].stats.arbs_found, 0)
        self.assertEqual(self.cache.rotation_value(), 1)

    def test_region_failure_is_isolated(self):
        scanner = self._scanner(StaticOddsProvider([]))
        uk = RegionScanData(region="UK", scanned_at=NOW)
        with patch.object(scanner, "scan_region", side_effect=[RuntimeError("boom"), uk]):
            results = run_scan_cycle(scanner, "AU", ROTATION, 0)
        self.assertIsNone(results["AU"])
        self.assertIs(results["UK"], uk)


class TestBuildQueryResponse(ScannerTestCase):
    def setUp(self):
        super().setUp()
        self._scanner(StaticOddsProvider([_nba_event()])).scan_region("AU")
        self.merged = self.cache.get_merged_scan(600, now=NOW)

    def test_default_filters(self):
        response = build_query_response(self.merged, QueryFilters(), now=NOW)
        self.assertTrue(response["success"])
        self.assertEqual(len(response["opportunities"]), 1)
        self.assertEqual(len(response["middles"]), 1)
        self.assertEqual(response["regions_included"], ["AU"])
        self.assertEqual(response["region_ages"]["AU"], 0)
        self.assertEqual(response["scanned_at"], "2026-01-10T12:00:00Z")
        self.assertEqual(response["opportunities"][0]["kind"], "arb")

    def test_min_profit(self):
        response = build_query_response(self.merged, QueryFilters(min_profit=5.0), now=NOW)
        self.assertEqual(response["opportunities"], [])
        self.assertEqual(len(response["middles"]), 1)

    def test_max_hours(self):
        response = build_query_response(self.merged, QueryFilters(max_hours=1.0), now=NOW)
        self.assertEqual(response["opportunities"], [])
        self.assertEqual(response["middles"], [])

    def test_market_toggles(self):
        response = build_query_response(
            self.merged, QueryFilters(include_h2h=False, include_middles=False), now=NOW
        )
        self.assertEqual(response["opportunities"], [])
        self.assertEqual(response["middles"], [])


if __name__ == "__main__":
    unittest.main()
