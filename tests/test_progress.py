"""Tests for progress.py: batch ordering, scan replacement and TTL purge."""

import unittest
from datetime import datetime, timedelta, timezone

from models import ScanProgressBatch
from odds_fixtures import NOW
from progress import ScanProgressStream, new_scan_id


class _Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _batch(region, scan_id, index, created_at, phase="h2h", is_last_batch=False):
    return ScanProgressBatch(
        region=region,
        scan_id=scan_id,
        batch_index=index,
        sport_keys=("basketball_nba",),
        phase=phase,
        created_at=created_at,
        is_last_batch=is_last_batch,
    )


class TestScanId(unittest.TestCase):
    def test_format(self):
        moment = datetime.fromtimestamp(1706000000, tz=timezone.utc)
        self.assertEqual(new_scan_id("AU", moment), "scan-AU-1706000000000")


class TestScanProgressStream(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock(NOW)
        self.stream = ScanProgressStream(ttl_seconds=300, clock=self.clock)

    def test_batches_returned_in_order(self):
        self.stream.start_scan("AU", "scan-AU-1")
        self.stream.write_batch(_batch("AU", "scan-AU-1", 0, NOW))
        self.stream.write_batch(_batch("AU", "scan-AU-1", 1, NOW + timedelta(seconds=1)))
        self.stream.write_batch(_batch("AU", "scan-AU-1", 2, NOW + timedelta(seconds=2), "complete", True))
        batches = self.stream.get_progress_since("AU")
        self.assertEqual([batch.batch_index for batch in batches], [0, 1, 2])
        self.assertTrue(self.stream.get_latest_batch("AU").is_last_batch)

    def test_batch_index_must_increase(self):
        self.stream.write_batch(_batch("AU", "scan-AU-1", 1, NOW))
        with self.assertRaises(ValueError):
            self.stream.write_batch(_batch("AU", "scan-AU-1", 1, NOW))
        with self.assertRaises(ValueError):
            self.stream.write_batch(_batch("AU", "scan-AU-1", 0, NOW))

    def test_since_is_exclusive(self):
        self.stream.write_batch(_batch("AU", "scan-AU-1", 0, NOW))
        self.stream.write_batch(_batch("AU", "scan-AU-1", 1, NOW + timedelta(seconds=5)))
        batches = self.stream.get_progress_since("AU", since=NOW)
        self.assertEqual([batch.batch_index for batch in batches], [1])

    def test_index_cursor_returns_batch_with_same_timestamp(self):
        self.stream.start_scan("AU", "scan-AU-1")
        self.stream.write_batch(_batch("AU", "scan-AU-1", 0, NOW))
        seen = self.stream.get_progress_since("AU")[-1]
        self.stream.write_batch(_batch("AU", "scan-AU-1", 1, NOW, "complete", True))

        self.assertEqual(self.stream.get_progress_since("AU", since=seen.created_at), [])
        batches = self.stream.get_progress_since("AU", scan_id=seen.scan_id, after_index=seen.batch_index)
        self.assertEqual([batch.batch_index for batch in batches], [1])
        self.assertTrue(batches[0].is_last_batch)

    def test_index_cursor_includes_newer_scan(self):
        self.stream.start_scan("AU", "scan-AU-1")
        self.stream.write_batch(_batch("AU", "scan-AU-1", 3, NOW))
        self.stream.start_scan("AU", "scan-AU-2")
        self.stream.write_batch(_batch("AU", "scan-AU-2", 0, NOW))
        batches = self.stream.get_progress_since("AU", scan_id="scan-AU-1", after_index=3)
        self.assertEqual([(batch.scan_id, batch.batch_index) for batch in batches], [("scan-AU-2", 0)])

    def test_new_scan_clears_only_its_region(self):
        self.stream.write_batch(_batch("AU", "scan-AU-1", 0, NOW))
        self.stream.write_batch(_batch("UK", "scan-UK-1", 0, NOW))
        removed = self.stream.start_scan("AU", "scan-AU-2")
        self.assertEqual(removed, 1)
        self.assertEqual(self.stream.get_progress_since("AU"), [])
        self.assertEqual(len(self.stream.get_progress_since("UK")), 1)

    def test_expired_batches_purged(self):
        self.stream.write_batch(_batch("AU", "scan-AU-1", 0, NOW))
        self.clock.advance(299)
        self.assertEqual(self.stream.batch_count(), 1)
        self.clock.advance(2)
        self.assertEqual(self.stream.batch_count(), 0)
        self.assertIsNone(self.stream.get_latest_batch("AU"))


if __name__ == "__main__":
    unittest.main()
