"""Append-only, TTL-bound log of scan progress batches.

A scan writes one batch per sport group. Every batch carries the running
totals so far, so a reader that only sees the latest batch still has the
whole in-progress picture. Batches are dropped when a new scan starts for
the same region and, as a backstop, once they are older than the TTL.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from config import PROGRESS_TTL_SECONDS
from models import ScanProgressBatch, utc_now

logger = logging.getLogger(__name__)


def new_scan_id(region: str, now: Optional[datetime] = None) -> str:
    """Return an id like ``scan-AU-1706000000000`` (epoch milliseconds)."""
    now = now or utc_now()
    return f"scan-{region}-{int(now.timestamp() * 1000)}"


class ScanProgressStream:
    def __init__(
        self,
        ttl_seconds: int = PROGRESS_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._batches: List[ScanProgressBatch] = []

    def now(self) -> datetime:
        return self._clock()

    def start_scan(self, region: str, scan_id: str) -> int:
        """Drop every batch of ``region`` that belongs to another scan; return how many."""
        with self._lock:
            self._purge_expired()
            kept = [
                batch
                for batch in self._batches
                if batch.region != region or batch.scan_id == scan_id
            ]
            removed = len(self._batches) - len(kept)
            self._batches = kept
        if removed:
            logger.debug("Cleared %d stale progress batches for %s", removed, region)
        return removed

    def write_batch(self, batch: ScanProgressBatch) -> None:
        with self._lock:
            self._purge_expired()
            for existing in self._batches:
                if existing.scan_id == batch.scan_id and existing.batch_index >= batch.batch_index:
                    raise ValueError(
                        f"Batch index {batch.batch_index} is not after {existing.batch_index} "
                        f"for {batch.scan_id}"
                    )
            self._batches.append(batch)

    def get_progress_since(
        self,
        region: str,
        since: Optional[datetime] = None,
        scan_id: Optional[str] = None,
        after_index: Optional[int] = None,
    ) -> List[ScanProgressBatch]:
        """Batches for ``region`` created strictly after ``since``, oldest first.

        When ``scan_id`` and ``after_index`` are both given they replace
        ``since`` as the cursor: batches of that scan with a higher index,
        plus every batch of any other scan of the region. Batches that share
        a timestamp with the last one seen are still returned this way.
        """
        use_index = scan_id is not None and after_index is not None

        def is_new(batch: ScanProgressBatch) -> bool:
            if use_index:
                return batch.scan_id != scan_id or batch.batch_index > after_index
            return since is None or batch.created_at > since

        with self._lock:
            self._purge_expired()
            batches = [
                batch for batch in self._batches if batch.region == region and is_new(batch)
            ]
        return sorted(batches, key=lambda batch: (batch.created_at, batch.batch_index))

    def get_latest_batch(self, region: str) -> Optional[ScanProgressBatch]:
        batches = self.get_progress_since(region)
        return batches[-1] if batches else None

    def batch_count(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._batches)

    def _purge_expired(self) -> None:
        cutoff = self._clock() - self._ttl
        self._batches = [batch for batch in self._batches if batch.created_at > cutoff]


_default_stream: Optional[ScanProgressStream] = None
_default_stream_lock = threading.Lock()


def get_progress_stream() -> ScanProgressStream:
    """Return the module-level singleton ScanProgressStream."""
    global _default_stream
    with _default_stream_lock:
        if _default_stream is None:
            _default_stream = ScanProgressStream()
        return _default_stream
