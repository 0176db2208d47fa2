"""Region-partitioned, freshness-bounded cache of the latest scan per region.

Usage
-----
    from scan_cache import get_scan_cache
    cache = get_scan_cache()
    cache.update_region_scan("AU", region_data)
    merged = cache.get_merged_scan(max_age_seconds=600)
    slot = cache.get_and_increment_rotation()

Each region bucket is replaced wholesale by ``update_region_scan``; the
rotation counter is read-and-incremented in one locked step. When a
snapshot directory is configured, every region and the rotation counter
are mirrored to JSON files so a restarted process resumes where it left off.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from config import CACHE_MAX_AGE_SECONDS, REGIONS, SCAN_SNAPSHOT_DIR
from models import (
    LineStats,
    MiddleOpportunity,
    LineArb,
    Opportunity,
    OpportunityKey,
    RegionScanData,
    ScanStats,
    SerializationError,
    ValueBet,
    opportunity_to_dict,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)

ROTATION_FILE = "rotation.json"


def region_file_name(region: str) -> str:
    return f"scan-{region}.json"


def dedupe(items: Sequence[Opportunity]) -> List[Opportunity]:
    """Keep the first occurrence of every opportunity key."""
    seen = set()
    unique = []
    for item in items:
        key: OpportunityKey = item.key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


@dataclass(frozen=True)
class MergedScan:
    """Fresh regions combined into one view; stale regions have a None age."""

    opportunities: List[Opportunity] = field(default_factory=list)
    value_bets: List[ValueBet] = field(default_factory=list)
    spread_arbs: List[LineArb] = field(default_factory=list)
    totals_arbs: List[LineArb] = field(default_factory=list)
    middles: List[MiddleOpportunity] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)
    line_stats: LineStats = field(default_factory=LineStats)
    scanned_at: Optional[datetime] = None
    remaining_credits: Optional[int] = None
    region_ages: Dict[str, Optional[int]] = field(default_factory=dict)
    regions_included: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "opportunities": [opportunity_to_dict(item) for item in self.opportunities],
            "value_bets": [opportunity_to_dict(item) for item in self.value_bets],
            "spread_arbs": [opportunity_to_dict(item) for item in self.spread_arbs],
            "totals_arbs": [opportunity_to_dict(item) for item in self.totals_arbs],
            "middles": [opportunity_to_dict(item) for item in self.middles],
            "stats": self.stats.to_dict(),
            "line_stats": self.line_stats.to_dict(),
            "scanned_at": to_iso(self.scanned_at) if self.scanned_at else None,
            "remaining_credits": self.remaining_credits,
            "region_ages": dict(self.region_ages),
            "regions_included": list(self.regions_included),
        }


class ScanCache:
    """Thread-safe store of the latest RegionScanData per region plus the rotation counter."""

    def __init__(
        self,
        snapshot_dir: Optional[Path] = None,
        regions: Sequence[str] = REGIONS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._dir = Path(snapshot_dir) if snapshot_dir else None
        self._regions = tuple(regions)
        self._clock = clock
        self._lock = threading.Lock()
        self._scans: Dict[str, Optional[RegionScanData]] = {region: None for region in self._regions}
        self._rotation = 0
        if self._dir is not None:
            self._load()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def regions(self) -> tuple:
        return self._regions

    def update_region_scan(self, region: str, data: RegionScanData) -> bool:
        """Replace one region's bucket.

        Returns False when the snapshot could not be written; the region
        then keeps its previous (older) data and other regions are untouched.
        """
        self._check_region(region)
        if data.region != region:
            raise ValueError(f"Scan data for {data.region} cannot be stored under {region}")
        with self._lock:
            if self._dir is not None:
                try:
                    self._write_json(region_file_name(region), data.to_dict())
                except OSError as exc:
                    logger.error("Failed to persist %s scan, region stays stale: %s", region, exc)
                    return False
            self._scans[region] = data
        logger.info(
            "Stored %s scan: %d opportunities, %d value bets, %d middles",
            region,
            len(data.opportunities),
            len(data.value_bets),
            len(data.middles),
        )
        return True

    def get_region_scan(self, region: str) -> Optional[RegionScanData]:
        self._check_region(region)
        with self._lock:
            return self._scans[region]

    def get_all_region_scans(self) -> Dict[str, Optional[RegionScanData]]:
        with self._lock:
            return dict(self._scans)

    def get_merged_scan(
        self,
        max_age_seconds: int = CACHE_MAX_AGE_SECONDS,
        now: Optional[datetime] = None,
    ) -> MergedScan:
        """Combine every region scanned within ``max_age_seconds``.

        Lists are concatenated in region order and deduplicated by
        opportunity key (first occurrence wins). Counters are summed and
        gauges take the maximum. The latest ``scanned_at`` and its
        ``remaining_credits`` are reported.
        """
        now = now or self._clock()
        scans = self.get_all_region_scans()
        fresh: List[RegionScanData] = []
        ages: Dict[str, Optional[int]] = {}
        for region in self._regions:
            data = scans.get(region)
            if data is None:
                ages[region] = None
                continue
            age = (now - data.scanned_at).total_seconds()
            if age > max_age_seconds:
                ages[region] = None
                continue
            ages[region] = max(0, int(age))
            fresh.append(data)

        stats = ScanStats()
        line_stats = LineStats()
        latest: Optional[RegionScanData] = None
        for data in fresh:
            stats = stats.merge(data.stats)
            line_stats = line_stats.merge(data.line_stats)
            if latest is None or data.scanned_at > latest.scanned_at:
                latest = data

        return MergedScan(
            opportunities=dedupe([item for data in fresh for item in data.opportunities]),
            value_bets=dedupe([item for data in fresh for item in data.value_bets]),
            spread_arbs=dedupe([item for data in fresh for item in data.spread_arbs]),
            totals_arbs=dedupe([item for data in fresh for item in data.totals_arbs]),
            middles=dedupe([item for data in fresh for item in data.middles]),
            stats=stats,
            line_stats=line_stats,
            scanned_at=latest.scanned_at if latest else None,
            remaining_credits=latest.remaining_credits if latest else None,
            region_ages=ages,
            regions_included=[data.region for data in fresh],
        )

    def get_and_increment_rotation(self) -> int:
        """Return the counter value before incrementing it (0 on first use)."""
        with self._lock:
            previous = self._rotation
            self._rotation = previous + 1
            if self._dir is not None:
                try:
                    self._write_json(ROTATION_FILE, {"counter": self._rotation})
                except OSError as exc:
                    logger.error("Failed to persist rotation counter: %s", exc)
            return previous

    def rotation_value(self) -> int:
        with self._lock:
            return self._rotation

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_region(self, region: str) -> None:
        if region not in self._scans:
            raise ValueError(f"Unknown region: {region}")

    def _write_json(self, name: str, payload: dict) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / name
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except OSError:
            if tmp.exists():
                tmp.unlink()
            raise

    def _read_json(self, name: str) -> Optional[dict]:
        path = self._dir / name
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, exc)
            return None
        return payload if isinstance(payload, dict) else None

    def _load(self) -> None:
        for region in self._regions:
            payload = self._read_json(region_file_name(region))
            if payload is None:
                continue
            try:
                data = RegionScanData.from_dict(payload)
            except SerializationError as exc:
                logger.warning("Ignoring invalid %s snapshot: %s", region, exc)
                continue
            if data.region == region:
                self._scans[region] = data
        rotation = self._read_json(ROTATION_FILE)
        if rotation is not None:
            counter = rotation.get("counter")
            if isinstance(counter, int) and counter >= 0:
                self._rotation = counter


# ---------------------------------------------------------------------------
# Module-level singleton (for use in app.py)
# ---------------------------------------------------------------------------

_default_cache: Optional[ScanCache] = None
_default_cache_lock = threading.Lock()


def get_scan_cache() -> ScanCache:
    """Return the module-level singleton ScanCache."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = ScanCache(snapshot_dir=SCAN_SNAPSHOT_DIR)
        return _default_cache
