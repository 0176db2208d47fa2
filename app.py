from __future__ import annotations

import argparse
import hmac
import logging
import socket
import threading
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request

load_dotenv()

from config import (  # noqa: E402
    CACHE_MAX_AGE_SECONDS,
    CRON_SECRET,
    LOG_LEVEL,
    MAX_HOURS_UNTIL_START,
    MIN_PROFIT,
    ODDS_PROVIDER,
    REGIONS,
    SCAN_INTERVAL_SECONDS,
    validate_config,
)
from models import SerializationError, parse_iso
from progress import get_progress_stream
from providers import build_provider
from scan_cache import get_scan_cache
from scanner import QueryFilters, RegionScanner, build_query_response, run_scan_cycle

logger = logging.getLogger(__name__)

app = Flask(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_scanner: Optional[RegionScanner] = None
_scanner_lock = threading.Lock()


class RequestError(ValueError):
    """Raised for unusable query or payload values; reported as HTTP 400."""


def get_scanner() -> RegionScanner:
    global _scanner
    with _scanner_lock:
        if _scanner is None:
            _scanner = RegionScanner(
                provider=build_provider(ODDS_PROVIDER),
                cache=get_scan_cache(),
                progress=get_progress_stream(),
            )
        return _scanner


def _error(message: str, status: int) -> tuple:
    return jsonify({"success": False, "error": message, "error_code": status}), status


def _parse_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


def _parse_float(name: str, default: float) -> float:
    raw = request.args.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RequestError(f"{name} must be a number") from exc


def _parse_region(value: object) -> str:
    region = str(value or "").strip().upper()
    if region not in REGIONS:
        raise RequestError(f"region must be one of {', '.join(REGIONS)}")
    return region


def _query_filters() -> QueryFilters:
    max_hours = _parse_float("maxHours", MAX_HOURS_UNTIL_START)
    if max_hours <= 0:
        raise RequestError("maxHours must be positive")
    max_age = _parse_float("maxAge", float(CACHE_MAX_AGE_SECONDS))
    if max_age <= 0:
        raise RequestError("maxAge must be positive")
    return QueryFilters(
        min_profit=_parse_float("minProfit", MIN_PROFIT),
        max_hours=max_hours,
        max_age_seconds=int(max_age),
        include_h2h=_parse_bool(request.args.get("h2h"), True),
        include_value_bets=_parse_bool(request.args.get("valueBets"), True),
        include_spreads=_parse_bool(request.args.get("spreads"), True),
        include_totals=_parse_bool(request.args.get("totals"), True),
        include_middles=_parse_bool(request.args.get("middles"), True),
    )


def _progress_cursor() -> tuple:
    scan_id = (request.args.get("scanId") or "").strip() or None
    raw_index = (request.args.get("afterIndex") or "").strip()
    if not raw_index:
        return scan_id, None
    if scan_id is None:
        raise RequestError("afterIndex requires scanId")
    try:
        after_index = int(raw_index)
    except ValueError as exc:
        raise RequestError("afterIndex must be an integer") from exc
    if after_index < 0:
        raise RequestError("afterIndex must not be negative")
    return scan_id, after_index


def _authorized() -> bool:
    if not CRON_SECRET:
        return True
    header = request.headers.get("Authorization", "")
    return hmac.compare_digest(header, f"Bearer {CRON_SECRET}")


@app.route("/health")
def health() -> tuple:
    return jsonify({"success": True, "status": "ok"}), 200


@app.route("/opportunities")
def opportunities() -> tuple:
    try:
        filters = _query_filters()
    except RequestError as exc:
        return _error(str(exc), 400)
    merged = get_scan_cache().get_merged_scan(filters.max_age_seconds)
    return jsonify(build_query_response(merged, filters)), 200


@app.route("/scan-progress")
def scan_progress() -> tuple:
    try:
        region = _parse_region(request.args.get("region"))
        since_raw = request.args.get("since")
        since: Optional[datetime] = parse_iso(since_raw) if since_raw else None
        scan_id, after_index = _progress_cursor()
    except RequestError as exc:
        return _error(str(exc), 400)
    except SerializationError:
        return _error("since must be an ISO-8601 timestamp", 400)
    batches = get_progress_stream().get_progress_since(
        region, since, scan_id=scan_id, after_index=after_index
    )
    latest = batches[-1] if batches else None
    return jsonify(
        {
            "success": True,
            "region": region,
            "batches": [batch.to_dict() for batch in batches],
            "is_complete": bool(latest and latest.is_last_batch),
            "cursor": (
                {"scan_id": latest.scan_id, "after_index": latest.batch_index}
                if latest
                else None
            ),
        }
    ), 200


@app.route("/scan", methods=["POST"])
def scan() -> tuple:
    if not _authorized():
        return _error("Unauthorized", 401)
    raw_body = request.get_data(cache=True)
    payload = request.get_json(silent=True) if raw_body else {}
    if raw_body and payload is None:
        return _error("Invalid JSON payload", 400)
    if not isinstance(payload, dict):
        return _error("Scan payload must be a JSON object", 400)

    scanner = get_scanner()
    region_value = payload.get("region")
    if region_value:
        try:
            region = _parse_region(region_value)
        except RequestError as exc:
            return _error(str(exc), 400)
        target = lambda: {region: scanner.scan_region(region)}  # noqa: E731
    else:
        target = lambda: run_scan_cycle(scanner)  # noqa: E731

    if _parse_bool(payload.get("background"), False):
        threading.Thread(target=target, name="scan-request", daemon=True).start()
        return jsonify({"success": True, "started": True}), 202

    results = target()
    return jsonify(
        {
            "success": True,
            "regions": {
                name: (
                    {
                        "scanned_at": data.to_dict()["scanned_at"],
                        "stats": data.stats.to_dict(),
                        "line_stats": data.line_stats.to_dict(),
                        "scan_duration_ms": data.scan_duration_ms,
                        "remaining_credits": data.remaining_credits,
                        "error": data.error,
                    }
                    if data is not None
                    else None
                )
                for name, data in results.items()
            },
        }
    ), 200


def _scan_loop(interval: int, stop: threading.Event) -> None:
    while not stop.is_set():
        run_scan_cycle(get_scanner())
        stop.wait(interval)


def _port_available(port: int) -> bool:
    if port <= 0:
        return False
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(0.5)
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


def _choose_port(preferred: Optional[int]) -> int:
    candidates = []
    if preferred:
        candidates.append(preferred)
    candidates.extend([5000, 5050, 8000])
    seen = set()
    for port in candidates:
        if port in seen:
            continue
        seen.add(port)
        if _port_available(port):
            return port
    return 0  # fall back to OS-chosen port


def main() -> None:
    parser = argparse.ArgumentParser(description="Multi-region arbitrage scanner server")
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to run the server on (default 5000, auto-fallback if busy)",
    )
    parser.add_argument(
        "--scan-interval",
        type=int,
        default=SCAN_INTERVAL_SECONDS,
        help="Seconds between background scan cycles (0 disables the scheduler)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    validate_config()

    stop = threading.Event()
    if args.scan_interval > 0:
        worker = threading.Thread(
            target=_scan_loop, args=(args.scan_interval, stop), name="scan-scheduler", daemon=True
        )
        worker.start()
        logger.info("Background scans every %ds", args.scan_interval)
    port = _choose_port(args.port)
    try:
        app.run(port=port or 0, debug=False)
    finally:
        stop.set()


if __name__ == "__main__":
    main()
