"""Project settings loader and typed environment readers."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "settings.json"

_FALSE_VALUES = {"0", "false", "no", "off"}


def _config_path() -> Path:
    raw = os.getenv("SCANNER_CONFIG_PATH", "").strip() or DEFAULT_CONFIG_PATH
    return Path(raw)


def load_config() -> Dict[str, Any]:
    path = _config_path()
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return {}
    return payload if isinstance(payload, dict) else {}


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    if value is None:
        return ""
    return str(value)


def apply_config_env() -> None:
    """Copy settings.json entries into the environment without overriding it."""
    config = load_config()
    if not config:
        return
    for key, value in config.items():
        if not isinstance(key, str) or not key:
            continue
        if key in os.environ:
            continue
        os.environ[key] = _stringify(value)


# ---------------------------------------------------------------------------
# Typed readers
# ---------------------------------------------------------------------------

def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip() or default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid float for %s=%r, using %s", name, raw, default)
        return default


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %s", name, raw, default)
        return default


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw not in _FALSE_VALUES


def env_list(name: str, default: List[str], upper: bool = False) -> List[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return list(default)
    items = [item.strip() for item in raw.split(",") if item.strip()]
    if upper:
        items = [item.upper() for item in items]
    return items


def env_optional_path(name: str) -> Optional[Path]:
    raw = os.getenv(name, "").strip()
    return Path(raw) if raw else None
