"""Configuration constants for the multi-region arbitrage scanner."""

from __future__ import annotations

from typing import Dict, List

from settings import (
    apply_config_env,
    env_bool,
    env_float,
    env_int,
    env_list,
    env_optional_path,
    env_str,
)

apply_config_env()


class ConfigError(Exception):
    """Raised when a configuration value is unusable."""


# -----------------------------------------------------------------------------
# Regions
# -----------------------------------------------------------------------------

REGIONS = ("AU", "UK", "US", "EU")

REGION_CONFIG: Dict[str, dict] = {
    "AU": {"name": "Australia", "api_regions": ["au"]},
    "UK": {"name": "United Kingdom", "api_regions": ["uk"]},
    "US": {"name": "United States", "api_regions": ["us", "us2", "us_dfs", "us_ex"]},
    "EU": {"name": "Europe", "api_regions": ["eu", "fr", "se"]},
}

BOOKMAKERS_BY_REGION: Dict[str, List[str]] = {
    "AU": [
        "betfair_ex_au", "betr_au", "betright", "bet365_au", "boombet", "dabble_au",
        "ladbrokes_au", "neds", "playup", "pointsbetau", "sportsbet", "tab", "tabtouch",
        "unibet",
    ],
    "UK": [
        "sport888", "betfair_ex_uk", "betfair_sb_uk", "betvictor", "betway", "boylesports",
        "casumo", "coral", "grosvenor", "ladbrokes_uk", "leovegas", "livescorebet",
        "matchbook", "paddypower", "skybet", "smarkets", "unibet_uk", "virginbet",
        "williamhill",
    ],
    "US": [
        "betonlineag", "betmgm", "betrivers", "betus", "bovada", "williamhill_us",
        "draftkings", "fanatics", "fanduel", "lowvig", "mybookieag",
        "ballybet", "betanysports", "betparx", "espnbet", "fliff", "hardrockbet", "rebet",
        "betr_us_dfs", "pick6", "prizepicks", "underdog",
        "betopenly", "kalshi", "novig", "polymarket", "prophetx",
    ],
    "EU": [
        "onexbet", "sport888", "betclic_fr", "betanysports", "betfair_ex_eu", "betonlineag",
        "betsson", "codere_it", "betvictor", "coolbet", "everygame", "gtbets", "leovegas_se",
        "marathonbet", "matchbook", "mybookieag", "nordicbet", "parionssport_fr", "pinnacle",
        "pmu_fr", "suprabets", "tipico_de", "unibet_fr", "unibet_it", "unibet_nl", "unibet_se",
        "williamhill", "winamax_de", "winamax_fr",
        "netbet_fr",
        "atg_se", "mrgreen_se", "svenskaspel_se",
    ],
}

DEFAULT_REGION = env_str("DEFAULT_REGION", "AU").upper()
ROTATION_ORDER: List[str] = env_list("ROTATION_ORDER", ["UK", "US", "EU"], upper=True)
# Cycles in which only the default region is scanned between rotation slots.
DEFAULT_ONLY_SCANS_BETWEEN_ROTATIONS = env_int("DEFAULT_ONLY_SCANS_BETWEEN_ROTATIONS", 0)

# -----------------------------------------------------------------------------
# Exchanges
# -----------------------------------------------------------------------------

EXCHANGE_BOOKMAKERS = {
    "betfair_ex_eu": {"name": "Betfair"},
    "betfair_ex_uk": {"name": "Betfair UK"},
    "betfair_ex_au": {"name": "Betfair"},
    "smarkets": {"name": "Smarkets"},
    "matchbook": {"name": "Matchbook"},
}

EXCHANGE_KEYS = set(EXCHANGE_BOOKMAKERS.keys())

DEFAULT_COMMISSION = env_float("DEFAULT_COMMISSION", 0.05)  # 5%

# -----------------------------------------------------------------------------
# Detection thresholds
# -----------------------------------------------------------------------------

# Fraction above an implied sum of 1.0 still reported as a near-arb (0.02 = 2%).
NEAR_ARB_THRESHOLD = env_float("NEAR_ARB_THRESHOLD", 0.02)
VALUE_THRESHOLD = env_float("VALUE_THRESHOLD", 5.0)  # edge percent
MIN_CONSENSUS_BOOKS = env_int("MIN_CONSENSUS_BOOKS", 3)
DEFAULT_TOTAL_STAKE = env_float("DEFAULT_TOTAL_STAKE", 100.0)

MIN_PROFIT = env_float("MIN_PROFIT", -2.0)
MAX_HOURS_UNTIL_START = env_float("MAX_HOURS_UNTIL_START", 72.0)

# -----------------------------------------------------------------------------
# Middles configuration
# -----------------------------------------------------------------------------

MIN_MIDDLE_GAP = {"spreads": 1.0, "totals": 0.5}
MAX_MIDDLE_LOSS_PERCENT = env_float("MAX_MIDDLE_LOSS_PERCENT", 5.0)

# -----------------------------------------------------------------------------
# Sports
# -----------------------------------------------------------------------------

TWO_WAY_SPORTS = {"tennis", "basketball", "baseball", "americanfootball", "aussierules"}
FLEXIBLE_SPORTS = {"icehockey", "mma", "boxing", "cricket", "rugbyleague", "rugbyunion"}
THREE_WAY_SPORTS = {"soccer"}

LINE_SPORT_PREFIXES = (
    "basketball",
    "americanfootball",
    "baseball",
    "icehockey",
    "aussierules",
    "rugbyleague",
    "rugbyunion",
)

PRIORITY_SPORTS = [
    "aussierules_afl",
    "rugbyleague_nrl",
    "soccer_epl",
    "basketball_nba",
    "americanfootball_nfl",
    "icehockey_nhl",
    "baseball_mlb",
    "tennis_atp",
    "tennis_wta",
    "mma_mixed_martial_arts",
    "boxing_boxing",
    "cricket_test_match",
    "soccer_australia_aleague",
    "basketball_nbl",
]

H2H_MARKETS = ["h2h", "h2h_lay"]
LINE_MARKETS = ["spreads", "totals"]

# -----------------------------------------------------------------------------
# Cache, progress and scheduling
# -----------------------------------------------------------------------------

CACHE_MAX_AGE_SECONDS = env_int("CACHE_MAX_AGE_SECONDS", 600)
PROGRESS_TTL_SECONDS = env_int("PROGRESS_TTL_SECONDS", 300)
SPORTS_PER_BATCH = env_int("SPORTS_PER_BATCH", 4)
SCAN_TIME_BUDGET_SECONDS = env_float("SCAN_TIME_BUDGET_SECONDS", 55.0)
SCAN_SNAPSHOT_DIR = env_optional_path("SCAN_SNAPSHOT_DIR")
FILTER_REGION_BOOKMAKERS = env_bool("FILTER_REGION_BOOKMAKERS", True)

ODDS_API_KEY = env_str("ODDS_API_KEY")
ODDS_PROVIDER = env_str("ODDS_PROVIDER", "the_odds_api")
SCAN_INTERVAL_SECONDS = env_int("SCAN_INTERVAL_SECONDS", 0)
CRON_SECRET = env_str("CRON_SECRET")
LOG_LEVEL = env_str("LOG_LEVEL", "INFO").upper()


def sport_group(sport_key: str) -> str:
    return (sport_key or "").split("_", 1)[0].lower()


def is_line_sport(sport_key: str) -> bool:
    return sport_group(sport_key) in LINE_SPORT_PREFIXES


def allowed_outcome_counts(sport_key: str) -> tuple:
    """Return the outcome counts a moneyline market may have for this sport."""
    group = sport_group(sport_key)
    if group in TWO_WAY_SPORTS:
        return (2,)
    if group in THREE_WAY_SPORTS:
        return (3,)
    return (2, 3)


def validate_config(
    near_arb_threshold: float = NEAR_ARB_THRESHOLD,
    value_threshold: float = VALUE_THRESHOLD,
    cache_max_age_seconds: int = CACHE_MAX_AGE_SECONDS,
    rotation_order: List[str] = ROTATION_ORDER,
    default_region: str = DEFAULT_REGION,
    commission_rate: float = DEFAULT_COMMISSION,
    progress_ttl_seconds: int = PROGRESS_TTL_SECONDS,
    total_stake: float = DEFAULT_TOTAL_STAKE,
) -> None:
    """Raise ConfigError when any tunable is out of range."""
    if not 0 <= near_arb_threshold < 1:
        raise ConfigError(f"NEAR_ARB_THRESHOLD must be in [0, 1), got {near_arb_threshold}")
    if value_threshold < 0:
        raise ConfigError(f"VALUE_THRESHOLD must be non-negative, got {value_threshold}")
    if cache_max_age_seconds <= 0:
        raise ConfigError(f"CACHE_MAX_AGE_SECONDS must be positive, got {cache_max_age_seconds}")
    if progress_ttl_seconds <= 0:
        raise ConfigError(f"PROGRESS_TTL_SECONDS must be positive, got {progress_ttl_seconds}")
    if not 0 <= commission_rate < 1:
        raise ConfigError(f"DEFAULT_COMMISSION must be in [0, 1), got {commission_rate}")
    if total_stake <= 0:
        raise ConfigError(f"DEFAULT_TOTAL_STAKE must be positive, got {total_stake}")
    if default_region not in REGIONS:
        raise ConfigError(f"DEFAULT_REGION must be one of {', '.join(REGIONS)}, got {default_region}")
    if not rotation_order:
        raise ConfigError("ROTATION_ORDER must name at least one region")
    unknown = [region for region in rotation_order if region not in REGIONS]
    if unknown:
        raise ConfigError(f"ROTATION_ORDER has unknown regions: {', '.join(unknown)}")
    if len(set(rotation_order)) != len(rotation_order):
        raise ConfigError("ROTATION_ORDER must not repeat a region")
    if default_region in rotation_order:
        raise ConfigError("ROTATION_ORDER must not include the default region")
