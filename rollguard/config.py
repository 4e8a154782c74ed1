"""
Centralized configuration management.

Configuration is loaded from:
1. Environment variables
2. .env file (if present)
3. Default values

Every threshold used by the scorers and detectors lives here so that the
hand-tuned constants can be changed per deployment without code changes.

Usage:
    from rollguard.config import get_config
    config = get_config()
    print(config.cluster.high_threshold)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


def _load_dotenv(dotenv_path: Optional[Path] = None) -> None:
    """
    Minimal .env loader.

    Supports KEY=VALUE, ignores blank lines and comments (#).
    Does not override existing environment variables.
    """
    if dotenv_path is None:
        dotenv_path = Path(__file__).resolve().parent.parent / ".env"

    if not dotenv_path.exists() or not dotenv_path.is_file():
        return

    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if not key:
            continue
        if os.getenv(key) in (None, ""):
            os.environ[key] = value


_load_dotenv()


def _get_bool_env(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(key, "").strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


def _get_int_env(key: str, default: int) -> int:
    """Get integer from environment variable."""
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_env(key: str, default: float) -> float:
    """Get float from environment variable."""
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class DBConfig:
    """Database configuration (PostgreSQL)."""
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", ""))
    port: int = field(default_factory=lambda: _get_int_env("DB_PORT", 5432))
    name: str = field(default_factory=lambda: os.getenv("DB_NAME", ""))
    user: str = field(default_factory=lambda: os.getenv("DB_USER", ""))
    password: str = field(default_factory=lambda: os.getenv("DB_PASSWORD", ""))
    schema: str = field(default_factory=lambda: os.getenv("DB_SCHEMA", "public"))
    ssl_mode: str = field(default_factory=lambda: os.getenv("DB_SSL_MODE", "prefer"))

    # Connection pool bounds
    pool_min: int = field(default_factory=lambda: _get_int_env("DB_POOL_MIN", 1))
    pool_max: int = field(default_factory=lambda: _get_int_env("DB_POOL_MAX", 10))

    @property
    def is_configured(self) -> bool:
        """Check if minimal DB config is present."""
        return bool(self.host and self.name and self.user)


@dataclass
class BoundsConfig:
    """Latitude/longitude box that accepted geocodes must fall inside."""
    min_lat: float = 6.5
    max_lat: float = 37.1
    min_lng: float = 68.1
    max_lng: float = 97.4

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_lat, self.max_lat, self.min_lng, self.max_lng)


@dataclass
class GeocoderConfig:
    """External geocoding providers (primary Google Maps, secondary Mapbox)."""
    google_api_key: str = field(default_factory=lambda: os.getenv("GOOGLE_MAPS_API_KEY", ""))
    google_url: str = field(
        default_factory=lambda: os.getenv(
            "GOOGLE_MAPS_GEOCODE_URL", "https://maps.googleapis.com/maps/api/geocode/json"
        )
    )
    mapbox_token: str = field(default_factory=lambda: os.getenv("MAPBOX_ACCESS_TOKEN", ""))
    mapbox_url: str = field(
        default_factory=lambda: os.getenv(
            "MAPBOX_GEOCODE_URL", "https://api.mapbox.com/geocoding/v5/mapbox.places"
        )
    )
    timeout_sec: float = field(default_factory=lambda: _get_float_env("GEOCODER_TIMEOUT_SEC", 5.0))
    country_name: str = field(default_factory=lambda: os.getenv("GEOCODER_COUNTRY_NAME", "India"))
    country_code: str = field(default_factory=lambda: os.getenv("GEOCODER_COUNTRY_CODE", "in"))
    bounds: BoundsConfig = field(default_factory=BoundsConfig)

    @property
    def has_google(self) -> bool:
        return bool(self.google_api_key)

    @property
    def has_mapbox(self) -> bool:
        return bool(self.mapbox_token)


@dataclass
class AddressConfig:
    """Address normalization and scoring."""
    cache_ttl_days: int = field(default_factory=lambda: _get_int_env("ADDRESS_CACHE_TTL_DAYS", 30))
    reject_below: float = field(default_factory=lambda: _get_float_env("ADDRESS_REJECT_BELOW", 0.5))
    flag_below: float = field(default_factory=lambda: _get_float_env("ADDRESS_FLAG_BELOW", 0.75))
    low_geocode_confidence: float = field(
        default_factory=lambda: _get_float_env("ADDRESS_LOW_GEOCODE_CONFIDENCE", 0.5)
    )
    check_pin_zone: bool = field(default_factory=lambda: _get_bool_env("ADDRESS_CHECK_PIN_ZONE", True))


@dataclass
class NameConfig:
    """Name quality scoring."""
    min_length: int = field(default_factory=lambda: _get_int_env("NAME_MIN_LENGTH", 3))
    max_length: int = field(default_factory=lambda: _get_int_env("NAME_MAX_LENGTH", 50))
    min_entropy: float = field(default_factory=lambda: _get_float_env("NAME_MIN_ENTROPY", 2.0))
    max_entropy: float = field(default_factory=lambda: _get_float_env("NAME_MAX_ENTROPY", 4.5))
    fuzzy_threshold: float = field(default_factory=lambda: _get_float_env("NAME_FUZZY_THRESHOLD", 0.85))
    pass_at: float = field(default_factory=lambda: _get_float_env("NAME_PASS_AT", 0.8))
    flag_at: float = field(default_factory=lambda: _get_float_env("NAME_FLAG_AT", 0.5))
    dictionary_frequency: float = field(
        default_factory=lambda: _get_float_env("NAME_DICTIONARY_FREQUENCY", 0.9)
    )


@dataclass
class ClusterConfig:
    """Address cluster anomaly detection."""
    low_threshold: int = field(default_factory=lambda: _get_int_env("CLUSTER_LOW", 6))
    medium_threshold: int = field(default_factory=lambda: _get_int_env("CLUSTER_MEDIUM", 12))
    high_threshold: int = field(default_factory=lambda: _get_int_env("CLUSTER_HIGH", 20))
    surname_diversity_cut: float = field(
        default_factory=lambda: _get_float_env("CLUSTER_SURNAME_DIVERSITY_CUT", 0.3)
    )
    dob_concentration_cut: float = field(
        default_factory=lambda: _get_float_env("CLUSTER_DOB_CONCENTRATION_CUT", 0.5)
    )
    velocity_count: int = field(default_factory=lambda: _get_int_env("CLUSTER_VELOCITY_COUNT", 10))
    velocity_days: float = field(default_factory=lambda: _get_float_env("CLUSTER_VELOCITY_DAYS", 7.0))
    interval_minutes: int = field(
        default_factory=lambda: _get_int_env("ADDRESS_CLUSTER_INTERVAL_MINUTES", 60)
    )
    alert_queue_size: int = field(default_factory=lambda: _get_int_env("CLUSTER_ALERT_QUEUE_SIZE", 100))

    def thresholds(self) -> dict[str, int]:
        return {
            "low": self.low_threshold,
            "medium": self.medium_threshold,
            "high": self.high_threshold,
        }


@dataclass
class RevisionConfig:
    """Revision batch dry-run / commit."""
    duplicate_scan_limit: int = field(default_factory=lambda: _get_int_env("REVISION_DUPLICATE_LIMIT", 50))
    deceased_scan_limit: int = field(default_factory=lambda: _get_int_env("REVISION_DECEASED_LIMIT", 20))
    window_days: int = field(default_factory=lambda: _get_int_env("REVISION_WINDOW_DAYS", 30))


@dataclass
class Config:
    """
    Main application configuration.

    All settings are loaded from environment variables with sensible defaults.
    Set DEBUG=1 in environment to enable debug logging.
    """

    base_dir: Path = field(default_factory=lambda: Path(__file__).resolve().parent.parent)
    logs_dir: Path = field(default=None)

    debug: bool = field(default_factory=lambda: _get_bool_env("DEBUG", False))
    log_to_file: bool = field(default_factory=lambda: _get_bool_env("LOG_TO_FILE", False))

    db: DBConfig = field(default_factory=DBConfig)
    geocoder: GeocoderConfig = field(default_factory=GeocoderConfig)
    address: AddressConfig = field(default_factory=AddressConfig)
    name: NameConfig = field(default_factory=NameConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    revision: RevisionConfig = field(default_factory=RevisionConfig)

    def __post_init__(self):
        if self.logs_dir is None:
            self.logs_dir = self.base_dir / os.getenv("LOG_DIR", "logs")


_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
