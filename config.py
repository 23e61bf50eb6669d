"""
Configuration Module
====================
Centralized environment variable loading, validation, and access.
Validates all required configuration at startup to fail fast.

Owner-editable settings (platform fee, pre-order schedule) live in the
store; the values here are deployment defaults used until the owner
saves their own.
"""

import os
import logging
from typing import Optional, Dict, Any, List
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


# ============================================================================
# ENVIRONMENT LOADING
# ============================================================================

def load_environment():
    """
    Load environment variables from .env file if present.
    Safe to call multiple times.
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from .env file")
    else:
        logger.info("No .env file found, using system environment variables")


load_environment()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def _get_required_env(key: str, description: str = None) -> str:
    """
    Get required environment variable.

    Raises:
        ConfigurationError: If variable is missing or empty
    """
    value = os.getenv(key)

    if not value or value.strip() == "":
        desc = f" ({description})" if description else ""
        raise ConfigurationError(
            f"Missing required environment variable: {key}{desc}"
        )

    return value.strip()


def _get_optional_env(key: str, default: str = None) -> Optional[str]:
    value = os.getenv(key, default)
    return value.strip() if value else default


def _get_bool_env(key: str, default: bool = False) -> bool:
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on", "enabled")


def _get_int_env(key: str, default: int = None) -> Optional[int]:
    """
    Get integer environment variable.

    Raises:
        ConfigurationError: If value is not a valid integer
    """
    value = os.getenv(key)

    if not value:
        return default

    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"Invalid integer value for {key}: {value}"
        )


def _get_float_env(key: str, default: float = None) -> Optional[float]:
    """
    Get float environment variable.

    Raises:
        ConfigurationError: If value is not a valid number
    """
    value = os.getenv(key)

    if not value:
        return default

    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(
            f"Invalid numeric value for {key}: {value}"
        )


# ============================================================================
# STORE CONFIGURATION
# ============================================================================

STORE_BACKENDS = ("memory", "supabase")


class StoreConfig:
    """Which document store backs the engine."""

    def __init__(self):
        self.backend = _get_optional_env("STORE_BACKEND", "memory").lower()

        if self.backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"Invalid STORE_BACKEND: {self.backend}. "
                f"Must be one of {', '.join(STORE_BACKENDS)}"
            )


class SupabaseConfig:
    """Supabase database configuration."""

    def __init__(self, required: bool = True):
        if required:
            self.url = _get_required_env("SUPABASE_URL", "Supabase project URL")
            self.key = _get_required_env("SUPABASE_KEY", "Supabase service role key")

            if not self.url.startswith("https://"):
                raise ConfigurationError(
                    f"SUPABASE_URL must start with https://: {self.url}"
                )
        else:
            self.url = _get_optional_env("SUPABASE_URL")
            self.key = _get_optional_env("SUPABASE_KEY")

        # Transport timeout for a single store call
        self.timeout = _get_int_env("SUPABASE_TIMEOUT", 10)


# ============================================================================
# PRICING CONFIGURATION
# ============================================================================

class PricingConfig:
    """Fee defaults and the delivery tier policy."""

    def __init__(self):
        self.platform_fee_enabled = _get_bool_env("PLATFORM_FEE_ENABLED", False)
        self.platform_fee = _get_float_env("PLATFORM_FEE", 0.0)
        self.fee_per_kilometer = _get_float_env("FEE_PER_KILOMETER", 15.0)

        # Delivery tiers: free, then flat, then metered
        self.free_radius_km = _get_float_env("DELIVERY_FREE_RADIUS_KM", 0.5)
        self.flat_radius_km = _get_float_env("DELIVERY_FLAT_RADIUS_KM", 1.0)
        self.flat_fee = _get_float_env("DELIVERY_FLAT_FEE", 20.0)
        self.charge_flat_fee_beyond_flat_radius = _get_bool_env(
            "DELIVERY_CHARGE_FLAT_BEYOND_RADIUS",
            False
        )

        if self.platform_fee < 0:
            raise ConfigurationError(f"PLATFORM_FEE cannot be negative: {self.platform_fee}")

        if self.fee_per_kilometer < 0 or self.flat_fee < 0:
            raise ConfigurationError("Delivery fees cannot be negative")

        if not 0 <= self.free_radius_km <= self.flat_radius_km:
            raise ConfigurationError(
                f"Delivery radii must satisfy 0 <= free ({self.free_radius_km}) "
                f"<= flat ({self.flat_radius_km})"
            )


# ============================================================================
# RESTAURANT CONFIGURATION
# ============================================================================

DEFAULT_DENIAL_REASONS = (
    "Out of stock",
    "Restaurant is too busy",
    "Outside delivery area",
    "Payment could not be verified",
)


class RestaurantConfig:
    """Single-restaurant deployment settings."""

    def __init__(self):
        self.timezone_name = _get_optional_env("RESTAURANT_TIMEZONE", "Asia/Manila")

        try:
            self.timezone = ZoneInfo(self.timezone_name)
        except ZoneInfoNotFoundError:
            raise ConfigurationError(
                f"Unknown RESTAURANT_TIMEZONE: {self.timezone_name}"
            )

        self.average_prep_time = _get_int_env("AVERAGE_PREP_TIME", 20)
        self.average_delivery_time = _get_int_env("AVERAGE_DELIVERY_TIME", 30)

        presets = _get_optional_env("DENIAL_REASON_PRESETS")
        if presets:
            self.denial_reason_presets = [p.strip() for p in presets.split("|") if p.strip()]
        else:
            self.denial_reason_presets = list(DEFAULT_DENIAL_REASONS)

        self.max_special_instructions = _get_int_env("MAX_SPECIAL_INSTRUCTIONS", 100)
        self.preorder_cancel_notice_hours = _get_int_env("PREORDER_CANCEL_NOTICE_HOURS", 24)


# ============================================================================
# SERVER CONFIGURATION
# ============================================================================

class ServerConfig:
    """Web server configuration."""

    def __init__(self):
        self.host = _get_optional_env("HOST", "0.0.0.0")
        self.port = _get_int_env("PORT", 8000)

        self.cors_origins = _get_optional_env("CORS_ORIGINS", "*").split(",")

        self.log_level = _get_optional_env("LOG_LEVEL", "INFO").upper()

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ConfigurationError(
                f"Invalid LOG_LEVEL: {self.log_level}"
            )


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================

class Config:
    """
    Main configuration container.
    Loads and validates all configuration on initialization.
    """

    def __init__(self):
        """
        Raises:
            ConfigurationError: If any required configuration is missing or invalid
        """
        try:
            self.store = StoreConfig()
            self.supabase = SupabaseConfig(required=self.store.backend == "supabase")
            self.pricing = PricingConfig()
            self.restaurant = RestaurantConfig()
            self.server = ServerConfig()

            logger.info("Configuration loaded and validated successfully")

        except ConfigurationError as e:
            logger.error(f"Configuration error: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error loading configuration: {str(e)}")
            raise ConfigurationError(f"Configuration initialization failed: {str(e)}")

    def get_safe_summary(self) -> Dict[str, Any]:
        """Configuration summary without secrets."""
        return {
            "store_backend": self.store.backend,
            "timezone": self.restaurant.timezone_name,
            "pricing": {
                "platform_fee_enabled": self.pricing.platform_fee_enabled,
                "platform_fee": self.pricing.platform_fee,
                "fee_per_kilometer": self.pricing.fee_per_kilometer,
                "free_radius_km": self.pricing.free_radius_km,
                "flat_radius_km": self.pricing.flat_radius_km,
                "flat_fee": self.pricing.flat_fee,
            },
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "log_level": self.server.log_level,
            },
        }


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get global configuration instance.
    Initializes on first call.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    global _config

    if _config is None:
        _config = Config()

    return _config


def reload_config() -> Config:
    """Reload configuration from environment."""
    global _config
    load_environment()
    _config = Config()
    logger.info("Configuration reloaded")
    return _config


def validate_configuration() -> List[str]:
    """
    Validate configuration and log a summary.

    Returns:
        Summary lines that were logged
    """
    summary = get_config().get_safe_summary()

    lines = [
        f"Store backend: {summary['store_backend']}",
        f"Timezone: {summary['timezone']}",
        f"Platform fee: {summary['pricing']['platform_fee']} "
        f"({'enabled' if summary['pricing']['platform_fee_enabled'] else 'disabled'})",
        f"Fee per km: {summary['pricing']['fee_per_kilometer']}",
        f"Server: {summary['server']['host']}:{summary['server']['port']}",
    ]

    logger.info("Configuration Summary:")
    for line in lines:
        logger.info(f"  {line}")

    return lines
