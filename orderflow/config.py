"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. explicit ``config_path`` argument
2. ``ORDERFLOW_CONFIG_PATH`` environment variable
3. ./orderflow.yaml (working directory)

${VAR} references in YAML values resolve from environment at load time.
Well-known environment variables (STRIPE_SECRET_KEY, MAPBOX_TOKEN, ...)
override the file afterwards. The result is built once at startup and
passed to the services that need it; nothing re-reads the environment
per request.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

_MIN_INTERNAL_TOKEN_LENGTH = 32

# env var -> (section, field); section None means a top-level field
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "STRIPE_SECRET_KEY": ("stripe", "secret_key"),
    "STRIPE_WEBHOOK_SECRET": ("stripe", "webhook_secret"),
    "MAPBOX_TOKEN": ("geocoding", "mapbox_token"),
    "CALENDAR_API_URL": ("calendar", "api_url"),
    "CALENDAR_ACCESS_TOKEN": ("calendar", "access_token"),
    "FRONTEND_URL": (None, "frontend_url"),
    "INTERNAL_JOB_TOKEN": (None, "internal_job_token"),
    "PENDING_ORDER_TTL_HOURS": (None, "pending_order_ttl_hours"),
}


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class StripeConfig(BaseModel):
    """Payment gateway secrets.

    Both values are secrets. An empty ``secret_key`` disables checkout and
    status reconciliation; an empty ``webhook_secret`` makes the webhook
    endpoint reject every delivery.
    """

    secret_key: str = ""
    webhook_secret: str = ""
    product_name: str = "Photography Services"

    @property
    def payments_enabled(self) -> bool:
        return bool(self.secret_key.strip())

    @property
    def webhooks_enabled(self) -> bool:
        return bool(self.webhook_secret.strip())


class GeocodingConfig(BaseModel):
    """Mapbox forward-geocoding settings. Empty token disables lookups."""

    mapbox_token: str = ""
    base_url: str = "https://api.mapbox.com/geocoding/v5/mapbox.places"
    timeout_seconds: float = 5.0


class CalendarConfig(BaseModel):
    """External calendar provider settings. Empty token disables sync."""

    api_url: str = "https://api.cronofy.com/v1"
    access_token: str = ""
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.access_token.strip())


class AppConfig(BaseModel):
    """Top-level configuration for the order service."""

    stripe: StripeConfig = StripeConfig()
    geocoding: GeocodingConfig = GeocodingConfig()
    calendar: CalendarConfig = CalendarConfig()
    frontend_url: str = "http://localhost:3000"
    internal_job_token: str = ""
    pending_order_ttl_hours: int = Field(default=24, ge=1)


def _find_config_file() -> Path | None:
    """Search for a config file in the standard locations."""
    env_path = os.environ.get("ORDERFLOW_CONFIG_PATH", "").strip()
    if env_path:
        return Path(env_path)
    for candidate in (Path.cwd() / "orderflow.yaml", Path.cwd() / "orderflow.yml"):
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply well-known environment variables on top of file config.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    for env_name, (section, field) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is None or value.strip() == "":
            continue
        if section is None:
            data[field] = value.strip()
            continue
        if not isinstance(data.get(section), dict):
            data[section] = {}
        data[section][field] = value.strip()
    return data


def load_config(config_path: str | None = None) -> AppConfig:
    """Load configuration from YAML (optional) plus environment.

    Args:
        config_path: Explicit path to config file. If None, searches
            ORDERFLOW_CONFIG_PATH then the working directory.

    Returns:
        Parsed and validated AppConfig. Defaults apply when no file exists.

    Raises:
        FileNotFoundError: If an explicitly requested file does not exist.
    """
    raw_data: dict[str, Any] = {}
    path = Path(config_path) if config_path else _find_config_file()
    if path is not None:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return AppConfig(**data)


def validate_config(config: AppConfig) -> None:
    """Validate a loaded config once at startup.

    Raises:
        ValueError: If the internal job token is set but too short.
    """
    token = config.internal_job_token.strip()
    if token and len(token) < _MIN_INTERNAL_TOKEN_LENGTH:
        raise ValueError(
            f"INTERNAL_JOB_TOKEN is too short ({len(token)} chars). "
            f"Minimum length is {_MIN_INTERNAL_TOKEN_LENGTH} characters."
        )
    if not config.stripe.payments_enabled:
        logger.warning(
            "STRIPE_SECRET_KEY not configured: checkout and payment "
            "reconciliation are disabled."
        )
    if not config.stripe.webhooks_enabled:
        logger.warning(
            "STRIPE_WEBHOOK_SECRET not configured: webhook deliveries "
            "will be rejected."
        )
    if not config.geocoding.mapbox_token:
        logger.info("MAPBOX_TOKEN not configured: address geocoding disabled.")
