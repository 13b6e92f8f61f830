"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a YAML
configuration file (~/.chatwarden/config.yaml). Keys are dotted
(e.g. 'retry.max_attempts'); the matching environment variable is the
upper-cased key with dots replaced by underscores, optionally prefixed with
CHATWARDEN_.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from chatwarden.domain.errors import ConfigurationError
from chatwarden.infrastructure.resilience.api_retry import RetryOptions

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".chatwarden"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "CHATWARDEN_"

SNOWFLAKE_RE = re.compile(r"^\d{17,19}$")

# Older flat environment names still honoured.
ENV_ALIASES: Dict[str, str] = {
    "retry.max_attempts": "MAX_RETRY_ATTEMPTS",
    "retry.base_delay_ms": "BASE_DELAY_MS",
    "limits.max_scrape": "MAX_SCRAPE_LIMIT",
    "limits.self_purge": "SELF_PURGE_LIMIT",
    "logging.level": "LOG_LEVEL",
}

DEFAULTS: Dict[str, Any] = {
    "rate_limit.global": 50,
    "rate_limit.route": 5,
    "rate_limit.delete": 5,
    "retry.max_attempts": 5,
    "retry.base_delay_ms": 1000,
    "retry.max_delay_ms": 30000,
    "retry.backoff_factor": 2,
    "retry.jitter": True,
    "fetch.page_size": 100,
    "limits.max_scrape": 100000,
    "limits.self_purge": 2000,
    "export_dir": "./exports",
    "api.base_url": "https://discord.com/api/v10",
    "api.timeout_s": 30,
    "logging.level": "INFO",
    "logging.format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{full_key}."))
        else:
            flat[full_key] = value
    return flat


def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE,
    env_file: Optional[Path] = None,
    reload: bool = False,
) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables (including those loaded from .env)
    3. YAML configuration file
    4. Built-in defaults

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        reload: Discard previously loaded values and load again.
    """
    global _config, _loaded
    if _loaded and not reload:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above current directory.")

    _loaded = True
    logger.info("Configuration loading process completed.")


def _coerce(value: str) -> Any:
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    # Long digit strings are identifiers, not numbers.
    if value.isdigit() and len(value) >= 16:
        return value
    try:
        if "." in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def _env_names(key: str):
    base = key.upper().replace(".", "_")
    yield f"{ENV_PREFIX}{base}"
    yield base
    if key in ENV_ALIASES:
        yield ENV_ALIASES[key]


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key.

    Priority:
    1. Test configuration
    2. Environment variable
    3. YAML config
    4. Built-in default, then `default`
    """
    if key in _test_config:
        return _test_config[key]

    for env_name in _env_names(key):
        if env_name in os.environ:
            return _coerce(os.environ[env_name])

    if key in _config:
        return _config[key]

    if key in DEFAULTS:
        return DEFAULTS[key]

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value in memory for the rest of the process."""
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def _get_int(key: str) -> int:
    value = get_config(key)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Config value '{key}' must be an integer, got {value!r}") from e


def _get_float(key: str) -> float:
    value = get_config(key)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Config value '{key}' must be a number, got {value!r}") from e


def _get_bool(key: str) -> bool:
    value = get_config(key)
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


# --- Typed Settings ---

@dataclass(frozen=True)
class RateLimitSettings:
    global_limit: int
    route_limit: int
    delete_limit: int


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int
    base_delay_ms: int
    max_delay_ms: int
    backoff_factor: float
    jitter: bool

    def to_options(self, context: str = "operation") -> RetryOptions:
        return RetryOptions(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay_ms,
            max_delay=self.max_delay_ms,
            factor=self.backoff_factor,
            jitter=self.jitter,
            context=context,
        )


@dataclass(frozen=True)
class FetchSettings:
    page_size: int
    max_scrape_limit: int
    self_purge_limit: int
    export_dir: Path


@dataclass(frozen=True)
class ApiSettings:
    base_url: str
    token: Optional[str]
    timeout_s: float


def get_rate_limit_settings() -> RateLimitSettings:
    settings = RateLimitSettings(
        global_limit=_get_int("rate_limit.global"),
        route_limit=_get_int("rate_limit.route"),
        delete_limit=_get_int("rate_limit.delete"),
    )
    if min(settings.global_limit, settings.route_limit, settings.delete_limit) <= 0:
        raise ConfigurationError(f"Rate limits must be positive: {settings}")
    return settings


def get_retry_settings() -> RetrySettings:
    settings = RetrySettings(
        max_attempts=_get_int("retry.max_attempts"),
        base_delay_ms=_get_int("retry.base_delay_ms"),
        max_delay_ms=_get_int("retry.max_delay_ms"),
        backoff_factor=_get_float("retry.backoff_factor"),
        jitter=_get_bool("retry.jitter"),
    )
    if settings.max_attempts < 1:
        raise ConfigurationError("retry.max_attempts must be at least 1")
    return settings


def get_fetch_settings() -> FetchSettings:
    return FetchSettings(
        page_size=_get_int("fetch.page_size"),
        max_scrape_limit=_get_int("limits.max_scrape"),
        self_purge_limit=_get_int("limits.self_purge"),
        export_dir=Path(str(get_config("export_dir"))),
    )


def get_api_settings() -> ApiSettings:
    token = get_config("api.token")
    return ApiSettings(
        base_url=str(get_config("api.base_url")).rstrip("/"),
        token=str(token) if token else None,
        timeout_s=_get_float("api.timeout_s"),
    )


def validate_snowflake(value: Optional[str]) -> bool:
    """True if the value looks like a platform snowflake id (17-19 digits)."""
    return bool(value) and bool(SNOWFLAKE_RE.match(str(value)))


def get_owner_user_id(required: bool = False) -> Optional[str]:
    """Returns the privileged actor id, validating its format.

    Raises:
        ConfigurationError: If the id is malformed, or missing while required.
    """
    value = get_config("owner_user_id")
    if value is None or value == "":
        if required:
            raise ConfigurationError("OWNER_USER_ID is required")
        return None
    owner_id = str(value)
    if not validate_snowflake(owner_id):
        raise ConfigurationError("OWNER_USER_ID must be a valid snowflake ID (17-19 digits)")
    return owner_id


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values that override everything else, for tests."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
