"""
Config loading for awakenfetch.

Sources (in precedence order, highest first):
  1. Environment variables (AWAKENFETCH_*, plus the providers' own names
     such as TAOSTATS_API_KEY)
  2. ~/.awakenfetch/config.toml
  3. Built-in defaults

Usage:
    from awakenfetch.config import load_config
    config = load_config()
    print(config.api.taostats_api_key)

Adapters never read this module: build_registry() hands each one the keys
and HTTP settings it needs as constructor arguments.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import toml

from awakenfetch.exceptions import ConfigInvalidError

# Default config directory and file
DEFAULT_CONFIG_DIR = Path.home() / ".awakenfetch"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
# Later entries win, so the AWAKENFETCH_* names override the provider names.
_ENV_OVERRIDES: list[tuple[str, str, type]] = [
    ("TAOSTATS_API_KEY", "api.taostats_api_key", str),
    ("SUBSCAN_API_KEY", "api.subscan_api_key", str),
    ("VARIATIONAL_API_KEY", "api.variational_api_key", str),
    ("VARIATIONAL_API_SECRET", "api.variational_api_secret", str),
    ("EXTENDED_API_KEY", "api.extended_api_key", str),
    ("SKYMAVIS_API_KEY", "api.skymavis_api_key", str),
    ("AWAKENFETCH_TAOSTATS_API_KEY", "api.taostats_api_key", str),
    ("AWAKENFETCH_SUBSCAN_API_KEY", "api.subscan_api_key", str),
    ("AWAKENFETCH_VARIATIONAL_API_KEY", "api.variational_api_key", str),
    ("AWAKENFETCH_VARIATIONAL_API_SECRET", "api.variational_api_secret", str),
    ("AWAKENFETCH_EXTENDED_API_KEY", "api.extended_api_key", str),
    ("AWAKENFETCH_SKYMAVIS_API_KEY", "api.skymavis_api_key", str),
    ("AWAKENFETCH_HTTP_TIMEOUT", "http.timeout", float),
    ("AWAKENFETCH_MAX_RETRIES", "http.max_retries", int),
    ("AWAKENFETCH_BASE_DELAY", "http.base_delay", float),
    ("AWAKENFETCH_OUTPUT_FORMAT", "output.default_format", str),
    ("AWAKENFETCH_OUTPUT_DIR", "output.output_dir", str),
]

VALID_FORMATS = {"csv", "json", "jsonl", "table"}


@dataclass
class APIConfig:
    """Provider credentials. Empty string means not configured."""

    taostats_api_key: str = ""
    subscan_api_key: str = ""
    variational_api_key: str = ""
    variational_api_secret: str = ""
    extended_api_key: str = ""
    skymavis_api_key: str = ""


@dataclass
class HTTPConfig:
    """Per-call timeout and retry policy shared by every adapter."""

    timeout: float = 30.0           # seconds, per HTTP call
    max_retries: int = 3
    base_delay: float = 1.0         # seconds; backoff is base_delay * 2**attempt


@dataclass
class OutputConfig:
    """Output formatting defaults."""

    default_format: str = "csv"     # csv | json | jsonl | table
    output_dir: str = "."


@dataclass
class AwakenFetchConfig:
    """Full configuration object. Passed via Click context to all commands."""

    api: APIConfig = field(default_factory=APIConfig)
    http: HTTPConfig = field(default_factory=HTTPConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def load_config(path: str | None = None) -> AwakenFetchConfig:
    """
    Load configuration from TOML file + environment variable overrides.

    Args:
        path: Override config file path. If None, uses AWAKENFETCH_CONFIG_PATH
              env var or default (~/.awakenfetch/config.toml).

    Returns:
        AwakenFetchConfig with all values resolved. A missing file is not an
        error: defaults plus environment are a complete configuration.

    Raises:
        ConfigInvalidError: Config file exists but is invalid TOML or values.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    config = _dict_to_config(raw)
    _apply_env_overrides(config)
    _validate_config(config)

    return config


def save_config(config: AwakenFetchConfig, path: str | None = None) -> Path:
    """
    Serialize AwakenFetchConfig to TOML and write to disk.

    Returns the path where config was written.
    """
    config_path = _resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "api": {
            "taostats_api_key": config.api.taostats_api_key,
            "subscan_api_key": config.api.subscan_api_key,
            "variational_api_key": config.api.variational_api_key,
            "variational_api_secret": config.api.variational_api_secret,
            "extended_api_key": config.api.extended_api_key,
            "skymavis_api_key": config.api.skymavis_api_key,
        },
        "http": {
            "timeout": config.http.timeout,
            "max_retries": config.http.max_retries,
            "base_delay": config.http.base_delay,
        },
        "output": {
            "default_format": config.output.default_format,
            "output_dir": config.output.output_dir,
        },
    }

    with open(config_path, "w") as f:
        toml.dump(data, f)

    return config_path


def get_default_config_path() -> Path:
    """Return the default config file path."""
    return DEFAULT_CONFIG_PATH


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("AWAKENFETCH_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _dict_to_config(raw: dict) -> AwakenFetchConfig:
    """Build AwakenFetchConfig from raw TOML dict, applying defaults for missing keys."""
    config = AwakenFetchConfig()

    try:
        api = raw.get("api", {})
        config.api.taostats_api_key = str(api.get("taostats_api_key", ""))
        config.api.subscan_api_key = str(api.get("subscan_api_key", ""))
        config.api.variational_api_key = str(api.get("variational_api_key", ""))
        config.api.variational_api_secret = str(api.get("variational_api_secret", ""))
        config.api.extended_api_key = str(api.get("extended_api_key", ""))
        config.api.skymavis_api_key = str(api.get("skymavis_api_key", ""))

        http = raw.get("http", {})
        config.http.timeout = float(http.get("timeout", 30.0))
        config.http.max_retries = int(http.get("max_retries", 3))
        config.http.base_delay = float(http.get("base_delay", 1.0))

        output = raw.get("output", {})
        config.output.default_format = output.get("default_format", "csv")
        config.output.output_dir = output.get("output_dir", ".")
    except (ValueError, TypeError, AttributeError) as e:
        raise ConfigInvalidError(f"Invalid config value: {e}") from e

    return config


def _apply_env_overrides(config: AwakenFetchConfig) -> None:
    """Apply environment variable overrides to a loaded config."""
    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None:
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e


def _validate_config(config: AwakenFetchConfig) -> None:
    """Validate config values. Raises ConfigInvalidError on invalid values."""
    if config.output.default_format not in VALID_FORMATS:
        raise ConfigInvalidError(
            f"output.default_format must be one of {sorted(VALID_FORMATS)}, "
            f"got {config.output.default_format!r}"
        )
    if config.http.timeout <= 0:
        raise ConfigInvalidError(f"http.timeout must be positive, got {config.http.timeout}")
    if config.http.max_retries < 0:
        raise ConfigInvalidError(
            f"http.max_retries must be non-negative, got {config.http.max_retries}"
        )
    if config.http.base_delay < 0:
        raise ConfigInvalidError(
            f"http.base_delay must be non-negative, got {config.http.base_delay}"
        )
