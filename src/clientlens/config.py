"""Configuration loader.

Reads config.yaml with PyYAML and validates it against AppConfig. The
validated config is cached per process; the store and the LLM client are
built from it by the caller and passed explicitly, never cached here.

Path resolution: explicit argument, then $CLIENTLENS_CONFIG_PATH, then
config/config.yaml.

Usage:
    from clientlens.config import get_config, load_config

    config = get_config()                                  # cached
    config = load_config(Path("config/config.yaml"))       # always fresh
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from clientlens.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from clientlens.core.errors import ConfigLoadError, ConfigValidationError
from clientlens.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV_VAR = "CLIENTLENS_CONFIG_PATH"
EXAMPLE_CONFIG_PATH = Path("config/config.yaml.example")

_RANGE_ERRORS = frozenset({"greater_than", "greater_than_equal", "less_than", "less_than_equal"})

_cache_lock = threading.Lock()
_cached_config: AppConfig | None = None


def resolve_config_path(path: Path | None = None) -> Path:
    if path is not None:
        return path
    from_env = os.environ.get(CONFIG_PATH_ENV_VAR)
    return Path(from_env) if from_env else DEFAULT_CONFIG_PATH


def _describe_errors(error: ValidationError) -> str:
    """One actionable line per field error, e.g. "Field 'retry.max_attempts' is out of range"."""
    lines = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail["loc"]) or "(root)"
        kind = detail["type"]
        if kind == "missing":
            lines.append(f"  - Missing required field '{field}'")
        elif kind in _RANGE_ERRORS:
            lines.append(f"  - Field '{field}' is out of range: {detail['msg']}")
        elif kind == "extra_forbidden":
            lines.append(f"  - Unknown field '{field}'")
        else:
            lines.append(f"  - Field '{field}': {detail['msg']}")
    return "\n".join(lines)


def _read_yaml(path: Path) -> dict[str, Any]:
    """Parse the config file into a mapping (an empty file is an empty mapping).

    Raises:
        ConfigLoadError: Missing file, invalid YAML, or a non-mapping document
    """
    if not path.is_file():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Copy {EXAMPLE_CONFIG_PATH} to {path} and adjust it."
        )

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigLoadError(
            f"{path} must contain a YAML mapping at the top level, "
            f"not a {type(document).__name__}"
        )
    return document


def _to_app_config(document: dict[str, Any], path: Path) -> AppConfig:
    try:
        config = AppConfig.model_validate(document)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{_describe_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{path} declares schema version {config.schema_version}, which is newer than "
            f"the supported version {CURRENT_SCHEMA_VERSION}. Upgrade ClientLens."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate the configuration, bypassing the cache.

    Raises:
        ConfigLoadError: The file cannot be read or parsed
        ConfigValidationError: The content fails schema validation
    """
    config_path = resolve_config_path(path)
    config = _to_app_config(_read_yaml(config_path), config_path)

    logger.info(
        "config_loaded",
        path=str(config_path),
        schema_version=config.schema_version,
        database=config.database.path,
        semantic_attribution=config.attribution.semantic_enabled,
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _cached_config

    with _cache_lock:
        if _cached_config is None:
            _cached_config = load_config()
        return _cached_config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file without touching the cache.

    Returns:
        (is_valid, human-readable summary or error)
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    summary = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - database: {config.database.path}",
        f"  - insight model: {config.models.insights}",
        f"  - attribution model: {config.models.attribution}",
        f"  - retry: {config.retry.max_attempts} attempts",
        f"  - semantic attribution: {'on' if config.attribution.semantic_enabled else 'off'}",
    ]
    return True, "\n".join(summary)


def reset_config() -> None:
    """Drop the cached config (tests and config reloads)."""
    global _cached_config
    with _cache_lock:
        _cached_config = None
