"""Configuration loader.

Settings come from two sources, applied in order:

1. An optional YAML file.  String values may reference the environment
   with ``${VAR}`` or ``${VAR:-default}``.
2. The classic environment variables (``ACME_URL``, ``CLOUD_PLATFORM``,
   ``CERTIFICATE_FILENAME`` ...), which override the file.

Usage::

    from acmekube.config import load_settings

    settings = load_settings(os.environ, config_file="/etc/acmekube.yaml")
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from acmekube.config.settings import ControllerSettings, build_settings
from acmekube.core.errors import ConfigurationError
from acmekube.core.types import CloudPlatform

if TYPE_CHECKING:
    from collections.abc import Mapping

log = logging.getLogger(__name__)

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

# Environment variable -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "ACME_URL": ("acme", "directory_url"),
    "CLOUD_PLATFORM": ("dns", "cloud_platform"),
    "CERTIFICATE_FILENAME": ("secret_filenames", "certificate"),
    "CHAIN_FILENAME": ("secret_filenames", "chain"),
    "KEY_FILENAME": ("secret_filenames", "key"),
    "FULLCHAIN_FILENAME": ("secret_filenames", "fullchain"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FORMAT": ("logging", "format"),
    "RECONCILE_INTERVAL": ("reconcile", "interval_seconds"),
}

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_LOG_FORMATS = frozenset({"json", "text"})

# (section, key) pairs that must hold positive numbers
_POSITIVE_NUMBERS = (
    ("acme", "challenge_timeout_seconds"),
    ("acme", "challenge_poll_interval_seconds"),
    ("acme", "finalize_timeout_seconds"),
    ("dns", "record_ttl"),
    ("dns", "route53_poll_seconds"),
    ("dns", "cloud_dns_poll_seconds"),
    ("dns", "propagation_timeout_seconds"),
    ("dns", "propagation_interval_seconds"),
    ("dns", "query_timeout_seconds"),
    ("reconcile", "interval_seconds"),
    ("reconcile", "max_workers"),
)


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(ConfigurationError):
    """Raised when validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str, environ: Mapping[str, str]) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    environ: Mapping[str, str],
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path, environ)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], environ, child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path, environ)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, environ, child_path)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def _read_config_file(config_file: str | Path, environ: Mapping[str, str]) -> dict:
    path = Path(config_file)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        msg = f"Cannot read configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Configuration file {path} is not valid YAML: {exc}"
        raise ConfigurationError(msg) from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        msg = f"Configuration file {path} must contain a mapping at the top level"
        raise ConfigurationError(msg)

    _resolve_env_vars(raw, environ)
    return raw


def _apply_env_overrides(data: dict, environ: Mapping[str, str]) -> None:
    for var_name, (section, key) in _ENV_OVERRIDES.items():
        value = environ.get(var_name)
        if value is None or value == "":
            continue
        target = data.get(section)
        if not isinstance(target, dict):
            target = {}
            data[section] = target
        target[key] = value
        log.debug("Configuration %s.%s set from %s", section, key, var_name)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate(data: dict) -> None:
    errors: list[str] = []

    for section in ("acme", "secret_filenames", "dns", "reconcile", "logging"):
        if section in data and not isinstance(data[section], dict):
            errors.append(f"'{section}' must be a mapping")
    if errors:
        raise ConfigValidationError(errors)

    acme = data.get("acme") or {}
    url = acme.get("directory_url")
    if url is not None and not str(url).startswith(("https://", "http://")):
        errors.append(f"acme.directory_url '{url}' must be an http(s) URL")

    platform = (data.get("dns") or {}).get("cloud_platform")
    if platform:
        known = {p.value for p in CloudPlatform if p is not CloudPlatform.UNKNOWN}
        if str(platform).upper() not in known:
            errors.append(
                f"dns.cloud_platform '{platform}' is not one of {sorted(known)}",
            )

    filenames = data.get("secret_filenames") or {}
    for key, value in filenames.items():
        if not isinstance(value, str) or not value:
            errors.append(f"secret_filenames.{key} must be a non-empty string")
    values = [v for v in filenames.values() if isinstance(v, str)]
    if len(values) != len(set(values)):
        errors.append("secret_filenames must be distinct")

    logging_cfg = data.get("logging") or {}
    level = logging_cfg.get("level")
    if level is not None and str(level).upper() not in _LOG_LEVELS:
        errors.append(f"logging.level '{level}' is not one of {sorted(_LOG_LEVELS)}")
    fmt = logging_cfg.get("format")
    if fmt is not None and fmt not in _LOG_FORMATS:
        errors.append(f"logging.format '{fmt}' is not one of {sorted(_LOG_FORMATS)}")

    for section, key in _POSITIVE_NUMBERS:
        value = (data.get(section) or {}).get(key)
        if value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{section}.{key} must be a number, got '{value}'")
            continue
        if number <= 0:
            errors.append(f"{section}.{key} must be positive, got {value}")

    if errors:
        raise ConfigValidationError(errors)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_settings(
    environ: Mapping[str, str] | None = None,
    config_file: str | Path | None = None,
) -> ControllerSettings:
    """Load, validate and build the controller settings.

    Parameters
    ----------
    environ:
        Environment mapping; defaults to :data:`os.environ`.
    config_file:
        Optional YAML file read before the environment overrides.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or any value is invalid.

    """
    env = os.environ if environ is None else environ
    data = _read_config_file(config_file, env) if config_file else {}
    _apply_env_overrides(data, env)
    _validate(data)
    return build_settings(data)
