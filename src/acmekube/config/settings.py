"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.  The
loader produces a plain dict (from an optional YAML file and the
environment); these builders turn it into the settings the controller
actually reads.

Access pattern::

    from acmekube.config import load_settings

    settings = load_settings(os.environ)
    print(settings.acme.directory_url)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEFAULT_ACME_URL = "https://acme-v02.api.letsencrypt.org/directory"

# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeSettings:
    """ACME server and challenge polling settings."""

    directory_url: str
    challenge_timeout_seconds: int
    challenge_poll_interval_seconds: float
    finalize_timeout_seconds: int
    user_agent: str


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    return AcmeSettings(
        directory_url=d.get("directory_url", DEFAULT_ACME_URL),
        challenge_timeout_seconds=int(d.get("challenge_timeout_seconds", 600)),
        challenge_poll_interval_seconds=float(
            d.get("challenge_poll_interval_seconds", 0.1),
        ),
        finalize_timeout_seconds=int(d.get("finalize_timeout_seconds", 90)),
        user_agent=d.get("user_agent", "acmekube"),
    )


# ---------------------------------------------------------------------------
# Secret payload file names
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretFilenames:
    """Data keys used for the certificate files inside a secret."""

    certificate: str
    chain: str
    key: str
    fullchain: str


def _build_secret_filenames(data: dict | None) -> SecretFilenames:
    d = data or {}
    return SecretFilenames(
        certificate=d.get("certificate", "certificate.pem"),
        chain=d.get("chain", "chain.pem"),
        key=d.get("key", "key.pem"),
        fullchain=d.get("fullchain", "fullchain.pem"),
    )


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DnsSettings:
    """DNS provider selection, change polling and propagation checks."""

    cloud_platform: str | None
    record_ttl: int
    route53_poll_seconds: float
    cloud_dns_poll_seconds: float
    cloud_dns_settle_seconds: float
    propagation_timeout_seconds: float
    propagation_interval_seconds: float
    query_timeout_seconds: float


def _build_dns(data: dict | None) -> DnsSettings:
    d = data or {}
    return DnsSettings(
        cloud_platform=d.get("cloud_platform") or None,
        record_ttl=int(d.get("record_ttl", 60)),
        route53_poll_seconds=float(d.get("route53_poll_seconds", 1.0)),
        cloud_dns_poll_seconds=float(d.get("cloud_dns_poll_seconds", 0.5)),
        cloud_dns_settle_seconds=float(d.get("cloud_dns_settle_seconds", 100)),
        propagation_timeout_seconds=float(d.get("propagation_timeout_seconds", 60)),
        propagation_interval_seconds=float(d.get("propagation_interval_seconds", 1.0)),
        query_timeout_seconds=float(d.get("query_timeout_seconds", 5.0)),
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconcileSettings:
    """Per-namespace reconciliation loop settings."""

    interval_seconds: float
    max_workers: int


def _build_reconcile(data: dict | None) -> ReconcileSettings:
    d = data or {}
    return ReconcileSettings(
        interval_seconds=float(d.get("interval_seconds", 45)),
        max_workers=int(d.get("max_workers", 4)),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format)."""

    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ControllerSettings:
    """Top-level settings object for the controller."""

    acme: AcmeSettings
    secret_filenames: SecretFilenames
    dns: DnsSettings
    reconcile: ReconcileSettings
    logging: LoggingSettings


def build_settings(data: dict[str, Any]) -> ControllerSettings:
    """Build the full settings tree from a (validated) config dict."""
    return ControllerSettings(
        acme=_build_acme(data.get("acme")),
        secret_filenames=_build_secret_filenames(data.get("secret_filenames")),
        dns=_build_dns(data.get("dns")),
        reconcile=_build_reconcile(data.get("reconcile")),
        logging=_build_logging(data.get("logging")),
    )
