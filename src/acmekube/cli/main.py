"""acmekube command-line entry point.

Usage::

    acmekube
    acmekube -c /etc/acmekube/config.yaml
    acmekube -c config.yaml --validate-only
    python -m acmekube --debug

Exit status: 0 on SIGINT/SIGTERM, 1 when the namespace watch is lost or
the cluster cannot be reached at startup, 2 on configuration errors.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import TYPE_CHECKING

from acmekube.core.errors import ConfigurationError, WatchClosedError
from acmekube.core.types import CloudPlatform

if TYPE_CHECKING:
    from acmekube.cluster.client import KubernetesApi
    from acmekube.cluster.namespaces import NamespaceScheduler
    from acmekube.config.settings import ControllerSettings
    from acmekube.metrics.collector import MetricsCollector

log = logging.getLogger(__name__)

EXIT_WATCH_LOST = 1
EXIT_CONFIG = 2


def _get_version() -> str:
    from acmekube import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acmekube",
        description="Issue and renew Kubernetes TLS secrets via ACME DNS-01",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        metavar="PATH",
        help="Optional YAML configuration file; environment variables override it.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"acmekube: error: {message}", file=sys.stderr)  # noqa: T201


def _print_settings_summary(settings: ControllerSettings) -> None:
    lines = [
        f"ACME directory:     {settings.acme.directory_url}",
        f"Cloud platform:     {settings.dns.cloud_platform or 'auto-detect'}",
        f"Reconcile interval: {settings.reconcile.interval_seconds:g}s",
        "Secret files:       "
        + ", ".join(
            (
                settings.secret_filenames.certificate,
                settings.secret_filenames.chain,
                settings.secret_filenames.key,
                settings.secret_filenames.fullchain,
            ),
        ),
        f"Logging:            {settings.logging.level} ({settings.logging.format})",
    ]
    print("\n".join(lines))  # noqa: T201


def build_scheduler(
    settings: ControllerSettings,
    platform: CloudPlatform,
    metrics: MetricsCollector,
    api: KubernetesApi | None = None,
) -> tuple[KubernetesApi, NamespaceScheduler]:
    """Wire the controller components together.

    Loads (or creates) the account keypair, so this talks to the cluster.
    """
    from acmekube.acme.orchestrator import CertificateOrchestrator
    from acmekube.cluster.client import KubernetesApi
    from acmekube.cluster.keypair import AccountKeyStore
    from acmekube.cluster.namespaces import NamespaceScheduler
    from acmekube.cluster.secrets import RenewalPolicy, SecretStore
    from acmekube.cluster.services import ServiceReconciler
    from acmekube.responder import DnsRecordObserver, load_dns_responder

    api = api or KubernetesApi()
    responder = load_dns_responder(platform, settings.dns)
    account_key = AccountKeyStore(api).load_or_create()

    orchestrator = CertificateOrchestrator(
        settings.acme,
        settings.secret_filenames,
        account_key,
        responder,
        DnsRecordObserver(settings.dns),
        metrics=metrics,
    )
    secrets = SecretStore(api)

    def build_reconciler(namespace: str) -> ServiceReconciler:
        return ServiceReconciler(
            namespace,
            api,
            RenewalPolicy(namespace, secrets),
            orchestrator,
            secrets,
            max_workers=settings.reconcile.max_workers,
            metrics=metrics,
        )

    scheduler = NamespaceScheduler(
        build_reconciler,
        interval_seconds=settings.reconcile.interval_seconds,
        metrics=metrics,
    )
    return api, scheduler


def _register_signals(scheduler: NamespaceScheduler, metrics: MetricsCollector) -> None:
    def _signal_handler(signum: int, frame) -> None:  # noqa: ANN001, ARG001
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        scheduler.shutdown()
        log.info("Final metrics:\n%s", metrics.export())
        sys.exit(0)

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Loads settings, wires components, runs forever."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from acmekube.config import detect_cloud_platform, load_settings

    try:
        settings = load_settings(os.environ, config_file=args.config)
    except ConfigurationError as exc:
        _print_error(exc.detail)
        sys.exit(EXIT_CONFIG)

    # -- replace bootstrap logging with structured logging ---
    from acmekube.logging import configure_logging

    root = configure_logging(settings.logging)
    if args.debug:
        root.setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(settings)
        sys.exit(0)

    platform = detect_cloud_platform(settings.dns.cloud_platform)
    if platform is CloudPlatform.UNKNOWN:
        log.error("Could not detect cloud platform; set CLOUD_PLATFORM to AWS or GCP")
        sys.exit(EXIT_CONFIG)

    from acmekube.metrics import MetricsCollector

    metrics = MetricsCollector()
    try:
        api, scheduler = build_scheduler(settings, platform, metrics)
    except ConfigurationError as exc:
        if args.debug:
            raise
        log.error("Startup failed: %s", exc.detail)
        sys.exit(EXIT_CONFIG)
    except Exception as exc:
        if args.debug:
            raise
        log.error("Startup failed: %s", exc)
        sys.exit(EXIT_WATCH_LOST)

    _register_signals(scheduler, metrics)
    log.info("acmekube %s started on %s", _get_version(), platform)

    try:
        scheduler.run(api)
    except WatchClosedError as exc:
        log.error("%s", exc.detail)
        scheduler.shutdown()
        log.info("Final metrics:\n%s", metrics.export())
        sys.exit(EXIT_WATCH_LOST)
