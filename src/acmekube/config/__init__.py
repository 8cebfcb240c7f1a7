"""Configuration subsystem for acmekube.

Public API::

    from acmekube.config import load_settings, detect_cloud_platform

    settings = load_settings(os.environ)
    platform = detect_cloud_platform(settings.dns.cloud_platform)
"""

from acmekube.config.loader import ConfigValidationError, load_settings
from acmekube.config.platform import detect_cloud_platform
from acmekube.config.settings import (
    AcmeSettings,
    ControllerSettings,
    DnsSettings,
    LoggingSettings,
    ReconcileSettings,
    SecretFilenames,
    build_settings,
)

__all__ = [
    "AcmeSettings",
    "ConfigValidationError",
    "ControllerSettings",
    "DnsSettings",
    "LoggingSettings",
    "ReconcileSettings",
    "SecretFilenames",
    "build_settings",
    "detect_cloud_platform",
    "load_settings",
]
