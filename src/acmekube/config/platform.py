"""Cloud platform detection.

Determines which DNS provider the controller talks to.  An explicit
``dns.cloud_platform`` setting always wins; otherwise the environment is
probed for Amazon Web Services first and Google Cloud Platform second.
"""

from __future__ import annotations

import logging

import boto3
import dns.exception
import dns.resolver

from acmekube.core.types import CloudPlatform

log = logging.getLogger(__name__)

_GCP_METADATA_HOST = "metadata.google.internal"


def detect_cloud_platform(configured: str | None = None) -> CloudPlatform:
    """Return the configured or detected cloud platform.

    Returns :attr:`CloudPlatform.UNKNOWN` when nothing matches; the caller
    decides whether that is fatal.
    """
    if configured:
        return CloudPlatform(configured.upper())

    log.info("Detecting current cloud platform ...")
    if _detect_amazon_web_services():
        log.info("Cloud platform is Amazon Web Services")
        return CloudPlatform.AWS
    if _detect_google_cloud_platform():
        log.info("Cloud platform is Google Cloud Platform")
        return CloudPlatform.GCP

    log.warning("Could not detect cloud platform")
    return CloudPlatform.UNKNOWN


def _detect_amazon_web_services() -> bool:
    """AWS is assumed when botocore can resolve a region for this process."""
    return boto3.session.Session().region_name is not None


def _detect_google_cloud_platform() -> bool:
    """GCP is assumed when the metadata server hostname resolves."""
    try:
        dns.resolver.resolve(_GCP_METADATA_HOST, "A", lifetime=2.0)
    except dns.exception.DNSException:
        return False
    return True
