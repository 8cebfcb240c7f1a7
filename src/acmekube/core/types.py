"""Enumerated types and well-known names.

All enums inherit from ``StrEnum`` so their ``.value`` is the plain
string used in configuration, annotations and API payloads.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Annotations and cluster names
# ---------------------------------------------------------------------------

REQUEST_ANNOTATION = "acme/certificate"
EXPIRY_ANNOTATION = "acme/expiryDate"
ACME_CA_ANNOTATION = "acme/ca"
SECRET_NAME_ANNOTATION = "acme/secretName"

SYSTEM_NAMESPACE = "kube-system"
SECRET_NAME_SUFFIX = "-tls"


# ---------------------------------------------------------------------------
# Cloud platforms
# ---------------------------------------------------------------------------


class CloudPlatform(StrEnum):
    AWS = "AWS"
    GCP = "GCP"
    UNKNOWN = "UNKNOWN"


# ---------------------------------------------------------------------------
# Namespace watch
# ---------------------------------------------------------------------------


class WatchAction(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"
    BOOKMARK = "BOOKMARK"


# ---------------------------------------------------------------------------
# Renewal decisions
# ---------------------------------------------------------------------------


class RequestKind(StrEnum):
    NEW = "new"
    RENEWAL = "renewal"
