"""Exception hierarchy for the certificate controller.

Every error carries a human-readable ``detail``.  Errors raised inside a
certificate flow are fatal for that flow only; the owning task logs them
and the next scheduled reconciliation pass retries the service.
:class:`WatchClosedError` is fatal for the whole process.
"""

from __future__ import annotations


class ControllerError(Exception):
    """Base class for all controller errors.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.

    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ConfigurationError(ControllerError):
    """Raised when the controller cannot be configured (fatal at startup)."""


class CertificateError(ControllerError):
    """Raised for any ACME protocol or transport failure during a flow."""


class DnsError(ControllerError):
    """Raised by DNS responders, e.g. when no managed zone matches a record."""


class PropagationError(ControllerError):
    """Raised when a challenge record fails to appear on a nameserver."""


class WatchClosedError(ControllerError):
    """Raised when the namespace watch connection is lost."""
