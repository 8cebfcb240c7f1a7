"""Certificate request and response values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmekube.core.types import RequestKind

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class CertificateRequest:
    """A reconciliation decision for one service.

    Attributes
    ----------
    secret_name:
        Name of the secret the certificate is stored in.
    domains:
        Requested domains, in annotation order.  Never empty.
    renew:
        Whether an existing secret is replaced rather than created.

    """

    secret_name: str
    domains: tuple[str, ...]
    renew: bool

    @property
    def kind(self) -> RequestKind:
        return RequestKind.RENEWAL if self.renew else RequestKind.NEW


@dataclass(frozen=True)
class CertificateResponse:
    """A signed certificate as returned by the ACME server.

    ``certificate_files`` maps the configured file names to base64-encoded
    PEM content, ready to be used as secret data.
    """

    domains: tuple[str, ...]
    certificate_files: dict[str, str]
    expiry_date: datetime
    ca: str
