"""Certificate secrets and the renewal decision.

A certificate secret carries the encoded certificate files as data and
three provenance annotations: the expiry date, the issuing ACME server,
and the JSON list of domains it was issued for.  The renewal policy
compares a service's requested domains against that state and decides
whether to request a new certificate, renew an existing one, or do
nothing.
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import TYPE_CHECKING

from acmekube.core.errors import CertificateError
from acmekube.core.types import (
    ACME_CA_ANNOTATION,
    EXPIRY_ANNOTATION,
    REQUEST_ANNOTATION,
    SECRET_NAME_ANNOTATION,
    SECRET_NAME_SUFFIX,
)
from acmekube.models.certificate import CertificateRequest

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from kubernetes.client import V1Secret

    from acmekube.cluster.client import KubernetesApi
    from acmekube.models.certificate import CertificateResponse

log = logging.getLogger(__name__)

RENEWAL_WINDOW = datetime.timedelta(days=2)


# ---------------------------------------------------------------------------
# Secret storage
# ---------------------------------------------------------------------------


def certificate_annotations(certificate: CertificateResponse) -> dict[str, str]:
    return {
        EXPIRY_ANNOTATION: certificate.expiry_date.date().isoformat(),
        ACME_CA_ANNOTATION: certificate.ca,
        REQUEST_ANNOTATION: json.dumps(list(certificate.domains)),
    }


class SecretStore:
    """Reads and writes certificate secrets."""

    def __init__(self, api: KubernetesApi) -> None:
        self._api = api

    def get_secret(self, namespace: str, secret_name: str) -> V1Secret | None:
        return self._api.read_secret(namespace, secret_name)

    def insert_certificate(
        self,
        namespace: str,
        secret_name: str,
        certificate: CertificateResponse,
    ) -> None:
        self._api.create_secret(
            namespace,
            secret_name,
            dict(certificate.certificate_files),
            annotations=certificate_annotations(certificate),
        )
        log.info(
            "Inserted secret %s into namespace %s",
            secret_name,
            namespace,
            extra={"namespace": namespace},
        )

    def update_certificate(
        self,
        namespace: str,
        secret_name: str,
        certificate: CertificateResponse,
    ) -> None:
        """Replace data and provenance annotations of an existing secret.

        Annotations the controller does not own are kept.
        """
        secret = self._api.read_secret(namespace, secret_name)
        if secret is None:
            msg = f"Secret {namespace}/{secret_name} disappeared before renewal"
            raise CertificateError(msg)

        annotations = dict(secret.metadata.annotations or {})
        annotations.update(certificate_annotations(certificate))
        secret.metadata.annotations = annotations
        secret.data = dict(certificate.certificate_files)

        self._api.replace_secret(namespace, secret)
        log.info(
            "Updated secret %s in namespace %s",
            secret_name,
            namespace,
            extra={"namespace": namespace},
        )


# ---------------------------------------------------------------------------
# Renewal checks
# ---------------------------------------------------------------------------


def _annotations(secret: V1Secret) -> Mapping[str, str]:
    return secret.metadata.annotations or {}


def is_expiring(secret: V1Secret, today: datetime.date | None = None) -> bool:
    """Whether the recorded expiry date is at most two days away.

    Calendar dates are compared, not instants.  A missing or unparseable
    annotation counts as not expiring.
    """
    value = _annotations(secret).get(EXPIRY_ANNOTATION)
    if value is None:
        log.warning(
            "No expiry date set on secret %s in namespace %s!",
            secret.metadata.name,
            secret.metadata.namespace,
        )
        return False

    try:
        expiry = datetime.date.fromisoformat(value)
    except ValueError:
        log.warning(
            "Unparseable expiry date '%s' on secret %s, ignoring",
            value,
            secret.metadata.name,
        )
        return False

    today = today or datetime.date.today()  # noqa: DTZ011
    return expiry <= today + RENEWAL_WINDOW


def domains_changed(domains: Sequence[str], secret: V1Secret) -> bool:
    """Whether *domains* differs from the recorded domain list.

    Added and removed domains both count.  A missing or unparseable
    annotation counts as unchanged.
    """
    value = _annotations(secret).get(REQUEST_ANNOTATION)
    if value is None:
        log.warning("%s annotation missing on secret %s!", REQUEST_ANNOTATION, secret.metadata.name)
        return False

    try:
        recorded = json.loads(value)
    except json.JSONDecodeError:
        log.warning(
            "Unparseable %s annotation on secret %s, ignoring",
            REQUEST_ANNOTATION,
            secret.metadata.name,
        )
        return False

    if not isinstance(recorded, list):
        recorded = [recorded]
    return len(recorded) != len(domains) or set(recorded) != set(domains)


def needs_renewal(
    domains: Sequence[str],
    secret: V1Secret,
    today: datetime.date | None = None,
) -> bool:
    # Both checks run so each logs its own warnings
    expiring = is_expiring(secret, today)
    changed = domains_changed(domains, secret)
    return expiring or changed


# ---------------------------------------------------------------------------
# Request preparation
# ---------------------------------------------------------------------------


def parse_domains(annotation: str) -> tuple[str, ...]:
    """Parse the certificate request annotation.

    A value starting with ``[`` is a JSON array of domains (a SAN
    request); anything else is a single domain.  Repeated domains are
    dropped, keeping the first occurrence.

    Raises
    ------
    CertificateError
        If the value is blank, or the array is malformed, empty or holds
        a blank entry.

    """
    value = annotation.strip()
    if not value:
        msg = "No domains have been specified!"
        raise CertificateError(msg)
    if not value.startswith("["):
        return (value,)

    try:
        domains = json.loads(value)
    except json.JSONDecodeError as exc:
        msg = f"Malformed domain list in {REQUEST_ANNOTATION}: {exc}"
        raise CertificateError(msg) from exc

    if not isinstance(domains, list) or not all(isinstance(d, str) for d in domains):
        msg = f"{REQUEST_ANNOTATION} must be a list of domain names"
        raise CertificateError(msg)
    if not domains:
        msg = "No domains have been specified!"
        raise CertificateError(msg)

    domains = [d.strip() for d in domains]
    if not all(domains):
        msg = f"{REQUEST_ANNOTATION} contains an empty domain name"
        raise CertificateError(msg)
    return tuple(dict.fromkeys(domains))


def secret_name_for(domains: Sequence[str], override: str | None = None) -> str:
    """Return the secret name for a certificate.

    Raises
    ------
    CertificateError
        If several domains are requested without an explicit name.

    """
    if override:
        return override
    if len(domains) > 1:
        msg = f"{SECRET_NAME_ANNOTATION} must be specified if multiple domains are requested!"
        raise CertificateError(msg)
    return domains[0].replace(".", "-") + SECRET_NAME_SUFFIX


class RenewalPolicy:
    """Decide what a service's certificate annotation requires.

    Parameters
    ----------
    namespace:
        Namespace of the services evaluated by this policy.
    secrets:
        Store used to look up the existing certificate secret.

    """

    def __init__(self, namespace: str, secrets: SecretStore) -> None:
        self.namespace = namespace
        self._secrets = secrets

    def prepare_request(
        self,
        service_name: str,
        annotations: Mapping[str, str],
        today: datetime.date | None = None,
    ) -> CertificateRequest | None:
        """Return the request to execute, or ``None`` when up to date."""
        domains = parse_domains(annotations[REQUEST_ANNOTATION])
        secret_name = secret_name_for(domains, annotations.get(SECRET_NAME_ANNOTATION))
        secret = self._secrets.get_secret(self.namespace, secret_name)
        context = {"namespace": self.namespace, "service": service_name}

        if secret is None:
            log.info(
                "Service %s requesting certificates: %s",
                service_name,
                list(domains),
                extra=context,
            )
            return CertificateRequest(secret_name=secret_name, domains=domains, renew=False)

        if needs_renewal(domains, secret, today):
            log.info(
                "Renewal of certificates %s requested by %s",
                list(domains),
                service_name,
                extra=context,
            )
            return CertificateRequest(secret_name=secret_name, domains=domains, renew=True)

        log.debug(
            "Certificate for %s requested by %s already exists",
            list(domains),
            service_name,
            extra=context,
        )
        return None
