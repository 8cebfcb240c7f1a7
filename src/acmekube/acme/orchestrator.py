"""ACME certificate orchestrator.

Drives one certificate request against an ACME v2 server:

1. Register (or re-bind) the account identified by the cluster keypair
   and accept the subscriber agreement.
2. Create an order for all domains, then authorize every domain in
   parallel through a DNS-01 challenge: publish the TXT record, wait for
   propagation, ask the server to validate, poll until decided, and
   always remove the record again.
3. Finalize the order and package certificate, chain, key and full chain
   as base64-encoded secret payloads.

Every protocol or transport failure surfaces as
:class:`~acmekube.core.errors.CertificateError`; nothing is retried here
except the single agreement retry.  The reconciliation interval is the
retry policy.
"""

from __future__ import annotations

import base64
import datetime
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Any

import josepy as jose
import requests
from acme import challenges, messages
from acme import client as acme_client
from acme import errors as acme_errors
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from acmekube.core.errors import CertificateError, ControllerError
from acmekube.metrics.collector import CHALLENGES
from acmekube.models.certificate import CertificateResponse

if TYPE_CHECKING:
    from acmekube.config.settings import AcmeSettings, SecretFilenames
    from acmekube.metrics.collector import MetricsCollector
    from acmekube.responder.base import DnsResponder
    from acmekube.responder.observer import DnsRecordObserver

log = logging.getLogger(__name__)

AGREEMENT_ERROR = "Must agree to subscriber agreement before any further actions"
_USER_ACTION_REQUIRED = "userActionRequired"

CERTIFICATE_KEY_SIZE = 2048
CHALLENGE_RECORD_PREFIX = "_acme-challenge."

_WAITING = (messages.STATUS_PENDING, messages.STATUS_PROCESSING)

# Errors raised by the ACME client stack that abort a request
_PROTOCOL_ERRORS = (
    acme_errors.Error,
    jose.errors.Error,
    requests.exceptions.RequestException,
)


def _is_agreement_error(exc: BaseException) -> bool:
    if isinstance(exc, messages.Error):
        # messages.Error.code only knows the registered error types
        if str(exc.typ or "").rsplit(":", 1)[-1] == _USER_ACTION_REQUIRED:
            return True
        return AGREEMENT_ERROR in (exc.detail or "")
    return AGREEMENT_ERROR in str(exc)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class CertificateOrchestrator:
    """Request certificates from the configured ACME server.

    Parameters
    ----------
    acme_settings:
        The ``acme`` configuration section.
    secret_filenames:
        Data keys for the encoded certificate files.
    account_key:
        The ACME account keypair from the account key store.
    responder:
        DNS responder for the detected cloud platform.
    observer:
        Propagation observer consulted before each validation.
    metrics:
        Optional collector for challenge outcomes.

    """

    def __init__(  # noqa: PLR0913
        self,
        acme_settings: AcmeSettings,
        secret_filenames: SecretFilenames,
        account_key: rsa.RSAPrivateKey,
        responder: DnsResponder,
        observer: DnsRecordObserver,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._settings = acme_settings
        self._filenames = secret_filenames
        self._jwk = jose.JWKRSA(key=account_key)
        self._responder = responder
        self._observer = observer
        self._metrics = metrics
        # Serialises the nonce-allocating order and authorization fetches
        self._session_lock = threading.Lock()

    # -- public API ----------------------------------------------------------

    def request_certificate(self, domains: list[str] | tuple[str, ...]) -> CertificateResponse:
        """Run the full ACME flow for *domains* and return the certificate.

        Raises
        ------
        CertificateError
            If any step of the flow fails.

        """
        domains = tuple(domains)
        if not domains:
            msg = "At least one domain is required"
            raise CertificateError(msg)

        client, regr = self._register()
        try:
            return self._issue(client, domains)
        except _PROTOCOL_ERRORS as exc:
            if not _is_agreement_error(exc):
                raise CertificateError(str(exc)) from exc

        # The agreement changed between registration and ordering
        self._agree(client, regr)
        try:
            return self._issue(client, domains)
        except _PROTOCOL_ERRORS as exc:
            raise CertificateError(str(exc)) from exc

    # -- registration --------------------------------------------------------

    def _connect(self) -> acme_client.ClientV2:
        net = acme_client.ClientNetwork(self._jwk, user_agent=self._settings.user_agent)
        directory = messages.Directory.from_json(
            net.get(self._settings.directory_url).json(),
        )
        return acme_client.ClientV2(directory, net)

    def _register(self) -> tuple[acme_client.ClientV2, messages.RegistrationResource]:
        try:
            client = self._connect()
            try:
                regr = client.new_account(
                    messages.NewRegistration.from_data(terms_of_service_agreed=True),
                )
                log.info("Created new ACME account, URI: %s", regr.uri)
            except acme_errors.ConflictError as exc:
                regr = client.query_registration(
                    messages.RegistrationResource(
                        uri=exc.location,
                        body=messages.Registration(),
                    ),
                )
                log.info("Using existing ACME account: %s", regr.uri)
        except _PROTOCOL_ERRORS as exc:
            log.error("Unexpected error while setting up registration: %s", exc)
            raise CertificateError(str(exc)) from exc

        regr = self._agree(client, regr)
        return client, regr

    def _agree(
        self,
        client: acme_client.ClientV2,
        regr: messages.RegistrationResource,
    ) -> messages.RegistrationResource:
        log.info(
            "Agreeing to subscriber agreement. Terms are available at %s",
            client.directory.meta.terms_of_service,
        )
        try:
            return client.update_registration(
                regr,
                messages.Registration.from_data(terms_of_service_agreed=True),
            )
        except _PROTOCOL_ERRORS as exc:
            log.error("Could not agree to subscriber agreement: %s", exc)
            msg = "Could not agree to subscriber agreement."
            raise CertificateError(msg) from exc

    # -- issuance ------------------------------------------------------------

    def _issue(self, client: acme_client.ClientV2, domains: tuple[str, ...]) -> CertificateResponse:
        key = rsa.generate_private_key(public_exponent=65537, key_size=CERTIFICATE_KEY_SIZE)
        csr_pem = self._build_csr(key, domains)

        with self._session_lock:
            orderr = client.new_order(csr_pem)

        authorizations = {
            authzr.body.identifier.value: authzr for authzr in orderr.authorizations
        }
        missing = [d for d in domains if d not in authorizations]
        if missing:
            msg = f"ACME order has no authorization for {', '.join(missing)}"
            raise CertificateError(msg)

        with ThreadPoolExecutor(
            max_workers=len(domains),
            thread_name_prefix="acme-authz",
        ) as pool:
            futures = [
                pool.submit(self._authorize_domain, client, domain, authorizations[domain])
                for domain in domains
            ]
            for future in as_completed(futures):
                future.result()

        deadline = datetime.datetime.now() + datetime.timedelta(  # noqa: DTZ005
            seconds=self._settings.finalize_timeout_seconds,
        )
        orderr = client.finalize_order(orderr, deadline)
        log.info("Successfully retrieved certificate for domains: %s", list(domains))
        return self._build_response(domains, orderr.fullchain_pem, key)

    @staticmethod
    def _build_csr(key: rsa.RSAPrivateKey, domains: tuple[str, ...]) -> bytes:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
        return csr.public_bytes(serialization.Encoding.PEM)

    def _build_response(
        self,
        domains: tuple[str, ...],
        fullchain_pem: str,
        key: rsa.RSAPrivateKey,
    ) -> CertificateResponse:
        certs = x509.load_pem_x509_certificates(fullchain_pem.encode("ascii"))
        leaf, chain = certs[0], certs[1:]

        cert_pem = leaf.public_bytes(serialization.Encoding.PEM)
        chain_pem = b"".join(c.public_bytes(serialization.Encoding.PEM) for c in chain)
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

        files = {
            self._filenames.certificate: _b64(cert_pem),
            self._filenames.chain: _b64(chain_pem),
            self._filenames.key: _b64(key_pem),
            self._filenames.fullchain: _b64(cert_pem + chain_pem),
        }
        return CertificateResponse(
            domains=domains,
            certificate_files=files,
            expiry_date=leaf.not_valid_after_utc,
            ca=self._settings.directory_url,
        )

    # -- authorization -------------------------------------------------------

    def _authorize_domain(
        self,
        client: acme_client.ClientV2,
        domain: str,
        authzr: messages.AuthorizationResource,
    ) -> None:
        with self._session_lock:
            authzr, _ = client.poll(authzr)

        if authzr.body.status == messages.STATUS_VALID:
            log.info("Authorization for %s still valid, not issuing new challenge", domain)
            return

        challb = self._find_dns_challenge(authzr, domain)
        log.info("Issuing new challenge for %s", domain)

        record_name = CHALLENGE_RECORD_PREFIX + domain
        digest = challb.chall.validation(self._jwk)
        root_zone = self._responder.add_challenge_record(record_name, digest)
        try:
            self._observer.observe(record_name, root_zone, digest)
            client.answer_challenge(challb, challb.response(self._jwk))
            self._wait_for_authorization(client, authzr, domain)
        finally:
            try:
                self._responder.remove_challenge_record(record_name, digest)
            except ControllerError as exc:
                log.warning("Could not remove challenge record %s: %s", record_name, exc.detail)

    @staticmethod
    def _find_dns_challenge(authzr: messages.AuthorizationResource, domain: str) -> Any:  # noqa: ANN401
        for challb in authzr.body.challenges:
            if isinstance(challb.chall, challenges.DNS01):
                return challb
        log.error("Received no DNS challenge from authorization for %s", domain)
        msg = f"Received no DNS challenge for {domain}"
        raise CertificateError(msg)

    def _wait_for_authorization(
        self,
        client: acme_client.ClientV2,
        authzr: messages.AuthorizationResource,
        domain: str,
    ) -> None:
        deadline = time.monotonic() + self._settings.challenge_timeout_seconds
        authzr, _ = client.poll(authzr)
        while authzr.body.status in _WAITING:
            if time.monotonic() >= deadline:
                self._count_challenge("timeout")
                msg = f"Challenge for {domain} did not complete in time"
                raise CertificateError(msg)
            time.sleep(self._settings.challenge_poll_interval_seconds)
            authzr, _ = client.poll(authzr)

        if authzr.body.status == messages.STATUS_INVALID:
            self._count_challenge("invalid")
            log.error("Challenge for %s failed", domain)
            msg = f"Failed due to invalid challenge for {domain}"
            raise CertificateError(msg)

        self._count_challenge("valid")
        log.info("Challenge for %s completed", domain)

    def _count_challenge(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(CHALLENGES, labels={"outcome": outcome})
