"""Per-namespace service reconciliation.

Each pass lists the services of one namespace, asks the renewal policy
what every annotated service needs, and dispatches the resulting
certificate flows to a thread pool without waiting for them.  A service
with a flow in flight is skipped until that flow finishes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from acmekube.core.errors import ControllerError
from acmekube.core.types import REQUEST_ANNOTATION
from acmekube.metrics.collector import CERTIFICATE_FAILURES, CERTIFICATES_ISSUED

if TYPE_CHECKING:
    from collections.abc import Iterable

    from acmekube.acme.orchestrator import CertificateOrchestrator
    from acmekube.cluster.client import KubernetesApi
    from acmekube.cluster.secrets import RenewalPolicy, SecretStore
    from acmekube.metrics.collector import MetricsCollector
    from acmekube.models.certificate import CertificateRequest

log = logging.getLogger(__name__)


class ServiceReconciler:
    """Reconcile certificate secrets for all services in one namespace.

    Parameters
    ----------
    namespace:
        The namespace this reconciler owns.
    api:
        Kubernetes API used to list services.
    policy:
        Renewal policy bound to *namespace*.
    orchestrator:
        ACME orchestrator executing certificate flows.
    secrets:
        Secret store persisting issued certificates.
    executor:
        Pool running the certificate flows.  A private pool with
        *max_workers* threads is created when omitted.
    metrics:
        Optional metrics collector.

    """

    def __init__(  # noqa: PLR0913
        self,
        namespace: str,
        api: KubernetesApi,
        policy: RenewalPolicy,
        orchestrator: CertificateOrchestrator,
        secrets: SecretStore,
        executor: Any = None,  # noqa: ANN401
        max_workers: int = 4,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.namespace = namespace
        self._api = api
        self._policy = policy
        self._orchestrator = orchestrator
        self._secrets = secrets
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"certificates-{namespace}",
        )
        self._metrics = metrics
        self._lock = threading.Lock()
        self._in_progress: set[str] = set()

    @property
    def in_progress(self) -> frozenset[str]:
        """Snapshot of the services with a certificate flow in flight."""
        with self._lock:
            return frozenset(self._in_progress)

    # -- passes --------------------------------------------------------------

    def reconcile_namespace(self) -> list[Future]:
        """List the namespace's services and reconcile each of them."""
        return self.reconcile(self._api.list_services(self.namespace))

    def reconcile(self, services: Iterable) -> list[Future]:
        """Reconcile *services*; returns the futures of dispatched flows."""
        futures = []
        for service in services:
            future = self.reconcile_service(service)
            if future is not None:
                futures.append(future)
        return futures

    def reconcile_service(self, service: Any) -> Future | None:  # noqa: ANN401
        """Dispatch a certificate flow for *service* if one is needed."""
        name = service.metadata.name
        annotations = service.metadata.annotations or {}
        if REQUEST_ANNOTATION not in annotations:
            return None

        context = {"namespace": self.namespace, "service": name}
        log.debug("Reconciliation request for %s", name, extra=context)

        if not self._claim(name):
            log.debug("Certificate flow for %s still in progress, skipping", name, extra=context)
            return None

        try:
            request = self._policy.prepare_request(name, annotations)
        except ControllerError as exc:
            self._release(name)
            log.error("Invalid certificate request on %s: %s", name, exc.detail, extra=context)
            return None
        except Exception:
            self._release(name)
            log.exception("Could not evaluate certificate request on %s", name, extra=context)
            return None

        if request is None:
            self._release(name)
            return None

        try:
            future = self._executor.submit(self._handle_request, request)
        except RuntimeError:
            self._release(name)
            log.warning("Executor shut down, not dispatching %s", name, extra=context)
            return None

        future.add_done_callback(
            lambda f, _n=name, _r=request: self._on_request_done(f, _n, _r),
        )
        return future

    def shutdown(self, wait: bool = False) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # -- internals -----------------------------------------------------------

    def _claim(self, name: str) -> bool:
        with self._lock:
            if name in self._in_progress:
                return False
            self._in_progress.add(name)
            return True

    def _release(self, name: str) -> None:
        with self._lock:
            self._in_progress.discard(name)

    def _handle_request(self, request: CertificateRequest) -> None:
        response = self._orchestrator.request_certificate(request.domains)
        if request.renew:
            self._secrets.update_certificate(self.namespace, request.secret_name, response)
        else:
            self._secrets.insert_certificate(self.namespace, request.secret_name, response)

    def _on_request_done(self, future: Future, name: str, request: CertificateRequest) -> None:
        try:
            context = {"namespace": self.namespace, "service": name}
            if future.cancelled():
                log.warning("Certificate flow for %s was cancelled", name, extra=context)
                return

            exc = future.exception()
            if exc is None:
                log.info(
                    "Certificate %s for %s stored (%s)",
                    request.secret_name,
                    list(request.domains),
                    request.kind,
                    extra=context,
                )
                if self._metrics:
                    self._metrics.increment(CERTIFICATES_ISSUED, labels={"kind": request.kind})
                return

            detail = exc.detail if isinstance(exc, ControllerError) else str(exc)
            log.error(
                "Certificate flow for %s failed: %s",
                name,
                detail,
                exc_info=exc,
                extra=context,
            )
            if self._metrics:
                self._metrics.increment(CERTIFICATE_FAILURES, labels={"kind": request.kind})
        finally:
            self._release(name)
