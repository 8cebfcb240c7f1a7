"""Namespace lifecycle and the periodic reconciliation workers.

The scheduler replays the current namespace listing, then follows the
namespace watch.  Every live namespace gets one daemon thread that runs a
service reconciliation pass immediately and then on a fixed interval.
Losing the watch is fatal; the process supervisor restarts the
controller.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from acmekube.core.errors import WatchClosedError
from acmekube.core.types import WatchAction
from acmekube.metrics.collector import RECONCILE_ERRORS, RECONCILE_PASSES

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmekube.cluster.client import KubernetesApi
    from acmekube.cluster.services import ServiceReconciler
    from acmekube.metrics.collector import MetricsCollector

log = logging.getLogger(__name__)


class ReconciliationWorker:
    """Daemon thread running reconciliation passes for one namespace.

    Parameters
    ----------
    reconciler:
        The namespace's service reconciler.
    interval_seconds:
        Delay between passes; the first pass runs immediately.
    metrics:
        Optional metrics collector.

    """

    def __init__(
        self,
        reconciler: ServiceReconciler,
        interval_seconds: float = 45,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.reconciler = reconciler
        self._interval = interval_seconds
        self._metrics = metrics
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def namespace(self) -> str:
        return self.reconciler.namespace

    def start(self) -> None:
        """Start the background worker thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"reconcile-{self.namespace}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the worker to stop; in-flight certificate flows finish on their own."""
        self._stop_event.set()
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout=timeout)
        self.reconciler.shutdown(wait=False)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> None:
        """Run one reconciliation pass, logging rather than raising failures."""
        try:
            self.reconciler.reconcile_namespace()
            if self._metrics:
                self._metrics.increment(RECONCILE_PASSES)
        except Exception:
            log.exception(
                "Reconciliation pass for namespace %s failed",
                self.namespace,
                extra={"namespace": self.namespace},
            )
            if self._metrics:
                self._metrics.increment(RECONCILE_ERRORS)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(timeout=self._interval)


class NamespaceScheduler:
    """Start and stop reconciliation workers as namespaces come and go.

    Parameters
    ----------
    reconciler_factory:
        Builds the :class:`ServiceReconciler` for a namespace name.
    interval_seconds:
        Reconciliation interval handed to each worker.
    metrics:
        Optional metrics collector.

    """

    def __init__(
        self,
        reconciler_factory: Callable[[str], ServiceReconciler],
        interval_seconds: float = 45,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._factory = reconciler_factory
        self._interval = interval_seconds
        self._metrics = metrics
        self._lock = threading.Lock()
        self._workers: dict[str, ReconciliationWorker] = {}

    @property
    def namespaces(self) -> frozenset[str]:
        """Namespaces with an active worker."""
        with self._lock:
            return frozenset(self._workers)

    def event_received(self, action: str, namespace: str) -> None:
        if action == WatchAction.ADDED:
            self._handle_added(namespace)
        elif action == WatchAction.DELETED:
            self._handle_deleted(namespace)
        else:
            log.debug("Received unhandled namespace event: %s", action)

    def run(self, api: KubernetesApi) -> None:
        """Replay the namespace listing, then follow the watch forever.

        Raises
        ------
        WatchClosedError
            When the watch stream ends or fails.

        """
        for namespace in api.list_namespaces():
            self.event_received(WatchAction.ADDED, namespace)

        try:
            for action, namespace in api.watch_namespaces():
                self.event_received(action, namespace)
        except Exception as exc:
            msg = f"Lost connection to Kubernetes master: {exc}"
            raise WatchClosedError(msg) from exc

        msg = "Namespace watch closed by the Kubernetes master"
        raise WatchClosedError(msg)

    def shutdown(self) -> None:
        """Stop every worker."""
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.stop()
        log.info("Stopped %d reconciliation workers", len(workers))

    # -- internals -----------------------------------------------------------

    def _handle_added(self, namespace: str) -> None:
        with self._lock:
            if namespace in self._workers:
                return
            log.info(
                "Starting reconciliation loop for namespace %s",
                namespace,
                extra={"namespace": namespace},
            )
            worker = ReconciliationWorker(
                self._factory(namespace),
                interval_seconds=self._interval,
                metrics=self._metrics,
            )
            self._workers[namespace] = worker
        worker.start()

    def _handle_deleted(self, namespace: str) -> None:
        with self._lock:
            worker = self._workers.pop(namespace, None)
        if worker is None:
            return
        log.info(
            "Interrupting reconciliation loop for namespace %s",
            namespace,
            extra={"namespace": namespace},
        )
        worker.stop()
