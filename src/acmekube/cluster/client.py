"""Kubernetes API access.

A thin wrapper over ``CoreV1Api`` exposing only the calls the controller
makes: namespace listing and watching, service listing, and secret
read/create/replace.  Missing secrets are reported as ``None``; every
other API failure propagates as ``ApiException``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException

from acmekube.core.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)

_NOT_FOUND = 404


def load_kubernetes_config() -> None:
    """Load kubeconfig, falling back to the in-cluster service account."""
    try:
        config.load_kube_config()
        log.debug("Loaded kubeconfig")
    except config.ConfigException:
        try:
            config.load_incluster_config()
        except config.ConfigException as exc:
            msg = f"No Kubernetes configuration available: {exc}"
            raise ConfigurationError(msg) from exc
        log.debug("Loaded in-cluster config")


class KubernetesApi:
    """Core API operations used by the controller.

    Parameters
    ----------
    core_v1:
        Optional pre-built ``CoreV1Api``.  When omitted, configuration is
        loaded with :func:`load_kubernetes_config`.

    """

    def __init__(self, core_v1: Any = None) -> None:  # noqa: ANN401
        if core_v1 is None:
            load_kubernetes_config()
            core_v1 = client.CoreV1Api()
        self._core = core_v1

    # -- namespaces ----------------------------------------------------------

    def list_namespaces(self) -> list[str]:
        return [ns.metadata.name for ns in self._core.list_namespace().items]

    def watch_namespaces(self) -> Iterator[tuple[str, str]]:
        """Yield ``(event type, namespace name)`` until the watch ends."""
        watcher = watch.Watch()
        for event in watcher.stream(self._core.list_namespace):
            yield event["type"], event["object"].metadata.name

    # -- services ------------------------------------------------------------

    def list_services(self, namespace: str) -> list:
        return list(self._core.list_namespaced_service(namespace).items)

    # -- secrets -------------------------------------------------------------

    def read_secret(self, namespace: str, name: str) -> client.V1Secret | None:
        try:
            return self._core.read_namespaced_secret(name, namespace)
        except ApiException as exc:
            if exc.status == _NOT_FOUND:
                return None
            raise

    def create_secret(
        self,
        namespace: str,
        name: str,
        data: dict[str, str],
        annotations: dict[str, str] | None = None,
    ) -> client.V1Secret:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                annotations=annotations,
            ),
            type="Opaque",
            data=data,
        )
        return self._core.create_namespaced_secret(namespace, body)

    def replace_secret(self, namespace: str, secret: client.V1Secret) -> client.V1Secret:
        return self._core.replace_namespaced_secret(
            secret.metadata.name,
            namespace,
            secret,
        )
