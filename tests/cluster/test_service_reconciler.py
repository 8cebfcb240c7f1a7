"""Tests for per-namespace service reconciliation."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from acmekube.cluster.services import ServiceReconciler
from acmekube.core.errors import CertificateError
from acmekube.metrics.collector import (
    CERTIFICATE_FAILURES,
    CERTIFICATES_ISSUED,
    MetricsCollector,
)
from acmekube.models.certificate import CertificateRequest

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(name: str, annotations: dict | None = None) -> SimpleNamespace:
    return SimpleNamespace(metadata=SimpleNamespace(name=name, annotations=annotations))


def _annotated(name: str, domain: str = "example.com") -> SimpleNamespace:
    return _service(name, {"acme/certificate": domain})


def _request(domain: str = "example.com", renew: bool = False) -> CertificateRequest:
    return CertificateRequest(
        secret_name=domain.replace(".", "-") + "-tls",
        domains=(domain,),
        renew=renew,
    )


@pytest.fixture()
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture()
def parts():
    return SimpleNamespace(
        api=MagicMock(),
        policy=MagicMock(),
        orchestrator=MagicMock(),
        secrets=MagicMock(),
        metrics=MetricsCollector(),
    )


@pytest.fixture()
def reconciler(parts, executor):
    return ServiceReconciler(
        "default",
        parts.api,
        parts.policy,
        parts.orchestrator,
        parts.secrets,
        executor=executor,
        metrics=parts.metrics,
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_unannotated_services_are_ignored(self, reconciler, parts):
        futures = reconciler.reconcile([_service("plain"), _service("labels", {"a": "b"})])

        assert futures == []
        parts.policy.prepare_request.assert_not_called()

    def test_up_to_date_service_is_not_dispatched(self, reconciler, parts):
        parts.policy.prepare_request.return_value = None

        assert reconciler.reconcile([_annotated("web")]) == []
        assert reconciler.in_progress == frozenset()
        parts.orchestrator.request_certificate.assert_not_called()

    def test_new_certificate_is_inserted(self, reconciler, parts):
        parts.policy.prepare_request.return_value = _request()
        response = parts.orchestrator.request_certificate.return_value

        (future,) = reconciler.reconcile([_annotated("web")])
        future.result(timeout=5)

        parts.orchestrator.request_certificate.assert_called_once_with(("example.com",))
        parts.secrets.insert_certificate.assert_called_once_with(
            "default",
            "example-com-tls",
            response,
        )
        parts.secrets.update_certificate.assert_not_called()

    def test_renewal_updates_secret(self, reconciler, parts):
        parts.policy.prepare_request.return_value = _request(renew=True)

        (future,) = reconciler.reconcile([_annotated("web")])
        future.result(timeout=5)

        parts.secrets.update_certificate.assert_called_once()
        parts.secrets.insert_certificate.assert_not_called()

    def test_reconcile_namespace_lists_services(self, reconciler, parts):
        parts.api.list_services.return_value = [_service("plain")]

        reconciler.reconcile_namespace()

        parts.api.list_services.assert_called_once_with("default")

    def test_invalid_request_is_logged_and_skipped(self, reconciler, parts, caplog):
        parts.policy.prepare_request.side_effect = [
            CertificateError("No domains have been specified!"),
            _request("other.com"),
        ]

        futures = reconciler.reconcile([_annotated("bad", "[]"), _annotated("good", "other.com")])
        wait(futures, timeout=5)

        assert len(futures) == 1
        assert "No domains have been specified!" in caplog.text
        assert _eventually(lambda: reconciler.in_progress == frozenset())

    def test_api_error_skips_only_that_service(self, reconciler, parts, caplog):
        parts.policy.prepare_request.side_effect = [
            ApiException(status=500, reason="Internal Server Error"),
            _request("b.com"),
        ]

        futures = reconciler.reconcile([_annotated("a", "a.com"), _annotated("b", "b.com")])
        wait(futures, timeout=5)

        assert len(futures) == 1
        assert [c.args[0] for c in parts.policy.prepare_request.call_args_list] == ["a", "b"]
        assert "Could not evaluate certificate request on a" in caplog.text
        parts.orchestrator.request_certificate.assert_called_once_with(("b.com",))
        assert _eventually(lambda: reconciler.in_progress == frozenset())

    def test_shut_down_executor_releases_claim(self, parts):
        pool = ThreadPoolExecutor(max_workers=1)
        pool.shutdown()
        parts.policy.prepare_request.return_value = _request()
        reconciler = ServiceReconciler(
            "default", parts.api, parts.policy, parts.orchestrator, parts.secrets, executor=pool
        )

        assert reconciler.reconcile([_annotated("web")]) == []
        assert reconciler.in_progress == frozenset()


# ---------------------------------------------------------------------------
# In-progress guard
# ---------------------------------------------------------------------------


class TestInProgressGuard:
    def test_service_in_flight_is_skipped(self, reconciler, parts):
        release = threading.Event()
        started = threading.Event()

        def _slow(domains):
            started.set()
            release.wait(timeout=5)
            return MagicMock()

        parts.orchestrator.request_certificate.side_effect = _slow
        parts.policy.prepare_request.return_value = _request()

        (future,) = reconciler.reconcile([_annotated("web")])
        assert started.wait(timeout=5)
        assert reconciler.in_progress == frozenset({"web"})

        assert reconciler.reconcile([_annotated("web")]) == []
        assert parts.policy.prepare_request.call_count == 1

        release.set()
        future.result(timeout=5)
        assert _eventually(lambda: reconciler.in_progress == frozenset())

        # A later pass may dispatch the service again
        (again,) = reconciler.reconcile([_annotated("web")])
        again.result(timeout=5)
        assert parts.orchestrator.request_certificate.call_count == 2

    def test_different_services_run_concurrently(self, reconciler, parts):
        barrier = threading.Barrier(2, timeout=5)

        def _together(domains):
            barrier.wait()
            return MagicMock()

        parts.orchestrator.request_certificate.side_effect = _together
        parts.policy.prepare_request.side_effect = lambda name, annotations: _request(
            annotations["acme/certificate"],
        )

        futures = reconciler.reconcile([_annotated("a", "a.com"), _annotated("b", "b.com")])
        for future in futures:
            future.result(timeout=5)

        assert parts.secrets.insert_certificate.call_count == 2

    def test_failed_flow_releases_claim(self, reconciler, parts, caplog):
        parts.orchestrator.request_certificate.side_effect = CertificateError("boom")
        parts.policy.prepare_request.return_value = _request()

        (future,) = reconciler.reconcile([_annotated("web")])
        with pytest.raises(CertificateError):
            future.result(timeout=5)

        # done-callbacks may still be running right after result() returns
        wait([future], timeout=5)
        assert _eventually(lambda: reconciler.in_progress == frozenset())
        assert "Certificate flow for web failed: boom" in caplog.text
        parts.secrets.insert_certificate.assert_not_called()


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class TestReconcilerMetrics:
    def test_issued_and_failed_are_counted(self, reconciler, parts):
        parts.policy.prepare_request.side_effect = [_request(), _request("b.com", renew=True)]
        parts.orchestrator.request_certificate.side_effect = [
            MagicMock(),
            CertificateError("rate limited"),
        ]

        (first,) = reconciler.reconcile([_annotated("a")])
        wait([first], timeout=5)
        (second,) = reconciler.reconcile([_annotated("b", "b.com")])
        wait([second], timeout=5)

        assert _eventually(
            lambda: parts.metrics.get(CERTIFICATES_ISSUED, labels={"kind": "new"}) == 1
            and parts.metrics.get(CERTIFICATE_FAILURES, labels={"kind": "renewal"}) == 1,
        )


def _eventually(check, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if check():
            return True
        time.sleep(0.01)
    return check()
