"""Tests for certificate secrets and the renewal policy."""

from __future__ import annotations

import datetime
import json
from unittest.mock import MagicMock

import pytest
from kubernetes.client import V1ObjectMeta, V1Secret

from acmekube.cluster.secrets import (
    RenewalPolicy,
    SecretStore,
    certificate_annotations,
    domains_changed,
    is_expiring,
    parse_domains,
    secret_name_for,
)
from acmekube.core.errors import CertificateError
from acmekube.models.certificate import CertificateResponse

TODAY = datetime.date(2026, 3, 10)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _secret(annotations: dict | None, name: str = "test-secret") -> V1Secret:
    return V1Secret(
        metadata=V1ObjectMeta(name=name, namespace="default", annotations=annotations),
        data={"certificate.pem": "old"},
    )


def _certificate(domains=("example.com",)) -> CertificateResponse:
    return CertificateResponse(
        domains=tuple(domains),
        certificate_files={"certificate.pem": "bmV3"},
        expiry_date=datetime.datetime(2026, 6, 8, 11, 30, tzinfo=datetime.UTC),
        ca="https://acme.test/directory",
    )


def _policy(secret: V1Secret | None) -> tuple[RenewalPolicy, MagicMock]:
    secrets = MagicMock()
    secrets.get_secret.return_value = secret
    return RenewalPolicy("default", secrets), secrets


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestIsExpiring:
    @pytest.mark.parametrize(
        ("expiry", "expected"),
        [
            ("2026-03-09", True),
            ("2026-03-12", True),
            ("2026-03-13", False),
            ("2026-04-01", False),
        ],
    )
    def test_two_day_window(self, expiry, expected):
        secret = _secret({"acme/expiryDate": expiry})
        assert is_expiring(secret, TODAY) is expected

    def test_missing_annotation(self, caplog):
        assert is_expiring(_secret({}), TODAY) is False
        assert "No expiry date set" in caplog.text

    def test_no_annotations_at_all(self):
        assert is_expiring(_secret(None), TODAY) is False

    def test_unparseable_date(self, caplog):
        assert is_expiring(_secret({"acme/expiryDate": "soon"}), TODAY) is False
        assert "Unparseable expiry date" in caplog.text


# ---------------------------------------------------------------------------
# Domain changes
# ---------------------------------------------------------------------------


class TestDomainsChanged:
    def _secret_for(self, domains) -> V1Secret:
        return _secret({"acme/certificate": json.dumps(domains)})

    def test_same_domains(self):
        secret = self._secret_for(["test.tazj.in", "test2.tazj.in"])
        assert domains_changed(["test.tazj.in", "test2.tazj.in"], secret) is False

    def test_order_is_ignored(self):
        secret = self._secret_for(["test.tazj.in", "test2.tazj.in"])
        assert domains_changed(["test2.tazj.in", "test.tazj.in"], secret) is False

    def test_domain_added(self):
        secret = self._secret_for(["test.tazj.in"])
        assert domains_changed(["test.tazj.in", "test2.tazj.in"], secret) is True

    def test_domain_removed(self):
        secret = self._secret_for(["test.tazj.in", "test2.tazj.in"])
        assert domains_changed(["test.tazj.in"], secret) is True

    def test_domain_replaced(self):
        secret = self._secret_for(["test.tazj.in"])
        assert domains_changed(["other.tazj.in"], secret) is True

    def test_missing_annotation(self, caplog):
        assert domains_changed(["test.tazj.in"], _secret({})) is False
        assert "annotation missing" in caplog.text

    def test_unparseable_annotation(self):
        secret = _secret({"acme/certificate": "[not json"})
        assert domains_changed(["test.tazj.in"], secret) is False


# ---------------------------------------------------------------------------
# Annotation parsing and naming
# ---------------------------------------------------------------------------


class TestParseDomains:
    def test_single_domain(self):
        assert parse_domains("test.tazj.in") == ("test.tazj.in",)

    def test_surrounding_whitespace(self):
        assert parse_domains("  test.tazj.in\n") == ("test.tazj.in",)

    def test_json_array(self):
        assert parse_domains('["a.tazj.in", "b.tazj.in"]') == ("a.tazj.in", "b.tazj.in")

    def test_empty_array(self):
        with pytest.raises(CertificateError, match="No domains have been specified"):
            parse_domains("[]")

    def test_malformed_array(self):
        with pytest.raises(CertificateError, match="Malformed"):
            parse_domains('["a.tazj.in",')

    def test_non_string_entries(self):
        with pytest.raises(CertificateError, match="list of domain names"):
            parse_domains("[1, 2]")

    def test_duplicates_removed_in_order(self):
        annotation = '["b.tazj.in", "a.tazj.in", "b.tazj.in"]'
        assert parse_domains(annotation) == ("b.tazj.in", "a.tazj.in")

    @pytest.mark.parametrize("annotation", ["", "   ", "\n"])
    def test_blank_value(self, annotation):
        with pytest.raises(CertificateError, match="No domains have been specified"):
            parse_domains(annotation)

    def test_blank_entry_in_array(self):
        with pytest.raises(CertificateError, match="empty domain name"):
            parse_domains('["a.tazj.in", " "]')


class TestSecretNameFor:
    def test_derived_from_domain(self):
        assert secret_name_for(("test.tazj.in",)) == "test-tazj-in-tls"

    def test_override_wins(self):
        assert secret_name_for(("a.tazj.in", "b.tazj.in"), "shared-tls") == "shared-tls"

    def test_multiple_domains_need_override(self):
        with pytest.raises(CertificateError, match="must be specified"):
            secret_name_for(("a.tazj.in", "b.tazj.in"))


# ---------------------------------------------------------------------------
# Renewal policy
# ---------------------------------------------------------------------------


class TestRenewalPolicy:
    def test_new_certificate_when_secret_missing(self):
        policy, secrets = _policy(None)

        request = policy.prepare_request("web", {"acme/certificate": "test.tazj.in"}, TODAY)

        assert request.secret_name == "test-tazj-in-tls"
        assert request.domains == ("test.tazj.in",)
        assert request.renew is False
        assert request.kind == "new"
        secrets.get_secret.assert_called_once_with("default", "test-tazj-in-tls")

    def test_up_to_date_secret(self):
        secret = _secret(
            {"acme/expiryDate": "2026-05-01", "acme/certificate": '["test.tazj.in"]'},
        )
        policy, _ = _policy(secret)

        assert policy.prepare_request("web", {"acme/certificate": "test.tazj.in"}, TODAY) is None

    def test_expiring_secret_is_renewed(self):
        secret = _secret(
            {"acme/expiryDate": "2026-03-11", "acme/certificate": '["test.tazj.in"]'},
        )
        policy, _ = _policy(secret)

        request = policy.prepare_request("web", {"acme/certificate": "test.tazj.in"}, TODAY)

        assert request.renew is True
        assert request.kind == "renewal"

    def test_changed_domains_are_renewed(self):
        secret = _secret(
            {"acme/expiryDate": "2026-05-01", "acme/certificate": '["a.tazj.in"]'},
        )
        policy, secrets = _policy(secret)
        annotations = {
            "acme/certificate": '["a.tazj.in", "b.tazj.in"]',
            "acme/secretName": "shared-tls",
        }

        request = policy.prepare_request("web", annotations, TODAY)

        assert request.renew is True
        assert request.secret_name == "shared-tls"
        assert request.domains == ("a.tazj.in", "b.tazj.in")
        secrets.get_secret.assert_called_once_with("default", "shared-tls")

    def test_san_without_secret_name(self):
        policy, secrets = _policy(None)

        with pytest.raises(CertificateError):
            policy.prepare_request("web", {"acme/certificate": '["a.tazj.in", "b.tazj.in"]'})
        secrets.get_secret.assert_not_called()


# ---------------------------------------------------------------------------
# Secret store
# ---------------------------------------------------------------------------


class TestSecretStore:
    def test_annotations_from_certificate(self):
        annotations = certificate_annotations(_certificate(("a.tazj.in", "b.tazj.in")))
        assert annotations == {
            "acme/expiryDate": "2026-06-08",
            "acme/ca": "https://acme.test/directory",
            "acme/certificate": '["a.tazj.in", "b.tazj.in"]',
        }

    def test_insert_creates_secret(self):
        api = MagicMock()

        SecretStore(api).insert_certificate("default", "example-com-tls", _certificate())

        api.create_secret.assert_called_once_with(
            "default",
            "example-com-tls",
            {"certificate.pem": "bmV3"},
            annotations=certificate_annotations(_certificate()),
        )

    def test_update_replaces_data_and_keeps_foreign_annotations(self):
        api = MagicMock()
        api.read_secret.return_value = _secret(
            {"acme/expiryDate": "2026-03-11", "team": "platform"},
            name="example-com-tls",
        )

        SecretStore(api).update_certificate("default", "example-com-tls", _certificate())

        namespace, replaced = api.replace_secret.call_args.args
        assert namespace == "default"
        assert replaced.data == {"certificate.pem": "bmV3"}
        assert replaced.metadata.annotations["team"] == "platform"
        assert replaced.metadata.annotations["acme/expiryDate"] == "2026-06-08"

    def test_update_of_missing_secret(self):
        api = MagicMock()
        api.read_secret.return_value = None

        with pytest.raises(CertificateError, match="disappeared"):
            SecretStore(api).update_certificate("default", "example-com-tls", _certificate())
        api.replace_secret.assert_not_called()

    def test_get_secret_delegates(self):
        api = MagicMock()
        SecretStore(api).get_secret("default", "x")
        api.read_secret.assert_called_once_with("default", "x")
