"""ACME account keypair persisted as a cluster secret.

The keypair lives in a fixed-name secret in the system namespace so the
controller keeps the same ACME account across restarts.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from acmekube.core.errors import ConfigurationError
from acmekube.core.types import SYSTEM_NAMESPACE

if TYPE_CHECKING:
    from acmekube.cluster.client import KubernetesApi

log = logging.getLogger(__name__)

KEYPAIR_SECRET_NAME = "letsencrypt-keypair"
KEYPAIR_FIELD = "keypair"
ACCOUNT_KEY_SIZE = 2048


def encode_private_key(key: rsa.RSAPrivateKey) -> str:
    """Serialize *key* as base64 of its unencrypted PEM form."""
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(pem).decode("ascii")


def decode_private_key(encoded: str) -> rsa.RSAPrivateKey:
    """Inverse of :func:`encode_private_key`.

    Raises
    ------
    ConfigurationError
        If the stored value is not a base64-encoded RSA private key.

    """
    try:
        pem = base64.b64decode(encoded, validate=True)
        key = serialization.load_pem_private_key(pem, password=None)
    except (binascii.Error, ValueError, TypeError) as exc:
        msg = f"Secret {SYSTEM_NAMESPACE}/{KEYPAIR_SECRET_NAME} holds an unreadable key: {exc}"
        raise ConfigurationError(msg) from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        msg = f"Secret {SYSTEM_NAMESPACE}/{KEYPAIR_SECRET_NAME} does not hold an RSA key"
        raise ConfigurationError(msg)
    return key


class AccountKeyStore:
    """Loads or creates the cluster-wide ACME account keypair."""

    def __init__(self, api: KubernetesApi) -> None:
        self._api = api

    def load_or_create(self) -> rsa.RSAPrivateKey:
        """Return the stored keypair, generating and storing one if absent."""
        key = self.load()
        if key is not None:
            log.info("Existing key pair loaded from cluster")
            return key

        log.info("No existing key pair, generating a new one")
        key = rsa.generate_private_key(public_exponent=65537, key_size=ACCOUNT_KEY_SIZE)
        self._api.create_secret(
            SYSTEM_NAMESPACE,
            KEYPAIR_SECRET_NAME,
            {KEYPAIR_FIELD: encode_private_key(key)},
        )
        log.info("New key pair stored in cluster")
        return key

    def load(self) -> rsa.RSAPrivateKey | None:
        secret = self._api.read_secret(SYSTEM_NAMESPACE, KEYPAIR_SECRET_NAME)
        if secret is None:
            return None
        encoded = (secret.data or {}).get(KEYPAIR_FIELD)
        if not encoded:
            msg = f"Secret {SYSTEM_NAMESPACE}/{KEYPAIR_SECRET_NAME} has no '{KEYPAIR_FIELD}' field"
            raise ConfigurationError(msg)
        return decode_private_key(encoded)
