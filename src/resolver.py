#!/usr/bin/env python3
# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
"""Secret resolution for upstream TLS client certificates."""

import base64
import binascii
import hashlib
import logging
import threading
from typing import Dict, Optional, Protocol, Tuple

import pydantic
from lightkube.resources.core_v1 import Secret

logger = logging.getLogger(__name__)

DEFAULT_SSL_DIRECTORY = "/etc/ingress-controller/ssl"
CA_CERT_KEY = "ca.crt"
CA_CRL_KEY = "ca.crl"


class ResolverError(Exception):
    """Base class for errors raised by secret resolvers."""


class InvalidSecretReferenceError(ResolverError):
    """Raised when a secret reference is not of the form `namespace/name`."""


class SecretNotFoundError(ResolverError):
    """Raised when a secret reference does not match any known secret."""


class InvalidSecretError(ResolverError):
    """Raised when a secret does not hold a usable CA certificate."""


class AuthSSLCert(pydantic.BaseModel):
    """A CA bundle loaded from a secret, as seen by the proxy.

    Two certificates are equal if they were loaded from the same secret.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    secret: str = ""
    ca_file_name: str = ""
    ca_sha: str = ""
    crl_file_name: str = ""
    crl_sha: str = ""

    def equal(self, other: Optional["AuthSSLCert"]) -> bool:
        if not isinstance(other, AuthSSLCert):
            return False
        return self.secret == other.secret

    def __eq__(self, other):
        if not isinstance(other, AuthSSLCert):
            return NotImplemented
        return self.equal(other)

    def __hash__(self):
        return hash(self.secret)


class SecretResolver(Protocol):
    """Anything that can turn a secret reference into a loaded certificate."""

    def get_auth_certificate(self, name: str) -> AuthSSLCert:
        """Return the certificate stored in the secret `namespace/name`."""
        ...  # pragma: no cover


def split_meta_namespace_key(key: str) -> Tuple[str, str]:
    """Split a `namespace/name` key into its parts.

    A key without a slash has an empty namespace.
    """
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise InvalidSecretReferenceError(f"unexpected key format: {key!r}")


def _decode(secret_ref: str, key: str, data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSecretError(f"secret {secret_ref} has a malformed {key!r}") from e


class SecretStoreResolver:
    """In-memory secret resolver fed with Kubernetes secrets.

    Secrets are converted to certificates when added; lookups never touch
    the cluster.
    """

    def __init__(self, ssl_directory: str = DEFAULT_SSL_DIRECTORY):
        self.ssl_directory = ssl_directory.rstrip("/")
        self._certs: Dict[str, AuthSSLCert] = {}
        self._lock = threading.Lock()

    def _load(self, namespace: str, name: str, data: Dict[str, str]) -> AuthSSLCert:
        ref = f"{namespace}/{name}"
        if CA_CERT_KEY not in data:
            raise InvalidSecretError(f"secret {ref} contains no {CA_CERT_KEY!r} keypair")

        ca = _decode(ref, CA_CERT_KEY, data[CA_CERT_KEY])
        if not ca.strip():
            raise InvalidSecretError(f"secret {ref} has an empty {CA_CERT_KEY!r}")

        crl_file_name = crl_sha = ""
        if CA_CRL_KEY in data:
            crl = _decode(ref, CA_CRL_KEY, data[CA_CRL_KEY])
            crl_file_name = f"{self.ssl_directory}/crl-{namespace}-{name}.crl"
            crl_sha = hashlib.sha1(crl).hexdigest()

        return AuthSSLCert(
            secret=ref,
            ca_file_name=f"{self.ssl_directory}/ca-{namespace}-{name}.pem",
            ca_sha=hashlib.sha1(ca).hexdigest(),
            crl_file_name=crl_file_name,
            crl_sha=crl_sha,
        )

    def add_secret(self, secret: Secret) -> AuthSSLCert:
        """Load the CA bundle held by a secret, replacing any previous version."""
        metadata = secret.metadata
        if metadata is None or not metadata.name or not metadata.namespace:
            raise InvalidSecretError("secret must have both a name and a namespace")

        cert = self._load(metadata.namespace, metadata.name, secret.data or {})
        with self._lock:
            self._certs[cert.secret] = cert
        logger.debug("loaded CA from secret %s (sha1 %s)", cert.secret, cert.ca_sha)
        return cert

    def remove_secret(self, name: str):
        """Forget a secret; unknown references are ignored."""
        with self._lock:
            self._certs.pop(name, None)

    def get_auth_certificate(self, name: str) -> AuthSSLCert:
        namespace, secret_name = split_meta_namespace_key(name)
        if not namespace or not secret_name:
            raise InvalidSecretReferenceError(
                f"secret reference {name!r} is not of the form namespace/name"
            )
        with self._lock:
            cert = self._certs.get(name)
        if cert is None:
            raise SecretNotFoundError(f"there is no secret with name {name}")
        return cert
