#!/usr/bin/env python3
# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Upstream TLS (proxy-ssl) annotations.

Turns the `proxy-ssl-*` annotations of an ingress into a validated
`Config` describing how the proxy talks TLS to the backends:

    parser = Parser(resolver)
    config = parser.parse(ingress)

Only the secret annotation is mandatory. Every other annotation is
optional and falls back to a default when absent or invalid.
"""
import logging
import re
from typing import Dict, Literal, Optional

import pydantic
from lightkube.resources.networking_v1 import Ingress

from annotations import (
    AnnotationFields,
    Risk,
    check_annotations,
    get_annotation_with_prefix,
    get_optional_string_annotation,
    get_string_annotation,
    ingress_namespace,
)
from resolver import AuthSSLCert, ResolverError, SecretResolver, split_meta_namespace_key
from settings import ParserSettings

logger = logging.getLogger(__name__)

PROXY_SSL_SECRET = "proxy-ssl-secret"
PROXY_SSL_CIPHERS = "proxy-ssl-ciphers"
PROXY_SSL_PROTOCOLS = "proxy-ssl-protocols"
PROXY_SSL_NAME = "proxy-ssl-name"
PROXY_SSL_SERVER_NAME = "proxy-ssl-server-name"
PROXY_SSL_SESSION_REUSE = "proxy-ssl-session-reuse"
PROXY_SSL_VERIFY = "proxy-ssl-verify"
PROXY_SSL_VERIFY_DEPTH = "proxy-ssl-verify-depth"

# in canonical (ascending) order
SUPPORTED_PROTOCOLS = ("SSLv2", "SSLv3", "TLSv1", "TLSv1.1", "TLSv1.2", "TLSv1.3")

DEFAULT_PROXY_SSL_PROTOCOLS = "TLSv1.2 TLSv1.3"
DEFAULT_PROXY_SSL_VERIFY = "off"
DEFAULT_PROXY_SSL_VERIFY_DEPTH = 1
DEFAULT_PROXY_SSL_SERVER_NAME = "off"
DEFAULT_PROXY_SSL_SESSION_REUSE = "on"

OnOff = Literal["on", "off"]

_ON_OFF_PATTERN = re.compile(r"^(on|off)$")
_PROTOCOL = "|".join(re.escape(p) for p in SUPPORTED_PROTOCOLS)
_PROTOCOLS_PATTERN = re.compile(rf"^\s*({_PROTOCOL})(\s+({_PROTOCOL}))*\s*$")
_INT_PATTERN = re.compile(r"^[+-]?[0-9]+$")

PROXY_SSL_ANNOTATIONS: Dict[str, AnnotationFields] = {
    PROXY_SSL_SECRET: AnnotationFields(
        validator=re.compile(r"^[a-z0-9][-a-z0-9.]*/[a-z0-9][-a-z0-9.]*$"),
        risk=Risk.medium,
        documentation="Secret (namespace/name) holding the client certificate and CA used "
        "to authenticate against the backend.",
    ),
    PROXY_SSL_CIPHERS: AnnotationFields(
        validator=re.compile(r"^[A-Za-z0-9+:_\-!@=]*$"),
        risk=Risk.medium,
        documentation="Ciphers enabled for requests to the backend, in OpenSSL format.",
    ),
    PROXY_SSL_PROTOCOLS: AnnotationFields(
        validator=_PROTOCOLS_PATTERN,
        risk=Risk.low,
        documentation="Space-separated TLS protocols enabled for requests to the backend.",
    ),
    PROXY_SSL_NAME: AnnotationFields(
        validator=re.compile(r"^[\w.\-$*]+$"),
        risk=Risk.high,
        documentation="Server name sent (SNI) and verified against the backend certificate.",
    ),
    PROXY_SSL_SERVER_NAME: AnnotationFields(
        validator=_ON_OFF_PATTERN,
        risk=Risk.low,
        documentation="Whether to pass the server name through SNI to the backend.",
    ),
    PROXY_SSL_SESSION_REUSE: AnnotationFields(
        validator=_ON_OFF_PATTERN,
        risk=Risk.low,
        documentation="Whether TLS sessions to the backend can be reused.",
    ),
    PROXY_SSL_VERIFY: AnnotationFields(
        validator=_ON_OFF_PATTERN,
        risk=Risk.low,
        documentation="Whether the backend certificate is verified.",
    ),
    PROXY_SSL_VERIFY_DEPTH: AnnotationFields(
        validator=re.compile(r"^[0-9]+$"),
        risk=Risk.low,
        documentation="Maximum depth of the backend certificate chain verification.",
    ),
}


class LocationDeniedError(Exception):
    """Raised when the ingress cannot be served with the requested upstream TLS settings."""


class Config(pydantic.BaseModel):
    """Upstream TLS configuration of an ingress."""

    model_config = pydantic.ConfigDict(frozen=True)

    auth_ssl_cert: AuthSSLCert = AuthSSLCert()
    ciphers: str = ""
    protocols: str = ""
    verify: OnOff = "off"
    verify_depth: pydantic.NonNegativeInt = 0
    proxy_ssl_name: str = ""
    proxy_ssl_server_name: OnOff = "off"
    session_reuse: OnOff = DEFAULT_PROXY_SSL_SESSION_REUSE

    def equal(self, other: Optional["Config"]) -> bool:
        """Whether two configurations would make the proxy behave the same."""
        if not isinstance(other, Config):
            return False
        if self is other:
            return True
        return (
            self.auth_ssl_cert.equal(other.auth_ssl_cert)
            and self.ciphers == other.ciphers
            and self.protocols == other.protocols
            and self.verify == other.verify
            and self.verify_depth == other.verify_depth
            and self.proxy_ssl_server_name == other.proxy_ssl_server_name
        )

    def __eq__(self, other):
        if not isinstance(other, Config):
            return NotImplemented
        return self.equal(other)

    def __hash__(self):
        return hash(
            (
                self.auth_ssl_cert.secret,
                self.ciphers,
                self.protocols,
                self.verify,
                self.verify_depth,
                self.proxy_ssl_server_name,
            )
        )


def normalize_protocols(value: Optional[str]) -> str:
    """Keep the supported protocols only, in canonical order.

    Repeated protocols are kept once. Falls back to the default protocols if
    none is left.
    """
    tokens = set((value or "").split())
    protocols = [p for p in SUPPORTED_PROTOCOLS if p in tokens]
    if not protocols:
        return DEFAULT_PROXY_SSL_PROTOCOLS
    return " ".join(protocols)


def normalize_on_off(value: Optional[str], default: OnOff) -> OnOff:
    """Return `value` if it is exactly "on" or "off", else `default`."""
    if value == "on":
        return "on"
    if value == "off":
        return "off"
    return default


def _parse_verify_depth(value: Optional[str]) -> Optional[int]:
    if value is None or not _INT_PATTERN.match(value.strip()):
        return None
    depth = int(value.strip())
    if depth < 0:
        return None
    return depth


def normalize_verify_depth(value: Optional[str]) -> int:
    """Return `value` as a non-negative integer, else the default depth."""
    depth = _parse_verify_depth(value)
    if depth is None:
        return DEFAULT_PROXY_SSL_VERIFY_DEPTH
    return depth


class Parser:
    """Parser for the proxy-ssl annotations of an ingress."""

    def __init__(self, resolver: SecretResolver, settings: Optional[ParserSettings] = None):
        self.resolver = resolver
        self.settings = settings or ParserSettings()

    @property
    def _prefix(self) -> str:
        return self.settings.annotations_prefix

    def _key(self, name: str) -> str:
        return get_annotation_with_prefix(name, self._prefix)

    def _check_namespace(self, reference: str, ingress: Ingress):
        if self.settings.allow_cross_namespace_resources:
            return
        try:
            namespace, _ = split_meta_namespace_key(reference)
        except ResolverError as e:
            raise LocationDeniedError(str(e)) from e
        # references without a namespace are left to the resolver
        if namespace and namespace != ingress_namespace(ingress):
            raise LocationDeniedError("cross namespace secrets are not supported")

    def _auth_ssl_cert(self, ingress: Ingress) -> AuthSSLCert:
        reference = get_string_annotation(PROXY_SSL_SECRET, ingress, self._prefix)
        self._check_namespace(reference, ingress)
        try:
            cert = self.resolver.get_auth_certificate(reference)
        except ResolverError as e:
            raise LocationDeniedError(f"error obtaining certificate: {e}") from e
        logger.debug("resolved proxy-ssl secret %s", reference)
        return cert

    def _on_off(self, name: str, ingress: Ingress, default: OnOff) -> OnOff:
        raw = get_optional_string_annotation(name, ingress, self._prefix)
        value = normalize_on_off(raw, default)
        if raw is not None and raw != value:
            logger.warning(
                "invalid value %r passed to %s, defaulting to %s", raw, self._key(name), default
            )
        return value

    def _protocols(self, ingress: Ingress) -> str:
        raw = get_optional_string_annotation(PROXY_SSL_PROTOCOLS, ingress, self._prefix)
        value = normalize_protocols(raw)
        if raw is not None and not set(raw.split()).intersection(SUPPORTED_PROTOCOLS):
            logger.warning(
                "no supported protocol in %r passed to %s, defaulting to %s",
                raw,
                self._key(PROXY_SSL_PROTOCOLS),
                DEFAULT_PROXY_SSL_PROTOCOLS,
            )
        return value

    def _verify_depth(self, ingress: Ingress) -> int:
        raw = get_optional_string_annotation(PROXY_SSL_VERIFY_DEPTH, ingress, self._prefix)
        if raw is not None and _parse_verify_depth(raw) is None:
            logger.warning(
                "invalid value %r passed to %s, defaulting to %s",
                raw,
                self._key(PROXY_SSL_VERIFY_DEPTH),
                DEFAULT_PROXY_SSL_VERIFY_DEPTH,
            )
        return normalize_verify_depth(raw)

    def parse(self, ingress: Ingress) -> Config:
        """Parse the proxy-ssl annotations of an ingress.

        Raises MissingAnnotationError if the ingress has no proxy-ssl secret,
        and LocationDeniedError if the secret cannot be used.
        """
        cert = self._auth_ssl_cert(ingress)

        return Config(
            auth_ssl_cert=cert,
            ciphers=get_optional_string_annotation(PROXY_SSL_CIPHERS, ingress, self._prefix)
            or "",
            protocols=self._protocols(ingress),
            verify=self._on_off(PROXY_SSL_VERIFY, ingress, DEFAULT_PROXY_SSL_VERIFY),
            verify_depth=self._verify_depth(ingress),
            proxy_ssl_name=get_optional_string_annotation(PROXY_SSL_NAME, ingress, self._prefix)
            or "",
            proxy_ssl_server_name=self._on_off(
                PROXY_SSL_SERVER_NAME, ingress, DEFAULT_PROXY_SSL_SERVER_NAME
            ),
            session_reuse=self._on_off(
                PROXY_SSL_SESSION_REUSE, ingress, DEFAULT_PROXY_SSL_SESSION_REUSE
            ),
        )

    def validate(self, ingress: Ingress):
        """Strictly check the proxy-ssl annotations present on an ingress.

        Unlike `parse`, this rejects values that would be replaced by a default,
        and annotations above the configured risk level.
        """
        check_annotations(
            ingress,
            PROXY_SSL_ANNOTATIONS,
            self.settings.annotations_risk_level,
            self._prefix,
        )

    @staticmethod
    def documentation() -> Dict[str, AnnotationFields]:
        """Metadata of the proxy-ssl annotations, keyed by bare name."""
        return dict(PROXY_SSL_ANNOTATIONS)
