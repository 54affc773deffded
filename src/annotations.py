#!/usr/bin/env python3
# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
"""Ingress annotation helpers."""

import dataclasses
import enum
import logging
import re
from typing import Dict, Optional

from lightkube.resources.networking_v1 import Ingress

logger = logging.getLogger(__name__)

DEFAULT_ANNOTATIONS_PREFIX = "nginx.ingress.kubernetes.io"

# Based on https://github.com/kubernetes/apimachinery/blob/v0.31.3/pkg/util/validation/validation.go#L204
# Regex for DNS1123 subdomains:
# - Starts with a lowercase letter or number ([a-z0-9])
# - May contain dashes (-), but not consecutively, and must not start or end with them
# - Segments can be separated by dots (.)
# - Example valid: "example.com", "my-app.io", "sub.domain"
# - Example invalid: "-example.com", "example..com", "example-.com"
DNS1123_SUBDOMAIN_PATTERN = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)


class AnnotationError(Exception):
    """Base class for errors raised by this module."""


class MissingAnnotationError(AnnotationError):
    """Raised when a required annotation is absent from the ingress."""

    def __init__(self, key: str):
        super().__init__(f"ingress rule without annotation {key!r}")
        self.key = key


class InvalidAnnotationError(AnnotationError):
    """Raised when an annotation value does not have the expected format."""

    def __init__(self, key: str, value: str):
        super().__init__(f"annotation {key!r} contains invalid value {value!r}")
        self.key = key
        self.value = value


class AnnotationRiskError(AnnotationError):
    """Raised when an annotation is riskier than the configured risk level allows."""


class Risk(enum.IntEnum):
    """Risk level of an annotation; higher is riskier."""

    low = 1
    medium = 2
    high = 3
    critical = 4

    @classmethod
    def from_string(cls, value: str) -> "Risk":
        """Parse a risk level name, case-insensitively."""
        try:
            return cls[value.strip().lower()]
        except KeyError:
            raise ValueError(f"unknown risk level: {value!r}") from None


@dataclasses.dataclass(frozen=True)
class AnnotationFields:
    """Metadata describing a single annotation."""

    validator: "re.Pattern[str]"
    risk: Risk
    documentation: str

    def is_valid(self, value: str) -> bool:
        """Whether the value is accepted by this annotation's validator."""
        return bool(self.validator.fullmatch(value))


def is_valid_prefix(prefix: str) -> bool:
    """Check if a value is usable as an annotation key prefix."""
    if not prefix or len(prefix) > 253:
        return False
    return bool(DNS1123_SUBDOMAIN_PATTERN.fullmatch(prefix))


def get_annotation_with_prefix(suffix: str, prefix: str = DEFAULT_ANNOTATIONS_PREFIX) -> str:
    """Return the fully qualified annotation key for a bare suffix."""
    return f"{prefix}/{suffix}"


def ingress_annotations(ingress: Ingress) -> Dict[str, str]:
    """Annotations of an ingress; empty if it has none."""
    metadata = ingress.metadata
    if metadata is None or not metadata.annotations:
        return {}
    return metadata.annotations


def ingress_namespace(ingress: Ingress) -> str:
    """Namespace of an ingress; empty if it is not set."""
    metadata = ingress.metadata
    if metadata is None:
        return ""
    return metadata.namespace or ""


def _lookup(name: str, ingress: Ingress, prefix: str) -> str:
    key = get_annotation_with_prefix(name, prefix)
    value = ingress_annotations(ingress).get(key)
    # an empty value is as good as no value
    if value is None or not value.strip():
        raise MissingAnnotationError(key)
    return value


def get_string_annotation(
    name: str, ingress: Ingress, prefix: str = DEFAULT_ANNOTATIONS_PREFIX
) -> str:
    """Return the value of the annotation `name`, raising if it is not set."""
    return _lookup(name, ingress, prefix)


def get_optional_string_annotation(
    name: str, ingress: Ingress, prefix: str = DEFAULT_ANNOTATIONS_PREFIX
) -> Optional[str]:
    """Like get_string_annotation, but return None if the annotation is not set."""
    try:
        return _lookup(name, ingress, prefix)
    except MissingAnnotationError as e:
        logger.debug("annotation %s not set", e.key)
        return None


def check_annotations(
    ingress: Ingress,
    fields: Dict[str, AnnotationFields],
    max_risk: Risk,
    prefix: str = DEFAULT_ANNOTATIONS_PREFIX,
):
    """Strictly check the annotations of an ingress against their metadata.

    Only annotations that are present on the ingress are checked.
    """
    annotations = ingress_annotations(ingress)
    for suffix, meta in fields.items():
        key = get_annotation_with_prefix(suffix, prefix)
        if key not in annotations:
            continue
        if meta.risk > max_risk:
            raise AnnotationRiskError(
                f"annotation {key!r} is too risky ({meta.risk.name}) for the "
                f"configured risk level ({max_risk.name})"
            )
        if not meta.is_valid(annotations[key]):
            raise InvalidAnnotationError(key, annotations[key])
