# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

import re

import pytest
from lightkube.resources.networking_v1 import Ingress

from annotations import (
    DEFAULT_ANNOTATIONS_PREFIX,
    AnnotationFields,
    AnnotationRiskError,
    InvalidAnnotationError,
    MissingAnnotationError,
    Risk,
    check_annotations,
    get_annotation_with_prefix,
    get_optional_string_annotation,
    get_string_annotation,
    ingress_annotations,
    ingress_namespace,
    is_valid_prefix,
)
from conftest import build_ingress

FIELDS = {
    "toggle": AnnotationFields(validator=re.compile(r"^(on|off)$"), risk=Risk.low, documentation=""),
    "snippet": AnnotationFields(validator=re.compile(r"^.*$"), risk=Risk.critical, documentation=""),
}


def test_annotation_with_prefix():
    assert get_annotation_with_prefix("proxy-ssl-secret") == (
        "nginx.ingress.kubernetes.io/proxy-ssl-secret"
    )
    assert get_annotation_with_prefix("foo", "example.com") == "example.com/foo"


@pytest.mark.parametrize(
    "prefix, valid",
    (
        (DEFAULT_ANNOTATIONS_PREFIX, True),
        ("example.com", True),
        ("my-app.io", True),
        ("", False),
        ("-example.com", False),
        ("example..com", False),
        ("Example.com", False),
        ("a" * 254, False),
        ("example.com\n", False),
    ),
)
def test_is_valid_prefix(prefix, valid):
    assert is_valid_prefix(prefix) is valid


def test_ingress_without_metadata():
    ingress = Ingress()
    assert ingress_annotations(ingress) == {}
    assert ingress_namespace(ingress) == ""
    with pytest.raises(MissingAnnotationError):
        get_string_annotation("foo", ingress)


def test_get_string_annotation():
    key = get_annotation_with_prefix("foo")
    ingress = build_ingress({key: "bar", get_annotation_with_prefix("empty"): ""})

    assert get_string_annotation("foo", ingress) == "bar"
    with pytest.raises(MissingAnnotationError) as exc_info:
        get_string_annotation("empty", ingress)
    assert exc_info.value.key == get_annotation_with_prefix("empty")
    with pytest.raises(MissingAnnotationError):
        get_string_annotation("missing", ingress)


def test_get_optional_string_annotation():
    ingress = build_ingress({get_annotation_with_prefix("foo"): "bar"})

    assert get_optional_string_annotation("foo", ingress) == "bar"
    assert get_optional_string_annotation("missing", ingress) is None
    assert get_optional_string_annotation("foo", ingress, "example.com") is None


def test_risk_ordering():
    assert Risk.low < Risk.medium < Risk.high < Risk.critical
    assert Risk.from_string(" High ") is Risk.high
    with pytest.raises(ValueError):
        Risk.from_string("extreme")


def test_check_annotations_only_checks_present_annotations():
    ingress = build_ingress({get_annotation_with_prefix("toggle"): "on"})
    check_annotations(ingress, FIELDS, Risk.low)


def test_check_annotations_rejects_invalid_values():
    ingress = build_ingress({get_annotation_with_prefix("toggle"): "maybe"})
    with pytest.raises(InvalidAnnotationError) as exc_info:
        check_annotations(ingress, FIELDS, Risk.critical)
    assert exc_info.value.value == "maybe"


def test_check_annotations_rejects_trailing_newline():
    ingress = build_ingress({get_annotation_with_prefix("toggle"): "on\n"})
    with pytest.raises(InvalidAnnotationError):
        check_annotations(ingress, FIELDS, Risk.critical)


def test_check_annotations_rejects_risky_annotations():
    ingress = build_ingress({get_annotation_with_prefix("snippet"): "anything"})
    with pytest.raises(AnnotationRiskError):
        check_annotations(ingress, FIELDS, Risk.high)
    check_annotations(ingress, FIELDS, Risk.critical)
