# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

from textwrap import dedent

import pytest
from lightkube.models.meta_v1 import ObjectMeta
from lightkube.resources.core_v1 import ConfigMap

from annotations import DEFAULT_ANNOTATIONS_PREFIX, Risk
from settings import ParserSettings, SettingsError


def test_defaults():
    settings = ParserSettings()
    assert settings.annotations_prefix == DEFAULT_ANNOTATIONS_PREFIX
    assert settings.allow_cross_namespace_resources is True
    assert settings.annotations_risk_level is Risk.critical


def test_from_config_map():
    config_map = ConfigMap(
        metadata=ObjectMeta(name="ingress-nginx-controller", namespace="ingress-nginx"),
        data={
            "annotations-prefix": "example.com",
            "allow-cross-namespace-resources": "false",
            "annotations-risk-level": "Medium",
            "use-forwarded-headers": "true",
        },
    )

    settings = ParserSettings.from_config_map(config_map)

    assert settings.annotations_prefix == "example.com"
    assert settings.allow_cross_namespace_resources is False
    assert settings.annotations_risk_level is Risk.medium


def test_from_empty_config_map():
    assert ParserSettings.from_config_map(ConfigMap()) == ParserSettings()


def test_from_yaml():
    settings = ParserSettings.from_yaml(
        dedent(
            """
            annotations-prefix: example.com
            allow-cross-namespace-resources: false
            annotations-risk-level: high
            """
        )
    )

    assert settings.annotations_prefix == "example.com"
    assert settings.allow_cross_namespace_resources is False
    assert settings.annotations_risk_level is Risk.high


def test_from_empty_yaml():
    assert ParserSettings.from_yaml("") == ParserSettings()


@pytest.mark.parametrize(
    "text",
    (
        "annotations-prefix: Not_A_Prefix",
        "allow-cross-namespace-resources: maybe",
        "annotations-risk-level: extreme",
        "- just\n- a list",
        "annotations-prefix: [unclosed",
    ),
)
def test_invalid_yaml(text):
    with pytest.raises(SettingsError):
        ParserSettings.from_yaml(text)
