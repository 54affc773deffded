#!/usr/bin/env python3
# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
"""Controller-wide settings for the annotation parsers."""

import logging
from typing import Any, Dict, Mapping, Optional

import pydantic
import yaml
from lightkube.resources.core_v1 import ConfigMap

from annotations import DEFAULT_ANNOTATIONS_PREFIX, Risk, is_valid_prefix

logger = logging.getLogger(__name__)

# config map key -> settings field
_KEYS = {
    "annotations-prefix": "annotations_prefix",
    "allow-cross-namespace-resources": "allow_cross_namespace_resources",
    "annotations-risk-level": "annotations_risk_level",
}


class SettingsError(Exception):
    """Raised when the controller settings cannot be loaded."""


class ParserSettings(pydantic.BaseModel):
    """Settings shared by every annotation parser."""

    model_config = pydantic.ConfigDict(frozen=True)

    annotations_prefix: str = DEFAULT_ANNOTATIONS_PREFIX
    allow_cross_namespace_resources: bool = True
    annotations_risk_level: Risk = Risk.critical

    @pydantic.field_validator("annotations_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not is_valid_prefix(value):
            raise ValueError(f"{value!r} is not a valid annotation prefix")
        return value

    @pydantic.field_validator("allow_cross_namespace_resources", mode="before")
    @classmethod
    def _parse_bool(cls, value: Any) -> Any:
        # config map values are always strings
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered not in ("true", "false"):
                raise ValueError(f"expected 'true' or 'false', got {value!r}")
            return lowered == "true"
        return value

    @pydantic.field_validator("annotations_risk_level", mode="before")
    @classmethod
    def _parse_risk(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Risk.from_string(value)
        return value

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ParserSettings":
        """Build settings from controller-style dashed keys; unknown keys are ignored."""
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            field = _KEYS.get(key)
            if field is None:
                logger.debug("ignoring unknown setting %r", key)
                continue
            kwargs[field] = value

        try:
            return cls(**kwargs)
        except pydantic.ValidationError as e:
            raise SettingsError(f"invalid parser settings: {e}") from e

    @classmethod
    def from_config_map(cls, config_map: ConfigMap) -> "ParserSettings":
        """Build settings from the controller's config map."""
        return cls.from_mapping(config_map.data)

    @classmethod
    def from_yaml(cls, text: str) -> "ParserSettings":
        """Build settings from a yaml document holding a flat mapping."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SettingsError(f"could not parse settings: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise SettingsError(f"expected a mapping, got {type(data).__name__}")
        return cls.from_mapping(data)
