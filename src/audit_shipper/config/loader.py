"""Shipper configuration loading.

A config file is YAML.  String values may reference the environment as
``${VAR}`` or ``${VAR:-fallback}``; references are expanded after parsing,
then the file is layered over the packaged ``defaults.yaml`` and validated.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from audit_shipper.config.models import ShipperConfig

DEFAULTS_FILE = Path(__file__).with_name("defaults.yaml")

# ${NAME} or ${NAME:-fallback}; "\}" escapes a brace inside the fallback
_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>(?:[^}\\]|\\.)*))?}")


def _expand(match: re.Match[str]) -> str:
    name, fallback = match.group("name", "fallback")
    if name in os.environ:
        return os.environ[name]
    if fallback is None:
        msg = f"Environment variable '{name}' is not set and no default provided"
        raise ValueError(msg)
    return fallback.replace("\\}", "}")


def resolve_env_vars(data: Any) -> Any:
    """Expand environment references in every string nested in *data*."""
    if isinstance(data, str):
        return _ENV_REF.sub(_expand, data)
    if isinstance(data, list):
        return [resolve_env_vars(v) for v in data]
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    return data


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        msg = f"Failed to parse YAML in {path}{where}: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {path}, got {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], data)


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a config file and expand its environment references."""
    p = Path(path)
    if not p.is_file():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    return cast(dict[str, Any], resolve_env_vars(_read_mapping(p)))


def load_defaults() -> dict[str, Any]:
    """Return the packaged default settings."""
    return _read_mapping(DEFAULTS_FILE)


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Layer *overrides* on *base*: nested mappings merge, anything else replaces.

    Neither argument is modified.
    """
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = merge_configs(current, value)
        merged[key] = value
    return merged


def build_shipper_config(overrides: dict[str, Any]) -> ShipperConfig:
    """Validate *overrides* layered over the packaged defaults."""
    return ShipperConfig.model_validate(merge_configs(load_defaults(), overrides))


def load_shipper_config(path: str | Path) -> ShipperConfig:
    """Load, expand and validate a shipper config file."""
    overrides = load_yaml(path)
    try:
        return build_shipper_config(overrides)
    except ValidationError as exc:
        msg = f"Invalid shipper config ({path}):\n{exc}"
        raise ValueError(msg) from exc
