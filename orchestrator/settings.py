"""YAML + environment configuration loading."""
import os
from dataclasses import fields
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

import yaml

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DEFAULT_CONFIG_PATH = os.path.join(BASE_DIR, "config", "defaults.yaml")

C = TypeVar("C")


def config_path() -> str:
    return os.getenv("STORY_CONFIG_PATH") or DEFAULT_CONFIG_PATH


def load_section(name: str, path: Optional[str] = None) -> Dict[str, Any]:
    path = path or config_path()
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        payload = yaml.safe_load(f) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"config file must contain a mapping: {path}")
    section = payload.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"config section '{name}' must be a mapping: {path}")
    return section


def build_config(
    cls: Type[C],
    section: Mapping[str, Any],
    env: Optional[Mapping[str, str]] = None,
) -> C:
    """Instantiate dataclass ``cls`` from defaults, then ``section``, then env.

    ``env`` maps field names to environment variable names. Values are coerced
    to the type of the field's default.
    """
    cfg = cls()
    for f in fields(cls):
        if f.name in section and section[f.name] is not None:
            setattr(cfg, f.name, _coerce(f.name, getattr(cfg, f.name), section[f.name]))
    for field_name, var in (env or {}).items():
        raw = os.getenv(var)
        if raw is None or raw.strip() == "":
            continue
        setattr(cfg, field_name, _coerce(field_name, getattr(cfg, field_name), raw.strip()))
    return cfg


def _coerce(name: str, default: Any, value: Any) -> Any:
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, (list, tuple)):
            if isinstance(value, str):
                items = [item.strip() for item in value.split(",")]
            else:
                items = [str(item).strip() for item in value]
            return [item for item in items if item]
        if isinstance(default, str) or default is None:
            return str(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid value for config option '{name}': {value!r}") from exc
    return value
