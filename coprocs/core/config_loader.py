"""Configuration loading and normalization.

The core classes take plain constructor parameters; this module only turns a
YAML file (or dict) into those parameters for the CLI and HTTP layers.

Schema (all sections optional):

    pool:
      size: 3
      handler: null            # module:function, default handler when null
      delay_s: 0.0
      ready_timeout_s: 10
    leases:
      max: 3
    pipeline:
      stages:
        - {name: gen, kind: generate, params: {count: 5, prefix: data}}
        - {name: up, kind: transform, params: {op: upper}}
        - {name: keep, kind: filter, params: {contains: ["3", "5"]}}
    timeouts:
      request_s: 30
      shutdown_s: 10
"""
from __future__ import annotations

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional
import yaml
from .errors import ConfigError

DEFAULT_CONFIG_NAME = "coprocs.yaml"
VALID_STAGE_KINDS = {"generate", "transform", "filter"}

DEFAULTS: Dict[str, Any] = {
    "pool": {"size": 3, "handler": None, "delay_s": 0.0, "ready_timeout_s": 10.0},
    "leases": {"max": 3},
    "pipeline": {
        "stages": [
            {"name": "generate", "kind": "generate", "params": {"count": 5, "prefix": "data"}},
            {"name": "transform", "kind": "transform", "params": {"op": "upper"}},
            {"name": "filter", "kind": "filter", "params": {"contains": ["3", "5"]}},
        ]
    },
    "timeouts": {"request_s": 30.0, "shutdown_s": 10.0},
}


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    cfg = copy.deepcopy(DEFAULTS)
    for section, val in data.items():
        if section not in cfg:
            raise ConfigError(f"Unknown config section: {section}")
        if not isinstance(val, dict):
            raise ConfigError(f"Section {section} must be a mapping")
        if section == "pipeline" and "stages" in val:
            cfg["pipeline"]["stages"] = val["stages"]
        else:
            cfg[section].update(val)
    return cfg


def _positive_number(cfg: Dict[str, Any], section: str, key: str, allow_zero: bool = False):
    v = cfg[section].get(key)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ConfigError(f"{section}.{key} must be a number, got {v!r}")
    if v < 0 or (v == 0 and not allow_zero):
        raise ConfigError(f"{section}.{key} must be {'>= 0' if allow_zero else '> 0'}, got {v}")


def _validate_stage_params(i: int, kind: Any, params: Dict[str, Any]):
    for key in ("count", "start"):
        v = params.get(key)
        if v is not None and (isinstance(v, bool) or not isinstance(v, int)):
            raise ConfigError(f"pipeline.stages[{i}].params.{key} must be an integer, got {v!r}")
    if kind == "filter" and params.get("pattern") is not None:
        try:
            re.compile(str(params["pattern"]))
        except re.error as e:
            raise ConfigError(f"pipeline.stages[{i}].params.pattern: invalid regex: {e}") from e


def _validate_stages(stages: Any) -> List[Dict[str, Any]]:
    if not isinstance(stages, list) or not stages:
        raise ConfigError("pipeline.stages must be a non-empty list")
    out = []
    for i, st in enumerate(stages):
        if not isinstance(st, dict):
            raise ConfigError(f"pipeline.stages[{i}] must be a mapping")
        kind = st.get("kind")
        if kind not in VALID_STAGE_KINDS and not st.get("entrypoint"):
            raise ConfigError(f"pipeline.stages[{i}]: invalid kind {kind!r}")
        params = st.get("params", {}) or {}
        if not isinstance(params, dict):
            raise ConfigError(f"pipeline.stages[{i}].params must be a mapping")
        _validate_stage_params(i, kind, params)
        out.append({"name": st.get("name") or f"{kind}{i}", "kind": kind, "params": params, "entrypoint": st.get("entrypoint")})
    if out[0]["kind"] != "generate" and not out[0]["entrypoint"]:
        raise ConfigError("first pipeline stage must be a generator")
    return out


def _validate(cfg: Dict[str, Any]):
    size = cfg["pool"]["size"]
    if isinstance(size, bool) or not isinstance(size, int) or size < 1:
        raise ConfigError(f"pool.size must be an integer >= 1, got {size!r}")
    handler = cfg["pool"]["handler"]
    if handler is not None and (not isinstance(handler, str) or ":" not in handler):
        raise ConfigError("pool.handler must be 'module:function'")
    _positive_number(cfg, "pool", "delay_s", allow_zero=True)
    _positive_number(cfg, "pool", "ready_timeout_s")
    mx = cfg["leases"]["max"]
    if isinstance(mx, bool) or not isinstance(mx, int) or mx < 0:
        raise ConfigError(f"leases.max must be an integer >= 0, got {mx!r}")
    _positive_number(cfg, "timeouts", "request_s")
    _positive_number(cfg, "timeouts", "shutdown_s")
    cfg["pipeline"]["stages"] = _validate_stages(cfg["pipeline"]["stages"])


def normalize_config(data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    cfg = _merge_defaults(data or {})
    _validate(cfg)
    return cfg


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load ``path``, else ``$COPROCS_CONFIG``, else ``./coprocs.yaml``, else defaults."""
    if path is None:
        env = os.getenv("COPROCS_CONFIG")
        if env:
            path = Path(env)
        elif (Path.cwd() / DEFAULT_CONFIG_NAME).exists():
            path = Path.cwd() / DEFAULT_CONFIG_NAME
    if path is None:
        return normalize_config({})
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    return normalize_config(_read_yaml(path))

__all__ = ["load_config", "normalize_config", "DEFAULTS", "ConfigError"]
