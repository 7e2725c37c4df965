"""
Config loader & resolver

- load_yaml(path): loads YAML into dict (requires PyYAML)
- resolve_config(path, overrides_json): loads, applies optional JSON overrides
  and fills the defaults of the `run`, `analysis` and `logging` sections
"""
from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULTS: Dict[str, Any] = {
    "run": {"output_dir": "outputs"},
    "analysis": {
        "data": None,
        "tree": None,
        "species_column": None,
        "cor_fun": "pagel",
        "order": None,
        "parallel": None,
        "na_rm": True,
        "method": "REML",
        "cut_off": 2.0,
        "average_method": "conditional",
    },
    "models": {},
    "common": [],
    "logging": {"level": "INFO", "to_file": False, "to_json": False, "dir": "logs"},
}


def load_yaml(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8")) or {}


def deep_merge(a: Dict, b: Dict) -> Dict:
    """Recursively merge dict b into a (returns a new dict)."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def resolve_config(path: str | Path, overrides_json: Optional[str] = None) -> Dict[str, Any]:
    cfg = deep_merge(copy.deepcopy(DEFAULTS), load_yaml(path))
    if overrides_json:
        # e.g. '{"analysis": {"cor_fun": "brownian"}}'
        cfg = deep_merge(cfg, json.loads(overrides_json))
    # relative data/tree paths are resolved against the config file's folder
    base = Path(path).resolve().parent
    for key in ("data", "tree"):
        value = cfg["analysis"].get(key)
        if value and not Path(value).is_absolute():
            cfg["analysis"][key] = str((base / value).as_posix())
    return cfg
