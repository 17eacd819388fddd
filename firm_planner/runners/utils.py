"""
firm_planner.runners.utils

Runner utility surface used by run_trial.py and run_experiment.py.

Notes
- Configs are JSON-style YAML (valid JSON); parse with stdlib json (no PyYAML dependency).
- Provides CSV/JSON writers used by run_trial.
"""

from __future__ import annotations

import csv
import hashlib
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


# Trace CSV columns (v1 contract; exact order)
TRACE_COLUMNS_V1 = [
    "step",
    "mode",
    "vertex",
    "edge",
    "target",
    "x",
    "y",
    "true_x",
    "true_y",
    "cov_trace",
    "edge_cost",
    "primitive_steps",
    "success",
    "recovery",
    "inserted_vertex",
    "cost_to_go",
    "kidnapped",
]

EXECUTION_MODES = ("standard", "rollout")
CONNECTION_STRATEGIES = ("k_nearest", "k_star", "radius")


class ValidationError(Exception):
    pass


def exit_with(code: int, msg: str) -> None:
    sys.stderr.write(str(msg).rstrip() + "\n")
    raise SystemExit(int(code))


def ensure_dir(path: os.PathLike | str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def now_timestamp_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def write_json(path: str, obj: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(obj, indent=2), encoding="utf-8")


def load_yaml(path: str) -> Dict[str, Any]:
    """
    Load a JSON-compatible YAML config. Planner configs are written in JSON syntax.
    """
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if text.startswith("\ufeff"):
        text = text.lstrip("\ufeff")
    try:
        cfg = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Config parse error (expected JSON-style YAML). File={path}. {e}") from e
    if isinstance(cfg, dict):
        cfg["__config_path__"] = str(p)
    return cfg


def _validate_common(cfg: Dict[str, Any], ctx: str) -> None:
    if not isinstance(cfg, dict):
        raise ValidationError(f"{ctx}: config must be a dict")
    for k in ["version", "planner", "execution", "experiment"]:
        if k not in cfg:
            raise ValidationError(f"{ctx}: missing required key '{k}'")
    if str(cfg.get("version")) != "v1":
        raise ValidationError(f"{ctx}: version must be 'v1'")
    for k in ["planner", "execution", "experiment"]:
        if not isinstance(cfg[k], dict):
            raise ValidationError(f"{ctx}:{k} must be a dict")
    if "controller" in cfg and not isinstance(cfg["controller"], dict):
        raise ValidationError(f"{ctx}:controller must be a dict")

    planner = cfg["planner"]
    strat = planner.get("connection_strategy", "k_nearest")
    if strat not in CONNECTION_STRATEGIES:
        raise ValidationError(f"{ctx}:planner.connection_strategy '{strat}' not in {list(CONNECTION_STRATEGIES)}")
    if int(planner.get("num_particles", 1)) < 1:
        raise ValidationError(f"{ctx}:planner.num_particles must be >= 1")
    if int(planner.get("max_nearest_neighbors", 1)) < 1:
        raise ValidationError(f"{ctx}:planner.max_nearest_neighbors must be >= 1")
    if int(planner.get("radius_max_neighbors", 0)) < 0:
        raise ValidationError(f"{ctx}:planner.radius_max_neighbors must be >= 0")

    execution = cfg["execution"]
    if "mode" in execution and execution["mode"] not in EXECUTION_MODES:
        raise ValidationError(f"{ctx}:execution.mode '{execution['mode']}' not in {list(EXECUTION_MODES)}")
    if int(execution.get("max_execution_steps", 1)) < 1:
        raise ValidationError(f"{ctx}:execution.max_execution_steps must be >= 1")


def validate_trial_config(cfg: Dict[str, Any], ctx: str = "trial_config") -> None:
    _validate_common(cfg, ctx)
    exp = cfg["experiment"]
    for k in ["exp_id", "seed", "scenario_spec"]:
        if k not in exp:
            raise ValidationError(f"{ctx}:experiment: missing required key '{k}'")
    if not isinstance(exp["scenario_spec"], dict):
        raise ValidationError(f"{ctx}:experiment.scenario_spec must be a dict")
    if float(exp.get("planning_time_s", 1.0)) <= 0.0:
        raise ValidationError(f"{ctx}:experiment.planning_time_s must be > 0")
    kid = exp.get("kidnap")
    if kid is not None:
        if not isinstance(kid, dict) or "step" not in kid or "state" not in kid:
            raise ValidationError(f"{ctx}:experiment.kidnap must be a dict with 'step' and 'state'")


def validate_experiment_config(cfg: Dict[str, Any], ctx: str = "experiment_config", exp_cli: Optional[str] = None) -> None:
    _validate_common(cfg, ctx)
    exp = cfg["experiment"]
    exp_id = exp.get("exp_id", None)
    if exp_id is None:
        raise ValidationError(f"{ctx}:experiment: missing required key 'exp_id'")
    if exp_cli is not None and str(exp_cli) != str(exp_id):
        raise ValidationError(f"{ctx}:experiment.exp_id='{exp_id}' must match CLI --exp '{exp_cli}'")
    for k in ["trials_per_condition", "modes", "scenario_families", "seed0"]:
        if k not in exp:
            raise ValidationError(f"{ctx}:experiment: missing required key '{k}'")
    if not isinstance(exp["modes"], list) or len(exp["modes"]) == 0:
        raise ValidationError(f"{ctx}:experiment.modes must be a non-empty list")
    for m in exp["modes"]:
        if m not in EXECUTION_MODES:
            raise ValidationError(f"{ctx}:experiment.modes: unknown mode '{m}'")
    if not isinstance(exp["scenario_families"], list) or len(exp["scenario_families"]) == 0:
        raise ValidationError(f"{ctx}:experiment.scenario_families must be a non-empty list")


def stable_hash_from_spec(spec: Dict[str, Any]) -> str:
    s = json.dumps(spec, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(s.encode("utf-8")).hexdigest()[:16]


def write_trace_csv(path: str, *args) -> None:
    """
    trace.csv writer.

    Supported call signatures:
      1) write_trace_csv(path, rows)
      2) write_trace_csv(path, columns, rows)

    If columns are not provided, uses TRACE_COLUMNS_V1.
    Each row may be a dict (preferred) or a sequence aligned to columns.
    """
    if len(args) == 1:
        columns = TRACE_COLUMNS_V1
        rows = args[0]
    elif len(args) == 2:
        columns = args[0]
        rows = args[1]
    else:
        raise TypeError("write_trace_csv(path, rows) or write_trace_csv(path, columns, rows)")

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    with p.open("w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(list(columns))
        for r in rows:
            if isinstance(r, dict):
                w.writerow([r.get(c, "") for c in columns])
            else:
                # assume already ordered
                w.writerow(list(r))


def build_trial_cfg(
    exp_cfg: Dict[str, Any],
    exp_id: str,
    mode: str,
    seed: int,
    scenario_spec: Dict[str, Any],
    trial_id: str,
    extra_exp: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    execution = dict(exp_cfg.get("execution", {}) or {})
    execution["mode"] = str(mode)
    execution["seed"] = int(seed) + 1
    planner = dict(exp_cfg.get("planner", {}) or {})
    planner["seed"] = int(seed)

    cfg: Dict[str, Any] = {
        "version": "v1",
        "planner": planner,
        "controller": dict(exp_cfg.get("controller", {}) or {}),
        "execution": execution,
        "experiment": {
            "exp_id": str(exp_id),
            "seed": int(seed),
            "trial_id": str(trial_id),
            "scenario_spec": scenario_spec,
            "scenario_hash": stable_hash_from_spec(scenario_spec),
            "planning_time_s": float((exp_cfg.get("experiment", {}) or {}).get("planning_time_s", 2.0)),
            "config_path": str(exp_cfg.get("__config_path__", "")) if isinstance(exp_cfg, dict) else "",
        },
    }
    cfg["experiment"].update(dict(extra_exp or {}))
    return cfg
