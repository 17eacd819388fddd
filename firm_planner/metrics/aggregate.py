"""
Aggregation utilities (v1): compute metrics.csv and metrics_summary.csv.

Dependency policy: stdlib + numpy only.
"""
from __future__ import annotations
from typing import Any, Dict, List, Tuple
import glob
import os
import json
from pathlib import Path

import numpy as np


METRICS_COLUMNS_V1 = [
    "exp_id","mode","scenario_family","seed","trial_id",
    "status","solved_flag","reached_flag","stuck_flag",
    "recoveries","steps_executed","execution_cost",
    "planning_s","wallclock_s","num_vertices","num_edges","feedback_path_edges",
    "scenario_hash","trace_path",
]


def read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def list_trial_dirs(glob_pattern: str) -> List[str]:
    # Expand glob, include dirs that contain summary.json
    candidates = glob.glob(glob_pattern, recursive=True)
    out = []
    for p in candidates:
        if os.path.isdir(p) and os.path.exists(os.path.join(p, "summary.json")):
            out.append(p)
    return sorted(out)


def bootstrap_ci(x: np.ndarray, seed: int = 0, n_boot: int = 1000, alpha: float = 0.05) -> Tuple[float,float,float]:
    """
    Returns (mean, lo, hi) bootstrap CI for mean.
    Deterministic by seed.
    """
    x = np.asarray(x, dtype=np.float64)
    if x.size == 0:
        return float("nan"), float("nan"), float("nan")
    rng = np.random.default_rng(seed)
    n = x.size
    idx = rng.integers(0, n, size=(int(n_boot), n))
    means = x[idx].mean(axis=1)
    lo = float(np.quantile(means, alpha/2.0))
    hi = float(np.quantile(means, 1.0-alpha/2.0))
    return float(np.mean(x)), lo, hi


def _num(v: Any) -> float:
    return float(v) if v is not None else float("nan")


def aggregate_trials(trial_dirs: List[str]) -> List[Dict[str, Any]]:
    rows = []
    for d in trial_dirs:
        summary_p = os.path.join(d, "summary.json")
        meta_p = os.path.join(d, "run_meta.json")
        if not os.path.exists(summary_p) or not os.path.exists(meta_p):
            continue
        summary = read_json(summary_p)
        meta = read_json(meta_p)
        if summary.get("version") != "v1" or meta.get("version") != "v1":
            continue
        row = {k: None for k in METRICS_COLUMNS_V1}
        exp = meta.get("experiment", {}) or {}
        row["exp_id"] = exp.get("exp_id")
        row["mode"] = exp.get("mode")
        row["seed"] = exp.get("seed")
        row["trial_id"] = exp.get("trial_id")
        row["scenario_family"] = (meta.get("scenario_spec", {}) or {}).get("family")
        row["scenario_hash"] = meta.get("scenario_hash")
        row["trace_path"] = (meta.get("paths", {}) or {}).get("trace_csv")

        row["status"] = summary.get("status")
        for k in ["solved_flag", "reached_flag", "stuck_flag", "recoveries", "steps_executed",
                  "num_vertices", "num_edges", "feedback_path_edges"]:
            row[k] = int(summary.get(k, 0) or 0)
        for k in ["execution_cost", "planning_s", "wallclock_s"]:
            row[k] = summary.get(k)
        rows.append(row)
    return rows


def summarize(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Group by (exp_id, mode, scenario_family) and compute CI for key metrics.
    """
    def key(r):
        return (str(r["exp_id"]), str(r["mode"]), str(r["scenario_family"]))
    groups: Dict[Tuple, List[Dict[str, Any]]] = {}
    for r in rows:
        groups.setdefault(key(r), []).append(r)

    out = []
    for k, rs in sorted(groups.items(), key=lambda kv: kv[0]):
        exp_id, mode, family = k
        solved = np.array([float(r["solved_flag"]) for r in rs], dtype=np.float64)
        reached = np.array([float(r["reached_flag"]) for r in rs], dtype=np.float64)
        rec = np.array([float(r["recoveries"]) for r in rs], dtype=np.float64)
        cost = np.array([_num(r["execution_cost"]) for r in rs], dtype=np.float64)
        plan = np.array([_num(r["planning_s"]) for r in rs], dtype=np.float64)

        s_mean, s_lo, s_hi = bootstrap_ci(solved, seed=0)
        r_mean, r_lo, r_hi = bootstrap_ci(reached, seed=1)
        rec_mean, rec_lo, rec_hi = bootstrap_ci(rec, seed=2)
        # cost only over runs that reached the goal
        cost_ok = cost[np.isfinite(cost) & (reached > 0.5)]
        c_mean, c_lo, c_hi = bootstrap_ci(cost_ok, seed=3)
        plan_ok = plan[np.isfinite(plan)]
        p_mean, p_lo, p_hi = bootstrap_ci(plan_ok, seed=4)

        out.append({
            "exp_id": exp_id,
            "mode": mode,
            "scenario_family": family,
            "n": int(len(rs)),
            "solved_rate_mean": float(s_mean),
            "solved_rate_ci95_lo": float(s_lo),
            "solved_rate_ci95_hi": float(s_hi),
            "reached_rate_mean": float(r_mean),
            "reached_rate_ci95_lo": float(r_lo),
            "reached_rate_ci95_hi": float(r_hi),
            "recoveries_mean": float(rec_mean),
            "recoveries_ci95_lo": float(rec_lo),
            "recoveries_ci95_hi": float(rec_hi),
            "execution_cost_mean": float(c_mean),
            "execution_cost_ci95_lo": float(c_lo),
            "execution_cost_ci95_hi": float(c_hi),
            "planning_s_mean": float(p_mean),
            "planning_s_ci95_lo": float(p_lo),
            "planning_s_ci95_hi": float(p_hi),
        })
    return out


RECOVERY_COLUMNS_V1 = [
    "exp_id","mode","scenario_family","seed","trial_id",
    "recovery_index","inserted_vertex","stop_reason","reached_flag",
]


def recovery_events(trial_dirs: List[str]) -> List[Dict[str, Any]]:
    """One row per recovery vertex inserted during execution."""
    rows = []
    for d in trial_dirs:
        summary_p = os.path.join(d, "summary.json")
        meta_p = os.path.join(d, "run_meta.json")
        if not os.path.exists(summary_p) or not os.path.exists(meta_p):
            continue
        summary = read_json(summary_p)
        meta = read_json(meta_p)
        exp = meta.get("experiment", {}) or {}
        for i, vid in enumerate(summary.get("inserted_vertices", []) or []):
            rows.append({
                "exp_id": exp.get("exp_id"),
                "mode": exp.get("mode"),
                "scenario_family": (meta.get("scenario_spec", {}) or {}).get("family"),
                "seed": exp.get("seed"),
                "trial_id": exp.get("trial_id"),
                "recovery_index": int(i),
                "inserted_vertex": int(vid),
                "stop_reason": summary.get("stop_reason"),
                "reached_flag": int(summary.get("reached_flag", 0) or 0),
            })
    return rows
