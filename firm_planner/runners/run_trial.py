"""
Run a single trial (v1): build the roadmap, solve, execute, write outputs.

CLI contract:
  python -m firm_planner.runners.run_trial --config <path> --out <dir> [--force]

Outputs (in --out):
  trace.csv      one row per executed controller (TRACE_COLUMNS_V1)
  summary.json   status + execution outcome
  run_meta.json  config echo, scenario hash, paths
  roadmap.json   planner data (vertices, edges, feedback)

Exit codes:
  0 success (including unsolved queries; see summary.status)
  2 config/schema validation error
"""
from __future__ import annotations

import argparse
import time
from pathlib import Path
from typing import Any, Dict

from firm_planner.runners.utils import (
    load_yaml, validate_trial_config, ValidationError, stable_hash_from_spec,
    ensure_dir, write_json, write_trace_csv, TRACE_COLUMNS_V1, exit_with, now_timestamp_utc
)
from firm_planner.planner.firm import FIRM, PlannerStatus
from firm_planner.planner.goals import ProblemDefinition
from firm_planner.planner.termination import timed_ptc
from firm_planner.planner.viz_sink import RecordingSink
from firm_planner.scenarios.base_scenario import build_problem_from_spec


def run_trial(cfg: Dict[str, Any], out_dir: str, force: bool = False) -> Dict[str, Any]:
    try:
        validate_trial_config(cfg, ctx="trial_config")
    except ValidationError as e:
        exit_with(2, f"[config validation error] {e}")

    planner_cfg = cfg["planner"]
    controller_cfg = cfg.get("controller", {}) or {}
    execution_cfg = cfg["execution"]
    exp = cfg["experiment"]
    debug = bool(planner_cfg.get("debug", False))
    if debug:
        print("[DEBUG run_trial keys]", list(exp.keys()))

    scenario_spec = exp["scenario_spec"]
    scenario_hash = stable_hash_from_spec(scenario_spec)

    out = Path(out_dir)
    if out.exists() and not force:
        if (out / "summary.json").exists():
            exit_with(2, f"Output dir already contains summary.json; use --force to overwrite: {out}")
    ensure_dir(out)

    trace_path = str(out / "trace.csv")
    summary_path = str(out / "summary.json")
    meta_path = str(out / "run_meta.json")
    roadmap_path = str(out / "roadmap.json")

    space, start, goal, goal_thr = build_problem_from_spec(scenario_spec)
    pdef = ProblemDefinition(space)
    pdef.set_start_and_goal(start, goal, threshold=goal_thr)

    viz = RecordingSink()
    planner = FIRM(space, pdef, cfg=planner_cfg, controller_cfg=controller_cfg, execution_cfg=execution_cfg, viz=viz)

    wallclock_t0 = time.perf_counter()
    status = planner.solve(timed_ptc(float(exp.get("planning_time_s", 2.0))))
    planning_s = float(time.perf_counter() - wallclock_t0)
    print(f"[FIRM] status={status.value} planning_s={planning_s:.3f}")

    report = None
    mode = str(planner.execution_cfg.get("mode", "standard"))
    if status.is_solved():
        if int(exp.get("inject_failure_at_start", 0)) == 1:
            planner.executor.inject_failure_at(planner.solution_pair[0])
        kid = exp.get("kidnap")
        if kid is not None:
            planner.executor.schedule_kidnapping(int(kid["step"]), kid["state"])
        if mode == "rollout":
            report = planner.execute_feedback_with_rollout()
        else:
            report = planner.execute_feedback()
    wallclock_s = float(time.perf_counter() - wallclock_t0)

    path = planner.get_feedback_path()
    summary: Dict[str, Any] = {
        "version": "v1",
        "status": status.value,
        "solved_flag": int(status.is_solved()),
        "exact_flag": int(status == PlannerStatus.EXACT_SOLUTION),
        "planning_s": planning_s,
        "wallclock_s": wallclock_s,
        "num_vertices": int(planner.graph.num_vertices),
        "num_edges": int(planner.graph.num_edges),
        "feedback_path_edges": int(path.num_edges) if path is not None else 0,
        "reached_flag": 0,
        "stuck_flag": 0,
        "recoveries": 0,
        "steps_executed": 0,
        "execution_cost": None,
        "stop_reason": None,
    }
    if report is not None:
        summary.update(report.as_summary())
        summary["execution_cost"] = float(report.cost)

    run_meta = {
        "version": "v1",
        "created_utc": now_timestamp_utc(),
        "experiment": {
            "exp_id": exp["exp_id"],
            "seed": int(exp["seed"]),
            "trial_id": str(exp.get("trial_id", out.name)),
            "mode": mode,
            "config_path": str(exp.get("config_path", cfg.get("__config_path__", ""))),
        },
        "planner": planner.cfg,
        "controller": planner.controller_cfg,
        "execution": planner.execution_cfg,
        "scenario_spec": scenario_spec,
        "scenario_hash": scenario_hash,
        "paths": {"trace_csv": trace_path, "summary_json": summary_path, "roadmap_json": roadmap_path},
    }

    roadmap = planner.get_planner_data()
    roadmap["visited"] = [int(v) for v in report.visited] if report is not None else []
    roadmap["trajectory"] = [[r["true_x"], r["true_y"]] for r in report.trace] if report is not None else []
    roadmap["feedback_path"] = path.states() if path is not None else []
    # insertion history, including rollout transients that are gone from the graph
    roadmap["history"] = {"vertices": viz.vertices, "num_edges_seen": len(viz.edges)}

    write_trace_csv(trace_path, TRACE_COLUMNS_V1, report.trace if report is not None else [])
    write_json(summary_path, summary)
    write_json(meta_path, run_meta)
    write_json(roadmap_path, roadmap)
    return summary


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", required=True, type=str)
    ap.add_argument("--out", required=True, type=str)
    ap.add_argument("--force", action="store_true")
    args = ap.parse_args()

    try:
        cfg = load_yaml(args.config)
    except ValidationError as e:
        exit_with(2, f"[config validation error] {e}")
    run_trial(cfg, out_dir=args.out, force=args.force)


if __name__ == "__main__":
    main()
