"""
Run a full experiment sweep (v1).

CLI contract:
  python -m firm_planner.runners.run_experiment --exp e1 --config configs/exp_e1.yaml --n_trials 10 [--out_root results] [--resume] [--force]

Notes:
  - Deterministic seeds: same seed per (family, trial_index) across modes, so
    both execution modes run on the same world and the same roadmap seed.
  - Output dirs: <out_root>/exp_<exp>/<trial_dir> (one level) for easy globbing.
"""
from __future__ import annotations

import argparse
import copy
import itertools
from pathlib import Path
from typing import Any, Dict, List

from firm_planner.runners.utils import (
    load_yaml, validate_experiment_config, ValidationError, ensure_dir, exit_with, build_trial_cfg
)
from firm_planner.runners.run_trial import run_trial
from firm_planner.scenarios.open_field import make_scenario_spec as make_open_field
from firm_planner.scenarios.cluttered import make_scenario_spec as make_cluttered


def make_base_scenario(family: str, seed: int, params: Dict[str, Any]) -> Dict[str, Any]:
    if family == "open_field":
        return make_open_field(seed, params)
    if family == "cluttered":
        return make_cluttered(seed, params)
    raise ValueError(f"Unknown scenario_family: {family}")


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--exp", required=True, type=str)
    ap.add_argument("--config", required=True, type=str)
    ap.add_argument("--n_trials", required=True, type=int)
    ap.add_argument("--out_root", default="results", type=str)
    ap.add_argument("--resume", action="store_true")
    ap.add_argument("--force", action="store_true")
    args = ap.parse_args()

    try:
        cfg = load_yaml(args.config)
        validate_experiment_config(cfg, ctx="experiment_config", exp_cli=args.exp)
    except ValidationError as e:
        exit_with(2, f"[config validation error] {e}")

    exp = cfg["experiment"]
    if int(args.n_trials) != int(exp["trials_per_condition"]):
        exit_with(2, f"--n_trials must equal experiment.trials_per_condition ({exp['trials_per_condition']})")

    modes: List[str] = list(exp["modes"])
    families: List[str] = list(exp["scenario_families"])
    scenario_params = exp.get("scenario_params", {}) or {}
    seed0 = int(exp.get("seed0", 0))
    extra = {
        "inject_failure_at_start": int(exp.get("inject_failure_at_start", 0)),
    }
    if exp.get("kidnap") is not None:
        extra["kidnap"] = copy.deepcopy(exp["kidnap"])

    base_dir = Path(args.out_root) / f"exp_{args.exp}"
    ensure_dir(base_dir)
    print(f"[DEBUG] exp={args.exp} | families={families} | modes={modes} | n_trials={args.n_trials}")

    for family, trial_i in itertools.product(families, range(int(args.n_trials))):
        seed = seed0 + trial_i
        try:
            spec = make_base_scenario(family, seed=seed, params=scenario_params.get(family, {}))
        except ValueError as e:
            exit_with(2, f"[config validation error] {e}")
        for mode in modes:
            trial_id = f"{mode}__{family}__i{trial_i:03d}__seed{seed}"
            out_dir = base_dir / trial_id
            if args.resume and (out_dir / "summary.json").exists() and not args.force:
                continue
            trial_cfg = build_trial_cfg(
                exp_cfg=cfg,
                exp_id=args.exp,
                mode=mode,
                seed=seed,
                scenario_spec=spec,
                trial_id=trial_id,
                extra_exp=extra,
            )
            run_trial(trial_cfg, out_dir=str(out_dir), force=args.force)


if __name__ == "__main__":
    main()
