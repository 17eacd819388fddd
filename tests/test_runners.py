"""Tests for config validation, scenarios, trial runner, aggregation and plotting."""

import csv
import json

import numpy as np
import pytest

from firm_planner.metrics.aggregate import RECOVERY_COLUMNS_V1, aggregate_trials, bootstrap_ci, list_trial_dirs, summarize
from firm_planner.runners.aggregate_cli import aggregate_to_dir
from firm_planner.runners.run_experiment import make_base_scenario
from firm_planner.runners.run_trial import run_trial
from firm_planner.runners.utils import (
    TRACE_COLUMNS_V1,
    ValidationError,
    build_trial_cfg,
    exit_with,
    load_yaml,
    stable_hash_from_spec,
    validate_experiment_config,
    validate_trial_config,
)
from firm_planner.runners.visualize_case import make_static
from firm_planner.scenarios.base_scenario import _point_in_rect, _rects_overlap, build_problem_from_spec
from firm_planner.scenarios.cluttered import make_scenario_spec as make_cluttered
from firm_planner.scenarios.open_field import make_scenario_spec as make_open_field


# ============================================================
# Helpers
# ============================================================

def exp_cfg(**exp):
    cfg = {
        "version": "v1",
        "planner": {"num_particles": 1, "max_nearest_neighbors": 6, "roadmap_build_time": 0.05},
        "controller": {},
        "execution": {},
        "experiment": {
            "exp_id": "t",
            "trials_per_condition": 1,
            "modes": ["standard", "rollout"],
            "scenario_families": ["open_field"],
            "seed0": 0,
            "planning_time_s": 5.0,
        },
    }
    cfg["experiment"].update(exp)
    return cfg


def trial_cfg(mode="standard", seed=0, family="open_field", **extra):
    spec = make_base_scenario(family, seed, {})
    return build_trial_cfg(exp_cfg(), "t", mode, seed, spec, f"{mode}__{family}__seed{seed}", extra_exp=extra)


def read_trace(path):
    with open(path, "r", encoding="utf-8", newline="") as f:
        return list(csv.reader(f))


# ============================================================
# Config validation
# ============================================================

def test_trial_cfg_built_from_experiment_is_valid():
    cfg = trial_cfg()
    validate_trial_config(cfg)
    assert cfg["execution"]["mode"] == "standard"
    assert cfg["planner"]["seed"] == 0
    assert cfg["experiment"]["scenario_hash"] == stable_hash_from_spec(cfg["experiment"]["scenario_spec"])


def test_missing_section_is_rejected():
    cfg = trial_cfg()
    del cfg["planner"]
    with pytest.raises(ValidationError):
        validate_trial_config(cfg)


def test_unknown_mode_and_strategy_are_rejected():
    cfg = trial_cfg()
    cfg["execution"]["mode"] = "teleport"
    with pytest.raises(ValidationError):
        validate_trial_config(cfg)
    cfg = trial_cfg()
    cfg["planner"]["connection_strategy"] = "nearest_star"
    with pytest.raises(ValidationError):
        validate_trial_config(cfg)


def test_bad_kidnap_is_rejected():
    cfg = trial_cfg(kidnap={"state": [1.0, 1.0]})
    with pytest.raises(ValidationError):
        validate_trial_config(cfg)


def test_experiment_id_must_match_cli():
    with pytest.raises(ValidationError):
        validate_experiment_config(exp_cfg(), exp_cli="other")
    validate_experiment_config(exp_cfg(), exp_cli="t")


def test_experiment_needs_modes():
    with pytest.raises(ValidationError):
        validate_experiment_config(exp_cfg(modes=[]))


def test_load_yaml_parse_error(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("planner: {num_particles: 3}\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_yaml(str(p))


def test_load_yaml_records_path(tmp_path):
    p = tmp_path / "ok.yaml"
    p.write_text(json.dumps(exp_cfg()), encoding="utf-8")
    cfg = load_yaml(str(p))
    assert cfg["__config_path__"] == str(p)


def test_exit_with_raises_system_exit():
    with pytest.raises(SystemExit) as ei:
        exit_with(2, "boom")
    assert ei.value.code == 2


# ============================================================
# Scenarios
# ============================================================

def test_unknown_family_raises():
    with pytest.raises(ValueError):
        make_base_scenario("maze", 0, {})


def test_scenarios_are_deterministic_per_seed():
    assert make_cluttered(3) == make_cluttered(3)
    assert make_cluttered(3)["obstacles"] != make_cluttered(4)["obstacles"]
    assert make_open_field(0)["obstacles"] == []


def test_cluttered_boxes_keep_start_goal_free():
    for seed in range(5):
        spec = make_cluttered(seed, {"n_obstacles": 8})
        assert len(spec["obstacles"]) > 0
        for r in spec["obstacles"]:
            assert not _point_in_rect(spec["start"], r, 0.4)
            assert not _point_in_rect(spec["goal"], r, 0.4)
        for i, a in enumerate(spec["obstacles"]):
            for b in spec["obstacles"][i + 1:]:
                assert not _rects_overlap(a, b)


def test_problem_from_scenario_builds_valid_query():
    spec = make_cluttered(1)
    space, start, goal, thr = build_problem_from_spec(spec)
    assert space.is_valid(start.x)
    assert space.is_valid(goal.x)
    assert thr == pytest.approx(0.3)
    assert len(space.obstacles) == len(spec["obstacles"])


# ============================================================
# Trials
# ============================================================

def test_run_trial_writes_outputs(tmp_path):
    out = tmp_path / "trial"
    summary = run_trial(trial_cfg(), str(out))
    for name in ("trace.csv", "summary.json", "run_meta.json", "roadmap.json"):
        assert (out / name).exists()
    assert summary["solved_flag"] == 1
    assert summary["reached_flag"] == 1
    assert summary["stop_reason"] == "goal"

    rows = read_trace(out / "trace.csv")
    assert rows[0] == TRACE_COLUMNS_V1
    assert len(rows) - 1 == summary["steps_executed"]

    roadmap = json.loads((out / "roadmap.json").read_text(encoding="utf-8"))
    assert len(roadmap["vertices"]) == summary["num_vertices"]
    assert len(roadmap["trajectory"]) == summary["steps_executed"]


def test_run_trial_refuses_to_overwrite(tmp_path):
    out = tmp_path / "trial"
    run_trial(trial_cfg(), str(out))
    with pytest.raises(SystemExit):
        run_trial(trial_cfg(), str(out))
    run_trial(trial_cfg(), str(out), force=True)


def test_run_trial_invalid_config_exits(tmp_path):
    cfg = trial_cfg()
    cfg["version"] = "v0"
    with pytest.raises(SystemExit) as ei:
        run_trial(cfg, str(tmp_path / "bad"))
    assert ei.value.code == 2


def test_run_trial_with_injected_failure_records_recovery(tmp_path):
    summary = run_trial(trial_cfg(inject_failure_at_start=1), str(tmp_path / "rec"))
    assert summary["recoveries"] >= 1
    assert len(summary["inserted_vertices"]) == summary["recoveries"]


def test_run_trial_rollout_mode(tmp_path):
    out = tmp_path / "rollout"
    summary = run_trial(trial_cfg(mode="rollout"), str(out))
    meta = json.loads((out / "run_meta.json").read_text(encoding="utf-8"))
    assert meta["experiment"]["mode"] == "rollout"
    assert summary["reached_flag"] == 1
    rows = read_trace(out / "trace.csv")
    mode_col = rows[0].index("mode")
    assert all(r[mode_col] == "rollout" for r in rows[1:])


# ============================================================
# Aggregation / plotting
# ============================================================

def test_bootstrap_ci_is_deterministic():
    x = np.array([1.0, 2.0, 3.0, 4.0])
    a = bootstrap_ci(x, seed=5)
    b = bootstrap_ci(x, seed=5)
    assert a == b
    assert a[1] <= a[0] <= a[2]
    assert all(np.isnan(v) for v in bootstrap_ci(np.array([])))


def test_aggregate_and_summarize(tmp_path):
    root = tmp_path / "exp_t"
    for mode in ("standard", "rollout"):
        run_trial(trial_cfg(mode=mode), str(root / f"{mode}__open_field__seed0"))
    dirs = list_trial_dirs(str(root / "*"))
    assert len(dirs) == 2
    rows = aggregate_trials(dirs)
    assert {r["mode"] for r in rows} == {"standard", "rollout"}
    assert all(r["scenario_family"] == "open_field" for r in rows)
    summ = summarize(rows)
    assert len(summ) == 2
    assert all(s["n"] == 1 for s in summ)


def test_visualize_case_writes_png(tmp_path):
    out = tmp_path / "trial"
    run_trial(trial_cfg(), str(out))
    png = tmp_path / "viz" / "case.png"
    make_static(out, png)
    assert png.exists()
    assert png.stat().st_size > 0


def test_aggregate_cli_filters_and_lists_recoveries(tmp_path):
    root = tmp_path / "exp_t"
    run_trial(trial_cfg(inject_failure_at_start=1), str(root / "standard__open_field__seed0"))
    run_trial(trial_cfg(mode="rollout"), str(root / "rollout__open_field__seed0"))

    out = tmp_path / "agg"
    res = aggregate_to_dir(str(root / "*"), out, modes=["standard"])
    assert [r["mode"] for r in res["rows"]] == ["standard"]
    assert len(res["recoveries"]) >= 1
    assert all(e["mode"] == "standard" for e in res["recoveries"])

    rows = read_trace(out / "recoveries.csv")
    assert rows[0] == RECOVERY_COLUMNS_V1
    assert len(rows) - 1 == len(res["recoveries"])
    assert (out / "metrics.csv").exists()
    assert (out / "metrics_summary.csv").exists()
