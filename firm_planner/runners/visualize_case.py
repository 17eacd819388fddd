"""Visualize a trial (v1): 2D world + roadmap + feedback policy + executed trajectory.

Panels:
- World: obstacles, landmarks, roadmap edges (shaded by success probability),
  feedback edges, recovery vertices, trajectory colored by step
- Cost-to-go along the executed steps
- Belief covariance trace along the executed steps

Usage:
  python -m firm_planner.runners.visualize_case --trial_dir <dir> --out results/_viz.png
"""

from __future__ import annotations

import argparse
import csv
from pathlib import Path
from typing import Any, Dict

import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection
from matplotlib.patches import Rectangle

from firm_planner.runners.utils import read_json
from firm_planner.scenarios.base_scenario import build_scene_dict_from_scenario_spec


def _read_trace(path: Path) -> Dict[str, np.ndarray]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    if not rows:
        return {}
    cols: Dict[str, np.ndarray] = {}
    for k in rows[0].keys():
        try:
            cols[k] = np.array([float(rr.get(k) or "nan") for rr in rows], dtype=np.float64)
        except ValueError:
            cols[k] = np.array([rr.get(k, "") for rr in rows], dtype=object)
    return cols


def _draw_world(ax, scene: Dict[str, Any]) -> None:
    (x0, x1), (y0, y1) = scene["bounds"]
    for r in scene["obstacles"]:
        ax.add_patch(Rectangle((r[0], r[1]), r[2] - r[0], r[3] - r[1], color="0.35", zorder=1))
    lms = np.asarray(scene["landmarks"], dtype=np.float64).reshape(-1, 2)
    if lms.shape[0]:
        ax.scatter(lms[:, 0], lms[:, 1], marker="^", s=60, color="tab:orange", zorder=3, label="landmarks")
    ax.set_xlim(x0, x1)
    ax.set_ylim(y0, y1)
    ax.set_aspect("equal")


def _draw_roadmap(ax, roadmap: Dict[str, Any]) -> None:
    pos = {int(v["id"]): v["x"] for v in roadmap.get("vertices", [])}
    segs, alphas = [], []
    for e in roadmap.get("edges", []):
        a, b = pos.get(int(e["source"])), pos.get(int(e["target"]))
        if a is None or b is None:
            continue
        segs.append([a[:2], b[:2]])
        alphas.append(0.1 + 0.4 * float(e["success_probability"]))
    if segs:
        colors = [(0.2, 0.4, 0.8, a) for a in alphas]
        ax.add_collection(LineCollection(segs, colors=colors, linewidths=0.6, zorder=2))

    fb = []
    eid_to_edge = {int(e["id"]): e for e in roadmap.get("edges", [])}
    for _, eid in (roadmap.get("feedback", {}) or {}).items():
        e = eid_to_edge.get(int(eid))
        if e is not None:
            fb.append([pos[int(e["source"])][:2], pos[int(e["target"])][:2]])
    if fb:
        ax.add_collection(LineCollection(fb, colors="tab:green", linewidths=1.6, zorder=4, label="feedback"))

    if pos:
        P = np.asarray(list(pos.values()), dtype=np.float64)
        ax.scatter(P[:, 0], P[:, 1], s=8, color="k", zorder=5)
    hist = [v["x"] for v in (roadmap.get("history", {}) or {}).get("vertices", []) if v.get("transient")]
    if hist:
        H = np.asarray(hist, dtype=np.float64)
        ax.scatter(H[:, 0], H[:, 1], s=10, facecolors="none", edgecolors="tab:purple", zorder=5, label="rollout")
    for key, marker, label in (("start_ids", "o", "start"), ("goal_ids", "*", "goal")):
        for vid in roadmap.get(key, []):
            p = pos.get(int(vid))
            if p is not None:
                ax.scatter([p[0]], [p[1]], s=160, marker=marker, zorder=7, label=label)


def _plot_step_colored_traj(ax, x: np.ndarray, y: np.ndarray, lw: float = 2.5) -> None:
    ok = np.isfinite(x) & np.isfinite(y)
    x2, y2 = x[ok], y[ok]
    if len(x2) < 2:
        return
    t = np.arange(len(x2), dtype=np.float64)
    pts = np.column_stack([x2, y2]).reshape(-1, 1, 2)
    segs = np.concatenate([pts[:-1], pts[1:]], axis=1)
    lc = LineCollection(segs, array=t[:-1], cmap="viridis", linewidths=lw)
    lc.set_zorder(8)
    ax.add_collection(lc)
    ax.scatter([x2[-1]], [y2[-1]], s=70, marker="s", zorder=9, label="end")
    cbar = plt.colorbar(lc, ax=ax, fraction=0.046, pad=0.04)
    cbar.set_label("controller step")


def make_static(trial_dir: Path, out_png: Path) -> None:
    meta = read_json(str(trial_dir / "run_meta.json"))
    summary = read_json(str(trial_dir / "summary.json"))
    roadmap = read_json(meta["paths"]["roadmap_json"])
    scene = build_scene_dict_from_scenario_spec(meta["scenario_spec"])
    trace = _read_trace(Path(meta["paths"]["trace_csv"]))

    fig = plt.figure(figsize=(13, 6))
    ax_map = fig.add_subplot(1, 2, 1)
    ax_ctg = fig.add_subplot(2, 2, 2)
    ax_cov = fig.add_subplot(2, 2, 4)

    _draw_world(ax_map, scene)
    _draw_roadmap(ax_map, roadmap)
    ax_map.set_title(f"{summary.get('status')} | reached={summary.get('reached_flag')} | recoveries={summary.get('recoveries')}")

    if trace:
        _plot_step_colored_traj(ax_map, trace["true_x"], trace["true_y"])
        rec = trace.get("recovery")
        if isinstance(rec, np.ndarray):
            idx = np.where(rec > 0.5)[0]
            if len(idx) > 0:
                ax_map.scatter(trace["x"][idx], trace["y"][idx], s=110, marker="X", color="red", zorder=10, label="recovery")
        ax_ctg.plot(trace["step"], trace["cost_to_go"])
        ax_cov.plot(trace["step"], trace["cov_trace"])
    ax_ctg.set_title("Cost-to-go at departing vertex")
    ax_cov.set_title("Belief covariance trace")
    ax_cov.set_xlabel("controller step")

    handles, labels = ax_map.get_legend_handles_labels()
    uniq = dict(zip(labels, handles))
    ax_map.legend(uniq.values(), uniq.keys(), loc="upper left", fontsize=8)

    fig.tight_layout()
    out_png.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_png, dpi=160)
    plt.close(fig)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--trial_dir", required=True, type=str)
    ap.add_argument("--out", required=True, type=str, help="Output PNG path")
    args = ap.parse_args()
    make_static(Path(args.trial_dir), Path(args.out))


if __name__ == "__main__":
    main()
