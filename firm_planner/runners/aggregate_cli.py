"""
Aggregate FIRM trials (v1).

Outputs in --out_dir:
  metrics.csv          one row per trial
  metrics_summary.csv  bootstrap CIs per (exp_id, mode, scenario_family)
  recoveries.csv       one row per recovery vertex inserted during execution

CLI contract:
  python -m firm_planner.runners.aggregate_cli --glob "results/exp_e1/*" --out_dir results/agg_e1 [--mode rollout] [--family cluttered]
"""
from __future__ import annotations

import argparse
import csv
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from firm_planner.metrics.aggregate import (
    METRICS_COLUMNS_V1,
    RECOVERY_COLUMNS_V1,
    aggregate_trials,
    list_trial_dirs,
    recovery_events,
    summarize,
)
from firm_planner.runners.utils import EXECUTION_MODES, ensure_dir


def write_csv(path: Path, rows: List[Dict[str, Any]], columns: List[str]) -> None:
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        w.writeheader()
        for r in rows:
            w.writerow(r)


def _keep(r: Dict[str, Any], modes: Optional[Sequence[str]], families: Optional[Sequence[str]]) -> bool:
    if modes and r.get("mode") not in modes:
        return False
    if families and r.get("scenario_family") not in families:
        return False
    return True


def aggregate_to_dir(glob_pattern: str, out_dir, modes: Optional[Sequence[str]] = None,
                     families: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    trial_dirs = list_trial_dirs(glob_pattern)
    rows = [r for r in aggregate_trials(trial_dirs) if _keep(r, modes, families)]
    events = [e for e in recovery_events(trial_dirs) if _keep(e, modes, families)]
    summ = summarize(rows)

    out_dir = Path(out_dir)
    ensure_dir(out_dir)
    write_csv(out_dir / "metrics.csv", rows, METRICS_COLUMNS_V1)
    write_csv(out_dir / "metrics_summary.csv", summ, list(summ[0].keys()) if summ else [])
    write_csv(out_dir / "recoveries.csv", events, RECOVERY_COLUMNS_V1)

    for s in summ:
        print(f"[aggregate] {s['exp_id']} {s['mode']:<8} {s['scenario_family']:<12} n={s['n']} "
              f"reached={s['reached_rate_mean']:.2f} recoveries={s['recoveries_mean']:.2f}")
    print(f"[aggregate] {len(rows)} trials, {len(events)} recoveries -> {out_dir}")
    return {"rows": rows, "summary": summ, "recoveries": events}


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--glob", required=True, type=str)
    ap.add_argument("--out_dir", required=True, type=str)
    ap.add_argument("--mode", action="append", choices=list(EXECUTION_MODES), default=None)
    ap.add_argument("--family", action="append", default=None)
    args = ap.parse_args()
    aggregate_to_dir(args.glob, args.out_dir, modes=args.mode, families=args.family)


if __name__ == "__main__":
    main()
