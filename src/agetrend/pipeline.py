from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import PipelineConfig
from .data_io import load_effects_table
from .errors import EligibilityError, FitFailure
from .fitting import AgeCurve, fit_age_curve
from .schema import Observation, assert_required_columns, group_observations
from .summary import SUMMARY_COLUMNS, bucket_summary_frame, summarize_age_buckets
from .transform import IntervalBand, TransformPolicy, build_interval
from .utils import ensure_dir, first_present, json_dump_file, slugify
from .weights import inverse_variance_weights


logger = logging.getLogger(__name__)

CURVE_COLUMNS = ["merge.figure", "type", "Age", "fit", "se.fit", "label", "df_used"]
SKIPPED_COLUMNS = ["Condition", "df_used", "reason"]


@dataclass
class GroupResult:
    label: str
    complexity: int
    curve: pd.DataFrame
    buckets: pd.DataFrame
    skipped_reason: Optional[str] = None
    observations: List[Observation] = field(default_factory=list)
    policy: Optional[TransformPolicy] = None
    band: Optional[IntervalBand] = None

    @property
    def ok(self) -> bool:
        return self.skipped_reason is None


@dataclass
class SweepResult:
    group_column: str
    complexity: int
    curve_table: pd.DataFrame
    bucket_table: pd.DataFrame
    skipped: pd.DataFrame
    groups: List[GroupResult]

    def save(self, out_dir: Path) -> None:
        ensure_dir(out_dir)
        self.curve_table[CURVE_COLUMNS].to_csv(out_dir / "curve_export.csv", index=False)
        self.bucket_table.to_csv(out_dir / "age_bucket_summary.csv", index=False)
        self.skipped.to_csv(out_dir / "skipped_groups.csv", index=False)


def check_eligibility(observations: Sequence[Observation], min_obs: int = 6, min_distinct_ages: int = 4) -> None:
    n = len(observations)
    n_ages = len({o.assigned_age for o in observations})
    reasons = []
    if n < int(min_obs):
        reasons.append(f"n<{int(min_obs)}")
    if n_ages < int(min_distinct_ages):
        reasons.append(f"distinct_ages<{int(min_distinct_ages)}")
    if reasons:
        raise EligibilityError(";".join(reasons))


def dense_age_grid(min_age: float, max_age: float, horizon: float = 10.0, cap: float = 80.0, n: int = 400) -> np.ndarray:
    """Evenly spaced ages from the youngest observation to the horizon or the cap.

    Empty when the group starts at or beyond that end point.
    """
    stop = min(float(max_age) + horizon, cap)
    if float(min_age) >= stop:
        return np.empty(0, dtype=float)
    return np.linspace(float(min_age), stop, int(n))


def curve_frame(
    band: IntervalBand,
    label: str,
    complexity: int,
    effect_type: str,
    merge_figure: object,
    z: float = 1.96,
) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "merge.figure": merge_figure,
            "type": effect_type,
            "Age": band.age,
            "fit": band.estimate,
            "se.fit": (band.upper - band.lower) / (2.0 * z),
            "lower": band.lower,
            "upper": band.upper,
            "extrapolated": band.extrapolated,
            "label": label,
            "df_used": int(complexity),
        }
    )


def _skipped(label: str, complexity: int, reason: str, observations: Sequence[Observation]) -> GroupResult:
    return GroupResult(
        label=label,
        complexity=int(complexity),
        curve=pd.DataFrame(columns=CURVE_COLUMNS),
        buckets=pd.DataFrame(columns=SUMMARY_COLUMNS),
        skipped_reason=reason,
        observations=list(observations),
    )


def fit_group(observations: Sequence[Observation], complexity: int, cfg: PipelineConfig) -> tuple[AgeCurve, TransformPolicy]:
    policy = TransformPolicy.for_effect_type(first_present(o.effect_type or None for o in observations), cfg.transform)
    ages = np.array([o.assigned_age for o in observations], dtype=float)
    response = policy.to_fit_scale(np.array([o.rep_effect for o in observations], dtype=float))
    if not np.isfinite(response).all():
        raise FitFailure("non-finite response after transform (non-positive ratio effect?)")
    weights = inverse_variance_weights([o.standard_error for o in observations], cfg.weights)
    curve = fit_age_curve(ages, response, weights, complexity, cfg.spline)
    return curve, policy


def process_group(label: str, observations: Sequence[Observation], complexity: int, cfg: PipelineConfig) -> GroupResult:
    """Run weighting, fit, prediction and bucket summary for one group.

    Eligibility and fit failures are contained here: the group yields no rows
    and the reason is recorded on the result.
    """
    try:
        check_eligibility(observations, cfg.eligibility.min_obs, cfg.eligibility.min_distinct_ages)
    except EligibilityError as exc:
        logger.info("Skipping group %r (k=%d): %s", label, complexity, exc)
        return _skipped(label, complexity, f"eligibility: {exc}", observations)

    try:
        curve, policy = fit_group(observations, complexity, cfg)
    except (FitFailure, np.linalg.LinAlgError, ValueError) as exc:
        logger.warning("Fit failed for group %r (k=%d): %s", label, complexity, exc)
        return _skipped(label, complexity, f"fit: {exc}", observations)

    pc = cfg.prediction
    grid = dense_age_grid(curve.age_min, curve.age_max, pc.extrapolation_years, pc.max_grid_age, pc.n_grid)
    if grid.size:
        fit, se = curve.predict(grid)
    else:
        logger.debug(
            "Group %r (k=%d): no dense grid, youngest age %.1f is past the %.0f cap",
            label,
            complexity,
            curve.age_min,
            pc.max_grid_age,
        )
        fit = se = np.empty(0, dtype=float)
    band = build_interval(grid, fit, se, policy, curve.age_max, z=pc.z)
    merge_figure = first_present(o.merge_figure for o in observations)

    buckets = summarize_age_buckets(curve, policy, cfg.summary.bucket_edges, pc.extrapolation_years, pc.z)
    logger.debug("Group %r (k=%d): lambda=%.3g edf=%.2f, %d buckets", label, complexity, curve.lam, curve.edf, len(buckets))
    return GroupResult(
        label=label,
        complexity=int(complexity),
        curve=curve_frame(band, label, complexity, policy.effect_type, merge_figure, z=pc.z),
        buckets=bucket_summary_frame(buckets, label, complexity, cfg.summary),
        observations=list(observations),
        policy=policy,
        band=band,
    )


def _concat(frames: List[pd.DataFrame], columns: List[str]) -> pd.DataFrame:
    frames = [f for f in frames if not f.empty]
    if not frames:
        return pd.DataFrame(columns=columns)
    return pd.concat(frames, ignore_index=True)


def _run_tasks(tasks: List[tuple[str, List[Observation], int]], cfg: PipelineConfig) -> List[GroupResult]:
    """Run ``(label, observations, complexity)`` tasks; results keep submission order."""
    if cfg.n_jobs > 1 and len(tasks) > 1:
        with ProcessPoolExecutor(max_workers=cfg.n_jobs) as pool:
            futures = [pool.submit(process_group, label, obs, k, cfg) for label, obs, k in tasks]
            return [f.result() for f in futures]
    return [process_group(label, obs, k, cfg) for label, obs, k in tasks]


def _assemble(group_column: str, complexity: int, results: List[GroupResult]) -> SweepResult:
    skipped = pd.DataFrame(
        [{"Condition": r.label, "df_used": r.complexity, "reason": r.skipped_reason} for r in results if not r.ok],
        columns=SKIPPED_COLUMNS,
    )
    n_ok = sum(r.ok for r in results)
    logger.info("Column %s, k=%d: %d groups fit, %d skipped", group_column, complexity, n_ok, len(results) - n_ok)
    return SweepResult(
        group_column=group_column,
        complexity=int(complexity),
        curve_table=_concat([r.curve for r in results], CURVE_COLUMNS),
        bucket_table=_concat([r.buckets for r in results], SUMMARY_COLUMNS),
        skipped=skipped,
        groups=results,
    )


def run_condition_sweep(
    df: pd.DataFrame,
    group_column: str,
    complexity: int,
    cfg: PipelineConfig,
) -> SweepResult:
    """Apply the per-group pipeline to every condition value in ``group_column``."""
    assert_required_columns(df, [group_column])
    groups: Dict[str, List[Observation]] = group_observations(df, group_column)
    results = _run_tasks([(label, obs, int(complexity)) for label, obs in groups.items()], cfg)
    return _assemble(group_column, complexity, results)


def run_sweeps(df: pd.DataFrame, cfg: PipelineConfig) -> List[SweepResult]:
    """Run every (group column, complexity) sweep of ``cfg``.

    All (column, complexity, group) tasks go through one worker pool, so
    parallelism spans the whole sweep rather than a single column.
    """
    assert_required_columns(df, cfg.group_columns)
    grouped = {col: group_observations(df, col) for col in cfg.group_columns}
    plan = list(cfg.sweep())
    tasks = [(label, obs, int(k)) for col, k in plan for label, obs in grouped[col].items()]
    results = _run_tasks(tasks, cfg)

    sweeps: List[SweepResult] = []
    start = 0
    for col, k in plan:
        stop = start + len(grouped[col])
        sweeps.append(_assemble(col, k, results[start:stop]))
        start = stop
    return sweeps


def run_pipeline(input_path: str | Path, cfg: PipelineConfig) -> dict[str, Any]:
    if not cfg.group_columns:
        raise ValueError("No group columns configured")
    df = load_effects_table(input_path, cfg.group_columns)
    ensure_dir(cfg.run_root)
    json_dump_file(cfg.run_root / "run_config.json", cfg)

    runs = []
    for sweep in run_sweeps(df, cfg):
        group_column, complexity = sweep.group_column, sweep.complexity
        out_dir = cfg.sweep_dir(group_column, complexity)
        sweep.save(out_dir)
        n_figures = 0
        if cfg.plot.enabled:
            from .plotting import render_group_chart

            for r in sweep.groups:
                if r.ok:
                    render_group_chart(r, out_dir / "figures" / f"{slugify(r.label)}.png", cfg.plot)
                    n_figures += 1
        runs.append(
            {
                "group_column": group_column,
                "df_used": int(complexity),
                "output_dir": str(out_dir),
                "n_groups": len(sweep.groups),
                "n_fit": int(sum(r.ok for r in sweep.groups)),
                "n_skipped": int(len(sweep.skipped)),
                "n_curve_rows": int(len(sweep.curve_table)),
                "n_bucket_rows": int(len(sweep.bucket_table)),
                "n_figures": n_figures,
            }
        )

    return {
        "run_root": str(cfg.run_root),
        "n_input_rows": int(len(df)),
        "runs": runs,
    }


__all__ = ["process_group", "run_condition_sweep", "run_pipeline", "run_sweeps"]
