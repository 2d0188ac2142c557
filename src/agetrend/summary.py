"""
Age-bucket summaries.

Each bucket of the fixed age axis is condensed to a single representative row:
the integer age whose estimate sits closest to the bucket's median estimate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd

from .config import SummaryConfig
from .fitting import AgeCurve
from .transform import TransformPolicy, build_interval
from .utils import format_ci


logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ["Condition", "df_used", "AgeGroup", "Midpoint", "Median_age", "95% CI (median)"]


@dataclass(frozen=True)
class BucketEstimate:
    lower_edge: int
    upper_edge: int
    age: int
    estimate: float
    lower: float
    upper: float
    extrapolated: bool

    @property
    def label(self) -> str:
        return f"{self.lower_edge}-{self.upper_edge}"

    @property
    def midpoint(self) -> int:
        return self.lower_edge + (self.upper_edge - self.lower_edge) // 2


def bucket_ages(lower: int, upper: int, min_age: float, max_age: float, horizon: float) -> np.ndarray:
    """Integer ages of ``[lower, upper)`` at or above ``min_age``; empty past the horizon."""
    if lower > max_age + horizon:
        return np.empty(0, dtype=int)
    ages = np.arange(int(lower), int(upper))
    return ages[ages >= min_age]


def pick_median_index(values: np.ndarray) -> int:
    """Index of the value closest to the median; the first one wins ties.

    Distances equal up to float rounding count as ties, so an even-sized
    bucket picks the lower of the two middle values on any monotone scale.
    """
    values = np.asarray(values, dtype=float)
    dist = np.abs(values - np.median(values))
    return int(np.flatnonzero(np.isclose(dist, dist.min(), rtol=1e-9, atol=1e-12))[0])


def summarize_age_buckets(
    curve: AgeCurve,
    policy: TransformPolicy,
    edges: Sequence[int] = tuple(range(0, 101, 10)),
    horizon: float = 10.0,
    z: float = 1.96,
) -> List[BucketEstimate]:
    """Representative integer age and interval for each bucket of ``edges``.

    The median and the closest-age pick run on the reported scale, after the
    clamp and back-transform, i.e. the numbers that end up in the table. Both
    transforms are monotone, so this selects the same order statistic as
    working on the fitting scale.
    """
    out: List[BucketEstimate] = []
    for lower, upper in zip(edges[:-1], edges[1:]):
        ages = bucket_ages(lower, upper, curve.age_min, curve.age_max, horizon)
        if ages.size == 0:
            logger.debug("Skipping bucket %s-%s (observed ages %.1f-%.1f)", lower, upper, curve.age_min, curve.age_max)
            continue
        fit, se = curve.predict(ages)
        band = build_interval(ages, fit, se, policy, curve.age_max, z=z)
        i = pick_median_index(band.estimate)
        out.append(
            BucketEstimate(
                lower_edge=int(lower),
                upper_edge=int(upper),
                age=int(ages[i]),
                estimate=float(band.estimate[i]),
                lower=float(band.lower[i]),
                upper=float(band.upper[i]),
                extrapolated=bool(lower > curve.age_max),
            )
        )
    return out


def bucket_summary_frame(
    estimates: Sequence[BucketEstimate],
    condition: str,
    complexity: int,
    cfg: SummaryConfig | None = None,
) -> pd.DataFrame:
    cfg = cfg or SummaryConfig()
    rows = [
        {
            "Condition": condition,
            "df_used": int(complexity),
            "AgeGroup": b.label,
            "Midpoint": b.midpoint,
            "Median_age": b.age,
            "95% CI (median)": format_ci(
                b.estimate,
                b.lower,
                b.upper,
                decimals=cfg.decimals,
                marker=cfg.extrapolation_marker if b.extrapolated else "",
            ),
        }
        for b in estimates
    ]
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
