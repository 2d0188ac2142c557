"""
Response scale handling.

Ratio-type effects are fit on the log scale and exponentiated back; every other
effect type is fit as-is. Both scales share an upper ceiling applied to the
predicted mean and bounds on the fitting scale, before any back-transform.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .config import TransformConfig


@dataclass(frozen=True)
class TransformPolicy:
    effect_type: str
    is_ratio: bool
    ceiling: float

    @classmethod
    def for_effect_type(cls, effect_type: object, cfg: TransformConfig | None = None) -> "TransformPolicy":
        cfg = cfg or TransformConfig()
        label = "" if effect_type is None else str(effect_type).strip()
        is_ratio = label.lower() == cfg.ratio_label.lower()
        ceiling = cfg.ratio_ceiling if is_ratio else cfg.absolute_ceiling
        return cls(effect_type=label, is_ratio=is_ratio, ceiling=float(ceiling))

    @property
    def null_value(self) -> float:
        return 1.0 if self.is_ratio else 0.0

    def to_fit_scale(self, values: np.ndarray) -> np.ndarray:
        values = np.asarray(values, dtype=float)
        if not self.is_ratio:
            return values
        # Non-positive ratios become -inf/nan here and fail the fit downstream.
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.log(values)

    def to_report_scale(self, values: np.ndarray) -> np.ndarray:
        clamped = np.minimum(np.asarray(values, dtype=float), self.ceiling)
        return np.exp(clamped) if self.is_ratio else clamped


@dataclass
class IntervalBand:
    age: np.ndarray
    estimate: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    extrapolated: np.ndarray


def build_interval(
    ages: np.ndarray,
    fit: np.ndarray,
    se: np.ndarray,
    policy: TransformPolicy,
    max_observed_age: float,
    z: float = 1.96,
) -> IntervalBand:
    """Bounds on the fitting scale, then clamp and back-transform all three series alike."""
    fit = np.asarray(fit, dtype=float)
    se = np.asarray(se, dtype=float)
    lower = fit - z * se
    upper = fit + z * se
    ages = np.asarray(ages, dtype=float)
    return IntervalBand(
        age=ages,
        estimate=policy.to_report_scale(fit),
        lower=policy.to_report_scale(lower),
        upper=policy.to_report_scale(upper),
        extrapolated=ages > float(max_observed_age),
    )
