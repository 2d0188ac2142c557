from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

from .config import WeightConfig


def resolve_standard_errors(values: Iterable[Optional[float]], missing_se: float = 1e-6) -> np.ndarray:
    """Replace missing (None/NaN) standard errors with ``missing_se``."""
    se = np.array([np.nan if v is None else v for v in values], dtype=float)
    return np.where(np.isfinite(se), se, float(missing_se))


def standard_error_floor(se: np.ndarray, quantile: float = 0.05, minimum: float = 1e-6) -> float:
    """Group-specific floor: the ``quantile`` of the resolved SEs, never below ``minimum``."""
    if se.size == 0:
        return float(minimum)
    return float(max(np.quantile(se, quantile), minimum))


def inverse_variance_weights(values: Iterable[Optional[float]], cfg: WeightConfig | None = None) -> np.ndarray:
    cfg = cfg or WeightConfig()
    se = resolve_standard_errors(values, cfg.missing_se)
    floor = standard_error_floor(se, cfg.se_floor_quantile, cfg.missing_se)
    clipped = np.clip(se, floor, None)
    return 1.0 / clipped**2
