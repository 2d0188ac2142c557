from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from .config import PlotConfig

if TYPE_CHECKING:
    from .pipeline import GroupResult


def save_figure(fig, path: Path, dpi: int = 300) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")


def marker_sizes(sample_sizes, base: float = 20.0) -> np.ndarray:
    """Scatter areas scaled by sample size; missing sizes get the smallest marker."""
    n = np.array([np.nan if s is None else s for s in sample_sizes], dtype=float)
    valid = np.isfinite(n) & (n > 0)
    if not valid.any():
        return np.full(n.shape, base)
    n = np.where(valid, n, n[valid].min())
    return base + 180.0 * np.sqrt(n / n.max())


def render_group_chart(result: "GroupResult", path: Path, cfg: PlotConfig | None = None) -> Path:
    cfg = cfg or PlotConfig()
    band = result.band
    policy = result.policy
    if band is None or policy is None:
        raise ValueError(f"Group {result.label!r} has no fitted curve to plot")

    fig, ax = plt.subplots(figsize=cfg.figsize)
    obs = result.observations
    ax.scatter(
        [o.assigned_age for o in obs],
        [o.rep_effect for o in obs],
        s=marker_sizes([o.sample_size for o in obs]),
        alpha=0.6,
        color="#4C72B0",
        edgecolor="white",
        linewidth=0.5,
        zorder=3,
    )

    inside = ~band.extrapolated
    # Include the boundary point in the dashed segment so the two pieces join.
    beyond = band.extrapolated.copy()
    if inside.any() and beyond.any():
        beyond[np.flatnonzero(inside)[-1]] = True

    if inside.any():
        ax.fill_between(band.age[inside], band.lower[inside], band.upper[inside], color="#DD8452", alpha=0.3, linewidth=0)
        ax.plot(band.age[inside], band.estimate[inside], color="#DD8452", linewidth=2)
    if beyond.any():
        ax.fill_between(band.age[beyond], band.lower[beyond], band.upper[beyond], color="#DD8452", alpha=0.12, linewidth=0)
        ax.plot(band.age[beyond], band.estimate[beyond], color="#DD8452", linewidth=2, linestyle="--")

    ax.axhline(policy.null_value, color="grey", linestyle=":", linewidth=1)
    ax.set_xlabel("Age")
    ax.set_ylabel(policy.effect_type or "effect")
    ax.set_title(f"{result.label} (df={result.complexity})")

    try:
        save_figure(fig, path, dpi=cfg.dpi)
    finally:
        plt.close(fig)
    return path
