from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence


@dataclass
class EligibilityConfig:
    min_obs: int = 6
    min_distinct_ages: int = 4


@dataclass
class WeightConfig:
    # Stand-in for a missing SE: near-zero uncertainty, i.e. maximal trust.
    missing_se: float = 1e-6
    se_floor_quantile: float = 0.05


@dataclass
class SplineConfig:
    degree: int = 3
    lambda_min: float = 1e-4
    lambda_max: float = 1e4
    n_lambda: int = 33


@dataclass
class TransformConfig:
    ratio_label: str = "ratio"
    # Upper ceilings applied on the fitting scale, before any back-transform.
    ratio_ceiling: float = 3.0
    absolute_ceiling: float = 5.0


@dataclass
class PredictionConfig:
    z: float = 1.96
    n_grid: int = 400
    extrapolation_years: float = 10.0
    max_grid_age: float = 80.0


@dataclass
class SummaryConfig:
    bucket_edges: Sequence[int] = field(default_factory=lambda: list(range(0, 101, 10)))
    extrapolation_marker: str = " *"
    decimals: int = 2


@dataclass
class PlotConfig:
    enabled: bool = True
    figsize: tuple[float, float] = (7.0, 5.0)
    dpi: int = 300


@dataclass
class PipelineConfig:
    group_columns: Sequence[str] = field(default_factory=list)
    complexities: Sequence[int] = field(default_factory=lambda: [3, 4, 5])
    output_dir: str = "runs"
    run_tag: str = "age_trend"
    n_jobs: int = 1
    eligibility: EligibilityConfig = field(default_factory=EligibilityConfig)
    weights: WeightConfig = field(default_factory=WeightConfig)
    spline: SplineConfig = field(default_factory=SplineConfig)
    transform: TransformConfig = field(default_factory=TransformConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    plot: PlotConfig = field(default_factory=PlotConfig)

    def __post_init__(self):
        for k in self.complexities:
            if int(k) < 3:
                raise ValueError(f"smoothing complexity must be >= 3, got {k}")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs ({self.n_jobs}) must be at least 1")
        if self.eligibility.min_obs < 1 or self.eligibility.min_distinct_ages < 1:
            raise ValueError("eligibility thresholds must be positive")
        if not 0.0 <= self.weights.se_floor_quantile <= 1.0:
            raise ValueError(f"se_floor_quantile ({self.weights.se_floor_quantile}) must be in [0, 1]")
        if self.weights.missing_se <= 0:
            raise ValueError(f"missing_se ({self.weights.missing_se}) must be positive")
        edges = list(self.summary.bucket_edges)
        if len(edges) < 2 or any(b <= a for a, b in zip(edges, edges[1:])):
            raise ValueError(f"bucket_edges must be strictly increasing, got {edges}")

    @property
    def run_root(self) -> Path:
        return Path(self.output_dir) / self.run_tag

    def sweep(self) -> list[tuple[str, int]]:
        """Explicit (group column, complexity) tuples, column-major."""
        return [(str(col), int(k)) for col in self.group_columns for k in self.complexities]

    def sweep_dir(self, group_column: str, complexity: int) -> Path:
        return self.run_root / group_column / f"k{int(complexity)}"
