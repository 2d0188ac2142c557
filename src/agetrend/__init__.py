"""Weighted age-trend meta-regression by condition group."""

from .config import PipelineConfig
from .pipeline import process_group, run_condition_sweep, run_pipeline, run_sweeps

__all__ = ["PipelineConfig", "process_group", "run_condition_sweep", "run_pipeline", "run_sweeps"]
