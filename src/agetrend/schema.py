from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd

from .errors import SchemaError


logger = logging.getLogger(__name__)


AGE_COL = "assigned.age"
EFFECT_COL = "rep.effect"
SE_COL = "SE"
AUTISM_N_COL = "autism.N"
TOTAL_N_COL = "total.N"
TYPE_COL = "AorR"
MERGE_COL = "merge.figure"

CANONICAL_RENAME: Dict[str, str] = {
    "assigned_age": AGE_COL,
    "Assigned Age": AGE_COL,
    "assigned age": AGE_COL,
    "rep_effect": EFFECT_COL,
    "Rep Effect": EFFECT_COL,
    "rep effect": EFFECT_COL,
    "se": SE_COL,
    "Se": SE_COL,
    "autism_N": AUTISM_N_COL,
    "autism_n": AUTISM_N_COL,
    "total_N": TOTAL_N_COL,
    "total_n": TOTAL_N_COL,
    "aorr": TYPE_COL,
    "AORR": TYPE_COL,
    "merge_figure": MERGE_COL,
    "Merge Figure": MERGE_COL,
}

REQUIRED_COLUMNS = (AGE_COL, EFFECT_COL, SE_COL, TYPE_COL, MERGE_COL)
NUMERIC_COLUMNS = (AGE_COL, EFFECT_COL, SE_COL, AUTISM_N_COL, TOTAL_N_COL)
OPTIONAL_NUMERIC_COLUMNS = (AUTISM_N_COL, TOTAL_N_COL)


@dataclass(frozen=True)
class Observation:
    assigned_age: float
    rep_effect: float
    standard_error: Optional[float]
    autism_n: Optional[float]
    total_n: Optional[float]
    effect_type: str
    merge_figure: object

    @property
    def sample_size(self) -> Optional[float]:
        if self.total_n is not None:
            return self.total_n
        return self.autism_n


@dataclass
class SchemaValidationResult:
    missing_columns: list[str]

    @property
    def ok(self) -> bool:
        return not self.missing_columns


def canonicalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    rename = {c: CANONICAL_RENAME[c] for c in df.columns if c in CANONICAL_RENAME and CANONICAL_RENAME[c] not in df.columns}
    return df.rename(columns=rename).copy()


def validate_required_columns(df: pd.DataFrame, group_columns: Iterable[str] = ()) -> SchemaValidationResult:
    required = list(REQUIRED_COLUMNS) + [c for c in group_columns if c not in REQUIRED_COLUMNS]
    missing = [c for c in required if c not in df.columns]
    return SchemaValidationResult(missing_columns=missing)


def assert_required_columns(df: pd.DataFrame, group_columns: Iterable[str] = ()) -> None:
    v = validate_required_columns(df, group_columns)
    if not v.ok:
        raise SchemaError(v.missing_columns)


def normalize_core_types(df: pd.DataFrame, group_columns: Iterable[str] = ()) -> pd.DataFrame:
    out = df.copy()
    for c in OPTIONAL_NUMERIC_COLUMNS:
        if c not in out.columns:
            out[c] = np.nan
    for c in NUMERIC_COLUMNS:
        out[c] = pd.to_numeric(out[c], errors="coerce")

    out[TYPE_COL] = out[TYPE_COL].astype("string").str.strip()
    for c in group_columns:
        out[c] = out[c].astype("string").str.strip().replace("", pd.NA)
    return out


def _optional(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def group_observations(df: pd.DataFrame, group_column: str) -> Dict[str, list[Observation]]:
    """Build the group key -> observations mapping in one grouping pass.

    Rows with a missing group value are excluded; rows missing the age or the
    effect are dropped since both are required to fit.
    """
    assert_required_columns(df, [group_column])
    keyed = df[df[group_column].notna()]
    complete = keyed.dropna(subset=[AGE_COL, EFFECT_COL])
    n_dropped = len(keyed) - len(complete)
    if n_dropped:
        logger.info("Dropped %d rows missing %s or %s for column %s", n_dropped, AGE_COL, EFFECT_COL, group_column)

    groups: Dict[str, list[Observation]] = {}
    for key, g in complete.groupby(group_column, sort=True):
        groups[str(key)] = [
            Observation(
                assigned_age=float(row[AGE_COL]),
                rep_effect=float(row[EFFECT_COL]),
                standard_error=_optional(row[SE_COL]),
                autism_n=_optional(row[AUTISM_N_COL]) if AUTISM_N_COL in row else None,
                total_n=_optional(row[TOTAL_N_COL]) if TOTAL_N_COL in row else None,
                effect_type="" if pd.isna(row[TYPE_COL]) else str(row[TYPE_COL]),
                merge_figure=None if pd.isna(row[MERGE_COL]) else row[MERGE_COL],
            )
            for _, row in g.iterrows()
        ]
    return groups
