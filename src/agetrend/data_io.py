from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pandas as pd

from .schema import assert_required_columns, canonicalize_columns, normalize_core_types


def _read_table(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        return pd.read_excel(path)
    if suffix == ".csv":
        # Some exports are semicolon separated.
        df = pd.read_csv(path)
        if len(df.columns) == 1:
            return pd.read_csv(path, sep=";")
        return df
    raise ValueError(f"Unsupported file format: {path}")


def load_effects_table(path: str | Path, group_columns: Iterable[str] = ()) -> pd.DataFrame:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)
    group_columns = list(group_columns)
    df = canonicalize_columns(_read_table(p))
    assert_required_columns(df, group_columns)
    return normalize_core_types(df, group_columns)
