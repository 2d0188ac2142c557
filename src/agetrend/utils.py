from __future__ import annotations

import json
import re
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any

import numpy as np


_SLUG_RE = re.compile(r"[^0-9a-zA-Z]+")


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def json_dump_file(path: Path, value: Any) -> None:
    ensure_dir(path.parent)
    payload = asdict(value) if is_dataclass(value) else value
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)


def slugify(value: object) -> str:
    slug = _SLUG_RE.sub("_", str(value)).strip("_").lower()
    return slug or "group"


def format_ci(estimate: float, lower: float, upper: float, decimals: int = 2, marker: str = "") -> str:
    """Render 'estimate (lower to upper)' with an optional trailing marker."""
    if not all(np.isfinite([estimate, lower, upper])):
        return "NA"
    return f"{estimate:.{decimals}f} ({lower:.{decimals}f} to {upper:.{decimals}f}){marker}"


def first_present(values, default=None):
    for v in values:
        if v is None:
            continue
        if isinstance(v, float) and not np.isfinite(v):
            continue
        return v
    return default
