import numpy as np
import pandas as pd
import pytest

from agetrend.schema import Observation


def make_observations(ages, effects, se=0.1, effect_type="ratio", merge_figure="fig1", total_n=40.0):
    ses = se if isinstance(se, (list, tuple, np.ndarray)) else [se] * len(ages)
    return [
        Observation(
            assigned_age=float(a),
            rep_effect=float(e),
            standard_error=s,
            autism_n=None,
            total_n=total_n,
            effect_type=effect_type,
            merge_figure=merge_figure,
        )
        for a, e, s in zip(ages, effects, ses)
    ]


@pytest.fixture
def flat_ratio_observations():
    ages = list(range(5, 55, 5))
    return make_observations(ages, [2.0] * len(ages), se=0.1)


@pytest.fixture
def effects_df():
    rng = np.random.default_rng(0)
    rows = []

    # A: eligible ratio group.
    for age in range(5, 55, 5):
        rows.append(
            {
                "condition": "A",
                "assigned.age": float(age),
                "rep.effect": float(np.exp(0.01 * age + rng.normal(0, 0.05))),
                "SE": 0.1,
                "autism.N": 30.0,
                "total.N": 60.0,
                "AorR": "ratio",
                "merge.figure": "fig1",
            }
        )

    # B: too few observations.
    for age in (10, 20, 30, 40, 50):
        rows.append(
            {"condition": "B", "assigned.age": float(age), "rep.effect": 1.5, "SE": 0.2,
             "autism.N": 10.0, "total.N": 20.0, "AorR": "ratio", "merge.figure": "fig2"}
        )

    # C: enough rows, too few distinct ages.
    for age in (10, 10, 20, 20, 30, 30):
        rows.append(
            {"condition": "C", "assigned.age": float(age), "rep.effect": 0.3, "SE": 0.2,
             "autism.N": 10.0, "total.N": 20.0, "AorR": "difference", "merge.figure": "fig3"}
        )

    # D: ratio group with a non-positive effect.
    for age, eff in zip((10, 15, 20, 25, 30, 35, 40), (1.2, 1.1, -0.5, 1.3, 1.4, 1.2, 1.1)):
        rows.append(
            {"condition": "D", "assigned.age": float(age), "rep.effect": eff, "SE": 0.15,
             "autism.N": 10.0, "total.N": 20.0, "AorR": "Ratio", "merge.figure": "fig4"}
        )

    # E: difference-scale group with some missing SEs.
    for i, age in enumerate(range(10, 65, 5)):
        rows.append(
            {
                "condition": "E",
                "assigned.age": float(age),
                "rep.effect": float(0.02 * age + rng.normal(0, 0.1)),
                "SE": np.nan if i % 4 == 0 else 0.05 + 0.01 * i,
                "autism.N": np.nan,
                "total.N": float(20 + i),
                "AorR": "difference",
                "merge.figure": "fig5",
            }
        )

    # Rows without a condition are never grouped.
    rows.append(
        {"condition": np.nan, "assigned.age": 30.0, "rep.effect": 1.0, "SE": 0.1,
         "autism.N": 5.0, "total.N": 10.0, "AorR": "ratio", "merge.figure": "fig1"}
    )
    return pd.DataFrame(rows)
