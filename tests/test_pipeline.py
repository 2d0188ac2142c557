import numpy as np
import pandas as pd
import pytest

from agetrend.config import PipelineConfig
from agetrend.errors import EligibilityError, SchemaError
from agetrend.pipeline import (
    CURVE_COLUMNS,
    check_eligibility,
    dense_age_grid,
    process_group,
    run_condition_sweep,
    run_sweeps,
)

from conftest import make_observations


@pytest.fixture
def cfg():
    return PipelineConfig(group_columns=["condition"], complexities=[4])


def test_eligibility_thresholds():
    check_eligibility(make_observations(range(6), [1.0] * 6))
    with pytest.raises(EligibilityError):
        check_eligibility(make_observations(range(5), [1.0] * 5))
    with pytest.raises(EligibilityError):
        check_eligibility(make_observations([1, 1, 2, 2, 3, 3], [1.0] * 6))


def test_dense_grid_stops_at_horizon_or_cap():
    g = dense_age_grid(5, 50)
    assert g.size == 400 and g[0] == 5 and g[-1] == 60
    assert dense_age_grid(30, 75)[-1] == 80


def test_dense_grid_is_empty_when_group_starts_past_the_cap():
    assert dense_age_grid(82, 92).size == 0
    assert dense_age_grid(80, 85).size == 0


def test_group_older_than_the_cap_keeps_bucket_rows(cfg):
    ages = range(82, 93)
    obs = make_observations(ages, [1.5 + 0.01 * (a - 82) for a in ages], se=0.1)
    r = process_group("late", obs, 4, cfg)

    assert r.ok
    assert r.curve.empty
    assert r.band.age.size == 0
    assert r.buckets["AgeGroup"].tolist() == ["80-90", "90-100"]
    assert r.buckets["Median_age"].between(82, 99).all()


def test_flat_ratio_group_end_to_end(flat_ratio_observations, cfg):
    r = process_group("ASD", flat_ratio_observations, 4, cfg)
    assert r.ok
    assert r.policy.null_value == 1.0
    assert r.curve["fit"].to_numpy() == pytest.approx(np.full(400, 2.0), abs=1e-6)
    assert ((r.curve["upper"] - r.curve["lower"]) < 1e-3).all()
    assert r.curve["extrapolated"].tolist() == (r.curve["Age"] > 50).tolist()
    assert r.curve["Age"].max() == pytest.approx(60.0)
    assert (r.curve["merge.figure"] == "fig1").all()
    assert (r.curve["type"] == "ratio").all()


def test_sweep_skips_ineligible_and_failed_groups(effects_df, cfg):
    out = run_condition_sweep(effects_df, "condition", 4, cfg)

    assert set(out.curve_table["label"]) == {"A", "E"}
    assert set(out.bucket_table["Condition"]) == {"A", "E"}
    reasons = dict(zip(out.skipped["Condition"], out.skipped["reason"]))
    assert set(reasons) == {"B", "C", "D"}
    assert reasons["B"].startswith("eligibility")
    assert reasons["C"].startswith("eligibility")
    assert reasons["D"].startswith("fit")
    assert len(out.curve_table) == 800
    assert set(CURVE_COLUMNS) <= set(out.curve_table.columns)


def test_sweep_invariants(effects_df, cfg):
    out = run_condition_sweep(effects_df, "condition", 4, cfg)
    curve = out.curve_table

    assert (curve["lower"] <= curve["fit"] + 1e-12).all()
    assert (curve["fit"] <= curve["upper"] + 1e-12).all()
    assert curve["se.fit"].to_numpy() == pytest.approx(((curve["upper"] - curve["lower"]) / (2 * 1.96)).to_numpy())

    a = curve[curve["label"] == "A"]
    assert (a["fit"] > 0).all() and (a["lower"] > 0).all()
    assert (a["merge.figure"] == "fig1").all()

    max_age = effects_df.groupby("condition")["assigned.age"].max()
    for label, g in curve.groupby("label"):
        assert (g["extrapolated"] == (g["Age"] > max_age[label])).all()
        assert g["Age"].max() <= min(max_age[label] + 10, 80) + 1e-9

    e = curve[curve["label"] == "E"]
    assert (e["upper"] <= 5.0).all()

    a_buckets = out.bucket_table[out.bucket_table["Condition"] == "A"]
    estimates = a_buckets["95% CI (median)"].str.split(" ").str[0].astype(float)
    assert (estimates > 0).all()


def test_sweep_is_idempotent(effects_df, cfg):
    first = run_condition_sweep(effects_df, "condition", 4, cfg)
    second = run_condition_sweep(effects_df, "condition", 4, cfg)
    pd.testing.assert_frame_equal(first.curve_table, second.curve_table)
    pd.testing.assert_frame_equal(first.bucket_table, second.bucket_table)


def test_parallel_sweep_matches_sequential(effects_df):
    seq = run_condition_sweep(effects_df, "condition", 4, PipelineConfig(complexities=[4]))
    par = run_condition_sweep(effects_df, "condition", 4, PipelineConfig(complexities=[4], n_jobs=2))
    pd.testing.assert_frame_equal(seq.curve_table, par.curve_table)
    pd.testing.assert_frame_equal(seq.bucket_table, par.bucket_table)


def test_missing_group_column_fails_fast(effects_df, cfg):
    with pytest.raises(SchemaError) as exc:
        run_condition_sweep(effects_df, "diagnosis", 4, cfg)
    assert "diagnosis" in str(exc.value)


def test_whole_sweep_parallel_matches_sequential(effects_df):
    effects_df = effects_df.assign(cohort=effects_df["condition"].map({"A": "x", "E": "x", "B": "y"}))
    kw = dict(group_columns=["condition", "cohort"], complexities=[3, 4])
    seq = run_sweeps(effects_df, PipelineConfig(**kw))
    par = run_sweeps(effects_df, PipelineConfig(n_jobs=2, **kw))

    assert [(s.group_column, s.complexity) for s in seq] == list(PipelineConfig(**kw).sweep())
    assert [(s.group_column, s.complexity) for s in par] == [(s.group_column, s.complexity) for s in seq]
    for a, b in zip(seq, par):
        pd.testing.assert_frame_equal(a.curve_table, b.curve_table)
        pd.testing.assert_frame_equal(a.bucket_table, b.bucket_table)
        pd.testing.assert_frame_equal(a.skipped, b.skipped)

    single = run_condition_sweep(effects_df, "condition", 4, PipelineConfig(**kw))
    from_sweep = next(s for s in seq if (s.group_column, s.complexity) == ("condition", 4))
    pd.testing.assert_frame_equal(single.curve_table, from_sweep.curve_table)
