import numpy as np
import pandas as pd
import pytest
from scipy import stats

from sexlinked import summary
from sexlinked import testing


def _long(groups):
    """Long table from {key: {"F": [...], "M": [...]}}."""
    rows = []
    for key, by_sex in groups.items():
        for sex, values in by_sex.items():
            for i, v in enumerate(values):
                rows.append({"Locus": key, "Individual": f"{sex}{i}", "Sex": sex, "value": v})
    return pd.DataFrame(rows)


def test_matches_scipy_welch():
    f = [0.9, 0.89, 0.91, 0.87]
    m = [0.25, 0.26, 0.31]
    res = testing.compare_groups(_long({"k": {"F": f, "M": m}}), "value", ["Locus"], ("F", "M"))

    expected = stats.ttest_ind(f, m, equal_var=False)
    row = res.loc["k"]
    assert row["method"] == testing.METHOD_WELCH
    assert row["reason"] == ""
    assert row["t_stat"] == pytest.approx(expected.statistic)
    assert row["p_value"] == pytest.approx(expected.pvalue)


def test_welch_degrees_of_freedom():
    f = [1.0, 2.0, 4.0]
    m = [10.0, 11.0, 15.0, 9.0, 13.0]
    res = testing.compare_groups(_long({"k": {"F": f, "M": m}}), "value", "Locus", ("F", "M"))
    a1, a2 = np.var(f, ddof=1) / 3, np.var(m, ddof=1) / 5
    expected_df = (a1 + a2) ** 2 / (a1 ** 2 / 2 + a2 ** 2 / 4)
    assert res.loc["k", "df"] == pytest.approx(expected_df)


def test_single_male_observation_is_untested_by_default():
    table = _long({"k": {"F": [40.0, 41.0, 39.0], "M": [0.5]}})
    res = testing.compare_groups(table, "value", ["Locus"], ("F", "M"))
    row = res.loc["k"]
    assert row["method"] == testing.METHOD_UNTESTED
    assert row["reason"] == testing.REASON_SINGLETON
    assert np.isnan(row["p_value"])
    assert np.isnan(row["q_value"])


def test_single_observation_one_sample_fallback():
    f = [40.0, 41.0, 39.0, 42.0]
    table = _long({"k": {"F": f, "M": [0.5]}})
    res = testing.compare_groups(table, "value", ["Locus"], ("F", "M"), singleton_policy="one_sample")

    expected = stats.ttest_1samp(f, 0.5)
    row = res.loc["k"]
    assert row["method"] == testing.METHOD_ONE_SAMPLE
    assert row["reason"] == testing.REASON_SINGLETON
    assert row["df"] == 3
    assert row["t_stat"] == pytest.approx(expected.statistic)
    assert row["p_value"] == pytest.approx(expected.pvalue)


def test_one_sample_fallback_keeps_orientation():
    m = [40.0, 41.0, 39.0]
    table = _long({"k": {"F": [0.5], "M": m}})
    res = testing.compare_groups(table, "value", ["Locus"], ("F", "M"), singleton_policy="one_sample")
    assert res.loc["k", "t_stat"] < 0


def test_both_singletons_and_zero_variance_are_labelled():
    table = _long(
        {
            "single": {"F": [1.0], "M": [2.0]},
            "flat": {"F": [3.0, 3.0], "M": [3.0, 3.0]},
            "flat_single": {"F": [5.0, 5.0], "M": [1.0]},
        }
    )
    res = testing.compare_groups(table, "value", ["Locus"], ("F", "M"), singleton_policy="one_sample")
    assert res.loc["single", "reason"] == testing.REASON_INSUFFICIENT
    assert res.loc["flat", "reason"] == testing.REASON_ZERO_VARIANCE
    assert res.loc["flat_single", "reason"] == testing.REASON_ZERO_VARIANCE
    assert (res["method"] == testing.METHOD_UNTESTED).all()
    assert res["p_value"].isna().all()


def test_zero_variance_in_one_group_is_still_testable():
    table = _long({"k": {"F": [40.0, 42.0], "M": [0.0, 0.0, 0.0]}})
    res = testing.compare_groups(table, "value", ["Locus"], ("F", "M"))
    assert res.loc["k", "method"] == testing.METHOD_WELCH
    assert res.loc["k", "p_value"] < 0.05


def test_restricted_to_summary_keys():
    table = _long(
        {
            "both": {"F": [1.0, 2.0], "M": [5.0, 6.0]},
            "female_only": {"F": [1.0, 2.0]},
        }
    )
    wide = summary.summarize(table, "value", ["Locus"], ("F", "M"))
    res = testing.compare_groups(table, "value", ["Locus"], ("F", "M"), keys=wide.index)
    assert list(res.index) == ["both"]
    assert list(res.columns) == testing.RESULT_COLUMNS


def test_q_values_only_for_tested_rows():
    table = _long(
        {
            "a": {"F": [1.0, 2.0, 3.0], "M": [5.0, 6.0, 7.0]},
            "b": {"F": [1.0, 2.0, 3.0], "M": [1.5, 2.5, 3.5]},
            "c": {"F": [1.0, 2.0], "M": [4.0]},
        }
    )
    res = testing.compare_groups(table, "value", ["Locus"], ("F", "M"))
    assert res.loc[["a", "b"], "q_value"].notna().all()
    assert np.isnan(res.loc["c", "q_value"])
    assert (res.loc[["a", "b"], "q_value"] >= res.loc[["a", "b"], "p_value"]).all()


def test_welch_from_moments_vectorised():
    out = testing.welch_from_moments(
        n1=[3, 1], m1=[1.0, 1.0], v1=[1.0, np.nan],
        n2=[3, 1], m2=[4.0, 2.0], v2=[1.0, np.nan],
    )
    assert list(out["method"]) == [testing.METHOD_WELCH, testing.METHOD_UNTESTED]
    assert out.loc[0, "df"] == pytest.approx(4.0)
