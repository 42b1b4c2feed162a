"""Per-group two-sample tests of equal means between the two sexes.

Tests are computed from grouped sufficient statistics (count, mean, sample
variance) so no per-group sample vectors are held in memory and the results
do not depend on group order.
"""
import logging

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from .summary import grouped_moments, _as_keys

logger = logging.getLogger(__name__)

METHOD_WELCH = "welch_t"
METHOD_ONE_SAMPLE = "one_sample_t"
METHOD_UNTESTED = "untested"

REASON_SINGLETON = "singleton_group"
REASON_INSUFFICIENT = "insufficient_observations"
REASON_ZERO_VARIANCE = "zero_variance"

RESULT_COLUMNS = ["t_stat", "df", "p_value", "q_value", "method", "reason"]


def welch_from_moments(n1, m1, v1, n2, m2, v2, singleton_policy="untested"):
    """Welch's t-test for arrays of group moments.

    Where both groups have at least two observations a Welch test is run.
    Where exactly one group is a singleton, ``singleton_policy`` decides:
    ``"untested"`` marks the row untested, ``"one_sample"`` tests the larger
    group against the singleton value with n - 1 degrees of freedom.
    Rows without a usable standard error are marked untested with a reason.
    """
    n1, m1, v1 = (np.asarray(a, dtype=float) for a in (n1, m1, v1))
    n2, m2, v2 = (np.asarray(a, dtype=float) for a in (n2, m2, v2))
    size = n1.shape[0]

    t_stat = np.full(size, np.nan)
    dof = np.full(size, np.nan)
    p_value = np.full(size, np.nan)
    method = np.full(size, METHOD_UNTESTED, dtype=object)
    reason = np.full(size, "", dtype=object)

    both_multi = (n1 >= 2) & (n2 >= 2)
    with np.errstate(divide="ignore", invalid="ignore"):
        a1, a2 = v1 / n1, v2 / n2
        se2 = a1 + a2

    welch = both_multi & (se2 > 0)
    if welch.any():
        res = stats.ttest_ind_from_stats(
            m1[welch], np.sqrt(v1[welch]), n1[welch],
            m2[welch], np.sqrt(v2[welch]), n2[welch],
            equal_var=False,
        )
        t_stat[welch] = res.statistic
        p_value[welch] = res.pvalue
        dof[welch] = se2[welch] ** 2 / (a1[welch] ** 2 / (n1[welch] - 1) + a2[welch] ** 2 / (n2[welch] - 1))
        method[welch] = METHOD_WELCH
    reason[both_multi & ~welch] = REASON_ZERO_VARIANCE

    singleton = ((n1 == 1) & (n2 >= 2)) | ((n2 == 1) & (n1 >= 2))
    reason[(n1 == 1) & (n2 == 1)] = REASON_INSUFFICIENT
    if singleton_policy == "one_sample":
        big_n = np.where(n1 >= 2, n1, n2)
        big_v = np.where(n1 >= 2, v1, v2)
        one = singleton & (big_v > 0)
        if one.any():
            t = (m1[one] - m2[one]) / np.sqrt(big_v[one] / big_n[one])
            t_stat[one] = t
            dof[one] = big_n[one] - 1
            p_value[one] = 2 * stats.t.sf(np.abs(t), big_n[one] - 1)
            method[one] = METHOD_ONE_SAMPLE
            reason[one] = REASON_SINGLETON
        reason[singleton & ~one] = REASON_ZERO_VARIANCE
    else:
        reason[singleton] = REASON_SINGLETON

    return pd.DataFrame(
        {"t_stat": t_stat, "df": dof, "p_value": p_value, "method": method, "reason": reason}
    )


def add_q_values(results, method="fdr_bh"):
    results = results.copy()
    results["q_value"] = np.nan
    mask = results["p_value"].notna()
    if int(mask.sum()) > 0:
        _, q, _, _ = multipletests(results.loc[mask, "p_value"], method=method)
        results.loc[mask, "q_value"] = q
    return results


def compare_groups(table, value_col, group_keys, sexes, sex_col="Sex", keys=None,
                   singleton_policy="untested", fdr_method="fdr_bh"):
    """Test for a difference in mean ``value_col`` between ``sexes[0]`` and ``sexes[1]`` per group.

    Only groups with data from both sexes are tested; when ``keys`` is given
    (e.g. the index of a summary table) the output is restricted to those
    groups. The t statistic is oriented as sexes[0] minus sexes[1].
    """
    first, second = sexes
    moments = grouped_moments(table, value_col, group_keys, sex_col=sex_col)
    wide = moments.unstack(sex_col)
    for sex in sexes:
        if ("n", sex) not in wide.columns:
            for stat in ("n", "mean", "variance"):
                wide[(stat, sex)] = np.nan
    complete = wide[("n", first)].notna() & wide[("n", second)].notna()
    wide = wide.loc[complete]
    if keys is not None:
        wide = wide.loc[wide.index.intersection(pd.Index(keys), sort=False)]

    res = welch_from_moments(
        wide[("n", first)], wide[("mean", first)], wide[("variance", first)],
        wide[("n", second)], wide[("mean", second)], wide[("variance", second)],
        singleton_policy=singleton_policy,
    )
    res.index = wide.index
    res = add_q_values(res, method=fdr_method)[RESULT_COLUMNS]

    label = "/".join(_as_keys(group_keys))
    counts = res.groupby(["method", "reason"]).size()
    logger.info(
        f"Tested {len(res)} {label} groups on {value_col}: "
        + ", ".join(f"{m}{'(' + r + ')' if r else ''}={n}" for (m, r), n in counts.items())
    )
    return res

