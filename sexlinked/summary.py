import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _as_keys(group_keys):
    return [group_keys] if isinstance(group_keys, str) else list(group_keys)


def grouped_moments(table, value_col, group_keys, sex_col="Sex"):
    """Count, mean and sample variance of ``value_col`` per group key and sex (long format).

    Missing values are ignored; a group of one observation has a NaN variance.
    """
    keys = _as_keys(group_keys)
    moments = (
        table.groupby(keys + [sex_col], sort=True, observed=True)[value_col]
        .agg(["count", "mean", "var"])
        .rename(columns={"count": "n", "var": "variance"})
    )
    return moments[moments["n"] > 0]


def summarize(table, value_col, group_keys, sexes, sex_col="Sex"):
    """Mean and SEM of ``value_col`` per group key, one column pair per sex.

    Returns one row per group key with ``Mean_<sex>``, ``SEM_<sex>`` and
    ``N_<sex>`` for every sex in ``sexes``. Keys lacking observations for any
    of the sexes are dropped. SEM is the sample standard deviation over
    sqrt(n), so it is NaN for a single observation.
    """
    keys = _as_keys(group_keys)
    moments = grouped_moments(table, value_col, keys, sex_col=sex_col)
    moments = moments[moments.index.get_level_values(sex_col).isin(sexes)]
    moments = moments.assign(sem=np.sqrt(moments["variance"]) / np.sqrt(moments["n"]))

    wide = moments[["mean", "sem", "n"]].unstack(sex_col)
    columns = {}
    for stat, prefix in (("mean", "Mean"), ("sem", "SEM"), ("n", "N")):
        for sex in sexes:
            col = (stat, sex)
            columns[f"{prefix}_{sex}"] = wide[col] if col in wide.columns else pd.Series(np.nan, index=wide.index)
    wide = pd.DataFrame(columns, index=wide.index)

    mean_cols = [f"Mean_{sex}" for sex in sexes]
    complete = wide[mean_cols].notna().all(axis=1)
    n_incomplete = int((~complete).sum())
    if n_incomplete:
        logger.info(
            f"Dropped {n_incomplete} of {len(wide)} {'/'.join(keys)} groups without data for every sex"
        )
    wide = wide.loc[complete].copy()
    for sex in sexes:
        wide[f"N_{sex}"] = wide[f"N_{sex}"].astype(np.int64)
    return wide
