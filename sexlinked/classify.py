import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SIGNIFICANT = "significant"
NOT_SIGNIFICANT = "not significant"
UNTESTED = "untested"


def label_significance(p_values, alpha=0.001):
    """'significant' for p < alpha, 'not significant' for p >= alpha, 'untested' where p is missing."""
    p = pd.to_numeric(pd.Series(p_values), errors="coerce").to_numpy(dtype=float)
    labels = np.select([np.isnan(p), p < alpha], [UNTESTED, SIGNIFICANT], default=NOT_SIGNIFICANT)
    index = p_values.index if isinstance(p_values, pd.Series) else None
    return pd.Series(labels, index=index, name="Significance")


def join_results(summary, tests):
    """Summary table joined with test results on the group key."""
    return summary.join(tests, how="inner")


def annotate_heterozygosity(results, ctx):
    out = results.copy()
    out["Significance"] = label_significance(out["p_value"], ctx["SIGNIFICANCE_ALPHA"])
    return out


def classify_heterozygosity(results, ctx):
    """Candidate X/Z-linked scaffolds.

    The heterogametic sex is hemizygous on the sex chromosome, so its observed
    heterozygosity there is close to zero. A scaffold is kept when the
    difference between the sexes is significant and the heterogametic mean is
    below the absolute threshold.
    """
    het = ctx["HETEROGAMETIC_SEX"]
    annotated = results if "Significance" in results.columns else annotate_heterozygosity(results, ctx)
    keep = (annotated["p_value"] <= ctx["HET_P_MAX"]) & (
        annotated[f"Mean_{het}"] < ctx["HET_MAX_HETEROGAMETIC_MEAN"]
    )
    candidates = annotated.loc[keep].sort_values("p_value", kind="mergesort")
    logger.info(
        f"{len(candidates)} of {len(annotated)} scaffolds classified as candidate X/Z-linked "
        f"(p <= {ctx['HET_P_MAX']}, Mean_{het} < {ctx['HET_MAX_HETEROGAMETIC_MEAN']})"
    )
    return candidates


def annotate_depth(results, ctx):
    het, hom = ctx["HETEROGAMETIC_SEX"], ctx["HOMOGAMETIC_SEX"]
    out = results.copy()
    out["Significance"] = label_significance(out["p_value"], ctx["SIGNIFICANCE_ALPHA"])
    with np.errstate(divide="ignore", invalid="ignore"):
        out["Ratio"] = out[f"Mean_{het}"].to_numpy(dtype=float) / out[f"Mean_{hom}"].to_numpy(dtype=float)
    return out


def classify_depth(results, ctx):
    """Candidate W/Y-linked loci.

    A sex-limited chromosome is covered in the heterogametic sex and nearly
    absent in the other. Loci with a very high heterogametic mean depth are
    removed first; the rest are kept when the homogametic mean is near zero
    and the depth ratio is large. A zero homogametic mean gives an infinite
    ratio.
    """
    het, hom = ctx["HETEROGAMETIC_SEX"], ctx["HOMOGAMETIC_SEX"]
    annotated = results if "Ratio" in results.columns else annotate_depth(results, ctx)
    in_range = annotated[annotated[f"Mean_{het}"] < ctx["DEPTH_MAX_HETEROGAMETIC_MEAN"]]
    keep = (in_range[f"Mean_{hom}"] < ctx["DEPTH_MAX_HOMOGAMETIC_MEAN"]) & (
        in_range["Ratio"] > ctx["DEPTH_MIN_RATIO"]
    )
    candidates = in_range.loc[keep].sort_values("Ratio", ascending=False, kind="mergesort")
    logger.info(
        f"{len(candidates)} of {len(annotated)} loci classified as candidate W/Y-linked "
        f"({len(annotated) - len(in_range)} removed with Mean_{het} >= {ctx['DEPTH_MAX_HETEROGAMETIC_MEAN']})"
    )
    return candidates
