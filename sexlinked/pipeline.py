"""Heterozygosity and depth passes from loaded tables to candidate sex-linked tables."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from . import classify
from . import config
from . import iox as io
from . import summary
from . import testing

logger = logging.getLogger(__name__)

HET_VALUE_COLUMN = "ObservedHeterozygosityProportion"
DEPTH_VALUE_COLUMN = "Depth"

OUTPUT_FILES = {
    "het_results": "heterozygosity_by_scaffold.tsv",
    "depth_results": "depth_by_locus.tsv",
    "xz_candidates": "candidate_xz_linked_scaffolds.tsv",
    "wy_candidates": "candidate_wy_linked_loci.tsv",
}
RUN_SUMMARY_FILE = "run_summary.json"


@dataclass
class PipelineResult:
    heterozygosity: Optional[pd.DataFrame] = None
    depth: Optional[pd.DataFrame] = None
    het_results: Optional[pd.DataFrame] = None
    depth_results: Optional[pd.DataFrame] = None
    xz_candidates: Optional[pd.DataFrame] = None
    wy_candidates: Optional[pd.DataFrame] = None

    def counts(self):
        return {
            name: (None if df is None else int(len(df)))
            for name, df in vars(self).items()
        }


def summarize_and_test(table, value_col, group_keys, ctx):
    """Summary per group and sex joined with the two-sample test for that group."""
    sexes = config.sex_order(ctx)
    wide = summary.summarize(table, value_col, group_keys, sexes)
    tests = testing.compare_groups(
        table, value_col, group_keys, sexes,
        keys=wide.index,
        singleton_policy=ctx["SINGLETON_POLICY"],
        fdr_method=ctx["FDR_METHOD"],
    )
    return classify.join_results(wide, tests)


def run_analysis(sex_df, het_raw=None, depth_raw=None, ctx=None):
    """Run both passes on raw in-memory tables; either measurement table may be None."""
    ctx = ctx or config.get_ctx()
    config.validate_ctx(ctx)
    sex_df = io.prepare_sex_metadata(sex_df, ctx)
    result = PipelineResult()

    if het_raw is not None:
        result.heterozygosity = io.prepare_heterozygosity(het_raw, sex_df, ctx)
        joined = summarize_and_test(result.heterozygosity, HET_VALUE_COLUMN, ["Scaffold"], ctx)
        result.het_results = classify.annotate_heterozygosity(joined, ctx)
        result.xz_candidates = classify.classify_heterozygosity(result.het_results, ctx)

    if depth_raw is not None:
        result.depth = io.prepare_depth(depth_raw, sex_df, ctx)
        joined = summarize_and_test(result.depth, DEPTH_VALUE_COLUMN, ["Locus"], ctx)
        result.depth_results = classify.annotate_depth(joined, ctx)
        result.wy_candidates = classify.classify_depth(result.depth_results, ctx)

    return result


def write_results(result, out_dir, ctx):
    os.makedirs(out_dir, exist_ok=True)
    written = {}
    for attr, filename in OUTPUT_FILES.items():
        df = getattr(result, attr)
        if df is None:
            continue
        path = os.path.join(out_dir, filename)
        io.atomic_write_tsv(path, df)
        written[attr] = path
        logger.info(f"Wrote {len(df)} rows to {path}")

    io.atomic_write_json(
        os.path.join(out_dir, RUN_SUMMARY_FILE),
        {"config": ctx, "rows": result.counts(), "files": written},
    )
    return written


def run_pipeline(sex_path, het_path=None, depth_path=None, out_dir=".", ctx=None):
    if het_path is None and depth_path is None:
        raise ValueError("At least one of the heterozygosity or depth tables is required")
    ctx = ctx or config.get_ctx()
    sex_raw = io.read_tsv(sex_path, "Sex metadata")
    het_raw = io.read_tsv(het_path, "Heterozygosity") if het_path else None
    depth_raw = io.read_tsv(depth_path, "Depth") if depth_path else None

    result = run_analysis(sex_raw, het_raw, depth_raw, ctx)
    write_results(result, out_dir, ctx)
    return result
