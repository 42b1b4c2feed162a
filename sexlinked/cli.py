"""Command line entrypoint for classifying sex-linked scaffolds and loci."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from . import config
from . import iox as io
from . import pipeline

logger = logging.getLogger(__name__)


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Expected an integer value") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError("Value must be a non-negative integer")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Expected a numeric value") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed


# CLI flag destination -> configuration key
_OVERRIDES = {
    "min_sites": "MIN_SITES",
    "alpha": "SIGNIFICANCE_ALPHA",
    "het_p_max": "HET_P_MAX",
    "het_max_mean": "HET_MAX_HETEROGAMETIC_MEAN",
    "depth_max_mean": "DEPTH_MAX_HETEROGAMETIC_MEAN",
    "depth_max_homogametic_mean": "DEPTH_MAX_HOMOGAMETIC_MEAN",
    "depth_min_ratio": "DEPTH_MIN_RATIO",
    "heterogametic_sex": "HETEROGAMETIC_SEX",
    "homogametic_sex": "HOMOGAMETIC_SEX",
    "singleton_policy": "SINGLETON_POLICY",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sexlinked",
        description=(
            "Flag candidate sex-linked scaffolds from per-sex heterozygosity and "
            "candidate sex-limited loci from per-sex sequencing depth."
        ),
    )
    parser.add_argument("--sex-metadata", required=True, help="TSV with Individual and Sex columns.")
    parser.add_argument("--heterozygosity", help="TSV of per-scaffold, per-individual homozygosity counts.")
    parser.add_argument("--depth", help="Wide TSV of per-site depth, one column per individual.")
    parser.add_argument("--out-dir", default=".", help="Directory for result tables (default: current directory).")
    parser.add_argument("--config", help="JSON file of configuration overrides; flags take precedence.")

    thresholds = parser.add_argument_group("thresholds")
    thresholds.add_argument("--min-sites", type=_non_negative_int,
                            help="Drop heterozygosity records with N at or below this value.")
    thresholds.add_argument("--alpha", type=_positive_float,
                            help="Significance level used for the significance label.")
    thresholds.add_argument("--het-p-max", type=_positive_float,
                            help="Maximum p-value for a candidate X/Z-linked scaffold.")
    thresholds.add_argument("--het-max-mean", type=_positive_float,
                            help="Heterogametic mean heterozygosity must be below this value.")
    thresholds.add_argument("--depth-max-mean", type=_positive_float,
                            help="Loci with heterogametic mean depth at or above this value are removed.")
    thresholds.add_argument("--depth-max-homogametic-mean", type=_positive_float,
                            help="Homogametic mean depth must be below this value.")
    thresholds.add_argument("--depth-min-ratio", type=_positive_float,
                            help="Heterogametic/homogametic depth ratio must exceed this value.")

    sexes = parser.add_argument_group("sex orientation")
    sexes.add_argument("--heterogametic-sex", help="Sex label of the heterogametic sex (default: F).")
    sexes.add_argument("--homogametic-sex", help="Sex label of the homogametic sex (default: M).")
    parser.add_argument("--singleton-policy", choices=config.SINGLETON_POLICIES,
                        help="How to handle groups where one sex has a single observation.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    if not args.heterozygosity and not args.depth:
        build_parser().error("at least one of --heterozygosity or --depth is required")
    return args


def build_ctx(args: argparse.Namespace) -> dict:
    overrides = config.load_config_file(args.config) if args.config else {}
    for dest, key in _OVERRIDES.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides[key] = value
    return config.get_ctx(overrides)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        ctx = build_ctx(args)
        result = pipeline.run_pipeline(
            args.sex_metadata,
            het_path=args.heterozygosity,
            depth_path=args.depth,
            out_dir=args.out_dir,
            ctx=ctx,
        )
    except (io.InputError, config.ConfigError) as e:
        logger.error(str(e))
        return 2

    counts = result.counts()
    logger.info(
        f"Done: {counts['xz_candidates'] or 0} candidate X/Z-linked scaffolds, "
        f"{counts['wy_candidates'] or 0} candidate W/Y-linked loci"
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI execution
    sys.exit(main())
