import json
import numbers

DEFAULTS = {
    # Heterozygosity records with N_SITES <= MIN_SITES are dropped before summarising.
    "MIN_SITES": 100,
    # Missing genotype depth is written as -1 and counted as zero coverage.
    "DEPTH_MISSING_SENTINEL": -1,
    "DEPTH_MISSING_FILL": 0,
    "SIGNIFICANCE_ALPHA": 0.001,
    "HET_P_MAX": 0.001,
    "HET_MAX_HETEROGAMETIC_MEAN": 0.05,
    # Loci above this mean depth are usually collapsed repeats.
    "DEPTH_MAX_HETEROGAMETIC_MEAN": 110,
    "DEPTH_MAX_HOMOGAMETIC_MEAN": 2,
    "DEPTH_MIN_RATIO": 20,
    "HETEROGAMETIC_SEX": "F",
    "HOMOGAMETIC_SEX": "M",
    "SINGLETON_POLICY": "untested",
    "FDR_METHOD": "fdr_bh",
    "LOCUS_SEPARATOR": "_",
}

SINGLETON_POLICIES = ("untested", "one_sample")


class ConfigError(ValueError):
    pass


_NUMERIC_KEYS = (
    "MIN_SITES",
    "DEPTH_MISSING_SENTINEL",
    "DEPTH_MISSING_FILL",
    "SIGNIFICANCE_ALPHA",
    "HET_P_MAX",
    "HET_MAX_HETEROGAMETIC_MEAN",
    "DEPTH_MAX_HETEROGAMETIC_MEAN",
    "DEPTH_MAX_HOMOGAMETIC_MEAN",
    "DEPTH_MIN_RATIO",
)
_PROBABILITY_KEYS = ("SIGNIFICANCE_ALPHA", "HET_P_MAX")


def get_ctx(overrides=None):
    """Return a copy of DEFAULTS with ``overrides`` applied and validated."""
    cfg = DEFAULTS.copy()
    if overrides:
        unknown = sorted(set(overrides) - set(DEFAULTS))
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        cfg.update({k: v for k, v in overrides.items() if v is not None})
    validate_ctx(cfg)
    return cfg


def validate_ctx(ctx):
    missing = [k for k in DEFAULTS if k not in ctx]
    if missing:
        raise ConfigError(f"Missing configuration keys: {', '.join(missing)}")

    for key in _NUMERIC_KEYS:
        value = ctx[key]
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise ConfigError(f"{key} must be numeric, got {value!r}")
    for key in _PROBABILITY_KEYS:
        if not 0 < ctx[key] <= 1:
            raise ConfigError(f"{key} must be in (0, 1], got {ctx[key]!r}")
    if ctx["MIN_SITES"] < 0:
        raise ConfigError("MIN_SITES must be non-negative")

    het, hom = ctx["HETEROGAMETIC_SEX"], ctx["HOMOGAMETIC_SEX"]
    for key, label in (("HETEROGAMETIC_SEX", het), ("HOMOGAMETIC_SEX", hom)):
        if not isinstance(label, str) or not label.strip():
            raise ConfigError(f"{key} must be a non-empty string")
    if het == hom:
        raise ConfigError(f"Heterogametic and homogametic sex labels must differ (both {het!r})")

    if ctx["SINGLETON_POLICY"] not in SINGLETON_POLICIES:
        raise ConfigError(
            f"SINGLETON_POLICY must be one of {', '.join(SINGLETON_POLICIES)}, "
            f"got {ctx['SINGLETON_POLICY']!r}"
        )
    if not isinstance(ctx["LOCUS_SEPARATOR"], str):
        raise ConfigError("LOCUS_SEPARATOR must be a string")


def sex_order(ctx):
    """(heterogametic, homogametic) sex labels; summary columns and t statistics follow this order."""
    return ctx["HETEROGAMETIC_SEX"], ctx["HOMOGAMETIC_SEX"]


def load_config_file(path):
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Configuration file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a JSON object")
    return data
