"""Reading, validating and writing the tab-delimited tables of the pipeline.

Three inputs are accepted:

* sex metadata: ``Individual``, ``Sex``
* per-scaffold heterozygosity: ``Scaffold``, ``Individual``,
  ``ObservedHomozygoteCount``, ``ExpectedHomozygoteCount``, ``N``,
  ``InbreedingCoefficient`` (one row per scaffold and individual)
* per-site depth in wide format: ``Scaffold``, ``Position`` followed by one
  depth column per individual

The native headers written by vcftools (``INDV``, ``O(HOM)``, ``E(HOM)``,
``N_SITES``, ``F``, ``CHROM``, ``POS``) are renamed to the names above.
Every individual seen in a measurement table must be present in the sex
metadata; rows are never dropped silently.
"""
import json
import logging
import os
import tempfile
import warnings

import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype

logger = logging.getLogger(__name__)

SEX_COLUMNS = ["Individual", "Sex"]
HET_COLUMNS = [
    "Scaffold",
    "Individual",
    "ObservedHomozygoteCount",
    "ExpectedHomozygoteCount",
    "N",
    "InbreedingCoefficient",
]
DEPTH_ID_COLUMNS = ["Scaffold", "Position"]

SEX_ALIASES = {"INDV": "Individual", "Sample": "Individual", "SampleID": "Individual", "sex": "Sex"}
HET_ALIASES = {
    "CHROM": "Scaffold",
    "INDV": "Individual",
    "O(HOM)": "ObservedHomozygoteCount",
    "E(HOM)": "ExpectedHomozygoteCount",
    "N_SITES": "N",
    "F": "InbreedingCoefficient",
}
DEPTH_ALIASES = {"CHROM": "Scaffold", "POS": "Position"}

# Tokens accepted as a missing inbreeding coefficient (vcftools writes -nan for N_SITES == E(HOM)).
MISSING_TOKENS = {"", "nan", "-nan", "NaN", "NA"}


class InputError(Exception):
    pass


class MalformedInputError(InputError):
    pass


class UnmappedIndividualError(InputError):
    def __init__(self, individuals, table="measurement"):
        self.individuals = sorted(individuals)
        self.table = table
        shown = ", ".join(self.individuals[:20])
        more = f" (+{len(self.individuals) - 20} more)" if len(self.individuals) > 20 else ""
        super().__init__(
            f"{len(self.individuals)} individual(s) in the {table} table have no sex metadata: {shown}{more}"
        )


# --------------------------------------------------------------------------
# Low-level helpers
# --------------------------------------------------------------------------

def _check_field_counts(path, label):
    """Every non-blank line must have as many tab-separated fields as the header."""
    with open(path) as f:
        header = f.readline().rstrip("\r\n")
        if not header.strip():
            raise MalformedInputError(f"{label} table {path} is empty")
        expected = len(header.split("\t"))
        row = 0
        for line in f:
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            row += 1
            n_fields = len(line.split("\t"))
            if n_fields != expected:
                raise MalformedInputError(
                    f"{label} table {path}: data row {row} has {n_fields} fields, expected {expected}"
                )


def read_tsv(path, label):
    """Read a headed TSV as strings, failing on rows with the wrong field count."""
    _check_field_counts(path, label)
    try:
        df = pd.read_csv(path, sep="\t", dtype=str, index_col=False, keep_default_na=False, na_filter=False)
    except pd.errors.EmptyDataError as e:
        raise MalformedInputError(f"{label} table {path} is empty") from e
    except pd.errors.ParserError as e:
        raise MalformedInputError(f"{label} table {path} is malformed: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    logger.info(f"Read {label} table {path}: {df.shape[0]} rows x {df.shape[1]} columns")
    return df


def _rename_aliases(df, aliases):
    renames = {c: aliases[c] for c in df.columns if c in aliases and aliases[c] not in df.columns}
    return df.rename(columns=renames) if renames else df


def _require_columns(df, required, label):
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise MalformedInputError(f"{label} table is missing required columns: {', '.join(missing)}")


def _coerce_numeric(df, columns, label, allow_missing=()):
    """Convert ``columns`` to numbers in place, naming the first offending row on failure."""
    for col in columns:
        raw = df[col]
        if is_numeric_dtype(raw):
            values = raw.astype(float)
            tolerated = np.zeros(len(raw), dtype=bool)
        else:
            text = raw.astype(str).str.strip()
            values = pd.to_numeric(text, errors="coerce")
            tolerated = text.isin(MISSING_TOKENS).to_numpy()
        bad = values.isna().to_numpy()
        if col in allow_missing:
            bad = bad & ~tolerated & ~raw.isna().to_numpy()
        if bad.any():
            i = int(np.flatnonzero(bad)[0])
            raise MalformedInputError(
                f"{label} table: non-numeric value {raw.iloc[i]!r} in column '{col}' at data row {i + 1}"
            )
        df[col] = values


def join_sex(df, sex_df, table):
    """Inner join on Individual; any individual without sex metadata is an error."""
    known = set(sex_df["Individual"])
    unmapped = set(df["Individual"].unique()) - known
    if unmapped:
        raise UnmappedIndividualError(unmapped, table=table)
    unused = known - set(df["Individual"].unique())
    if unused:
        logger.debug(f"{len(unused)} individuals in the sex metadata have no {table} rows")
    return df.merge(sex_df, on="Individual", how="inner", validate="many_to_one")


# --------------------------------------------------------------------------
# Sex metadata
# --------------------------------------------------------------------------

def prepare_sex_metadata(raw, ctx):
    df = _rename_aliases(raw, SEX_ALIASES)
    _require_columns(df, SEX_COLUMNS, "Sex metadata")
    df = df[SEX_COLUMNS].copy()
    df["Individual"] = df["Individual"].astype(str).str.strip()
    df["Sex"] = df["Sex"].astype(str).str.strip()

    if (df["Individual"] == "").any():
        row = int(np.flatnonzero((df["Individual"] == "").to_numpy())[0]) + 1
        raise MalformedInputError(f"Sex metadata table: empty Individual at data row {row}")

    allowed = {ctx["HOMOGAMETIC_SEX"], ctx["HETEROGAMETIC_SEX"]}
    unknown = ~df["Sex"].isin(allowed)
    if unknown.any():
        i = int(np.flatnonzero(unknown.to_numpy())[0])
        raise MalformedInputError(
            f"Sex metadata table: sex {df['Sex'].iloc[i]!r} for individual {df['Individual'].iloc[i]!r} "
            f"(data row {i + 1}) is not one of {sorted(allowed)}"
        )

    conflicting = df.groupby("Individual")["Sex"].nunique()
    conflicting = conflicting[conflicting > 1]
    if not conflicting.empty:
        raise MalformedInputError(
            f"Sex metadata table: conflicting sex for individuals {', '.join(sorted(conflicting.index))}"
        )
    if df["Individual"].duplicated().any():
        warnings.warn("Duplicate Individual values encountered in sex metadata; keeping the first.", UserWarning)
        df = df.drop_duplicates("Individual", keep="first")

    counts = df["Sex"].value_counts()
    for sex in sorted(allowed):
        if counts.get(sex, 0) == 0:
            logger.warning(f"No individuals with sex {sex!r} in the metadata; no group will be testable")
    logger.info(
        "Sex metadata: " + ", ".join(f"{sex}={int(counts.get(sex, 0))}" for sex in sorted(allowed))
    )
    return df.reset_index(drop=True)


def load_sex_metadata(path, ctx):
    return prepare_sex_metadata(read_tsv(path, "Sex metadata"), ctx)


# --------------------------------------------------------------------------
# Heterozygosity
# --------------------------------------------------------------------------

def prepare_heterozygosity(raw, sex_df, ctx):
    """Validate, filter on N, derive heterozygosity fields and attach Sex."""
    df = _rename_aliases(raw, HET_ALIASES)
    _require_columns(df, HET_COLUMNS, "Heterozygosity")
    df = df[HET_COLUMNS].copy()
    df["Scaffold"] = df["Scaffold"].astype(str).str.strip()
    df["Individual"] = df["Individual"].astype(str).str.strip()
    _coerce_numeric(
        df,
        ["ObservedHomozygoteCount", "ExpectedHomozygoteCount", "N", "InbreedingCoefficient"],
        "Heterozygosity",
        allow_missing=("InbreedingCoefficient",),
    )

    dup = df.duplicated(["Scaffold", "Individual"]).to_numpy()
    if dup.any():
        i = int(np.flatnonzero(dup)[0])
        raise MalformedInputError(
            f"Heterozygosity table: duplicate row for scaffold {df['Scaffold'].iloc[i]!r}, "
            f"individual {df['Individual'].iloc[i]!r} at data row {i + 1}"
        )
    over = (df["ObservedHomozygoteCount"] > df["N"]).to_numpy()
    if over.any():
        i = int(np.flatnonzero(over)[0])
        raise MalformedInputError(
            f"Heterozygosity table: ObservedHomozygoteCount exceeds N at data row {i + 1}"
        )

    df = join_sex(df, sex_df, "heterozygosity")

    min_sites = max(ctx["MIN_SITES"], 0)
    keep = df["N"] > min_sites
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info(f"Excluded {n_dropped} heterozygosity records with N <= {ctx['MIN_SITES']}")
    df = df.loc[keep].copy()

    df["ObservedHeterozygoteCount"] = df["N"] - df["ObservedHomozygoteCount"]
    df["ExpectedHeterozygoteCount"] = df["N"] - df["ExpectedHomozygoteCount"]
    df["ObservedHeterozygosityProportion"] = df["ObservedHeterozygoteCount"] / df["N"]
    df["ExpectedHeterozygosityProportion"] = df["ExpectedHeterozygoteCount"] / df["N"]
    logger.info(
        f"Heterozygosity: {len(df)} records over {df['Scaffold'].nunique()} scaffolds "
        f"and {df['Individual'].nunique()} individuals"
    )
    return df.reset_index(drop=True)


def load_heterozygosity(path, sex_df, ctx):
    return prepare_heterozygosity(read_tsv(path, "Heterozygosity"), sex_df, ctx)


# --------------------------------------------------------------------------
# Depth
# --------------------------------------------------------------------------

def normalize_depth_sentinel(depth, sentinel=-1, fill=0, column="Depth"):
    """Replace the missing-depth sentinel with ``fill``; applying it twice is a no-op."""
    out = depth.copy()
    mask = out[column] == sentinel
    n = int(mask.sum())
    if n:
        out.loc[mask, column] = fill
        logger.info(f"Normalised {n} missing depth values ({sentinel}) to {fill}")
    return out


def locus_key(scaffold, position, sep="_"):
    return scaffold.astype(str) + sep + position.astype(str)


def prepare_depth(raw, sex_df, ctx):
    """Reshape wide depth to one row per locus and individual, normalise missing values, attach Sex."""
    df = _rename_aliases(raw, DEPTH_ALIASES)
    _require_columns(df, DEPTH_ID_COLUMNS, "Depth")
    individuals = [c for c in df.columns if c not in DEPTH_ID_COLUMNS]
    if not individuals:
        raise MalformedInputError("Depth table has no individual columns")
    if len(set(individuals)) != len(individuals):
        raise MalformedInputError("Depth table has duplicate individual columns")

    df = df.copy()
    df["Scaffold"] = df["Scaffold"].astype(str).str.strip()
    _coerce_numeric(df, ["Position"] + individuals, "Depth")
    if not np.all(np.mod(df["Position"].to_numpy(), 1) == 0):
        raise MalformedInputError("Depth table: Position values must be integers")
    df["Position"] = df["Position"].astype(np.int64)

    dup = df.duplicated(DEPTH_ID_COLUMNS).to_numpy()
    if dup.any():
        i = int(np.flatnonzero(dup)[0])
        raise MalformedInputError(
            f"Depth table: duplicate row for scaffold {df['Scaffold'].iloc[i]!r}, "
            f"position {df['Position'].iloc[i]} at data row {i + 1}"
        )

    sentinel, fill = ctx["DEPTH_MISSING_SENTINEL"], ctx["DEPTH_MISSING_FILL"]
    values = df[individuals].to_numpy()
    negative = (values < 0) & (values != sentinel)
    if negative.any():
        r, c = (int(x[0]) for x in np.nonzero(negative))
        raise MalformedInputError(
            f"Depth table: negative depth {values[r, c]!r} for individual '{individuals[c]}' at data row {r + 1}"
        )

    long = df.melt(id_vars=DEPTH_ID_COLUMNS, value_vars=individuals, var_name="Individual", value_name="Depth")
    long["Individual"] = long["Individual"].astype(str).str.strip()
    long = normalize_depth_sentinel(long, sentinel=sentinel, fill=fill)
    long.insert(0, "Locus", locus_key(long["Scaffold"], long["Position"], ctx["LOCUS_SEPARATOR"]))

    long = join_sex(long, sex_df, "depth")
    logger.info(
        f"Depth: {len(long)} records over {long['Locus'].nunique()} loci and {len(individuals)} individuals"
    )
    return long


def load_depth(path, sex_df, ctx):
    return prepare_depth(read_tsv(path, "Depth"), sex_df, ctx)


# --------------------------------------------------------------------------
# Writers
# --------------------------------------------------------------------------

def _atomic_replace(path, write):
    tmpdir = os.path.dirname(path) or "."
    os.makedirs(tmpdir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=tmpdir, prefix=os.path.basename(path) + '.tmp.')
    os.close(fd)
    try:
        write(tmp_path)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def atomic_write_tsv(path, df, index=True):
    _atomic_replace(path, lambda tmp: df.to_csv(tmp, sep="\t", index=index, na_rep="NA"))


def atomic_write_json(path, data_obj):
    """Write JSON atomically, converting numpy scalars and arrays."""

    class NpEncoder(json.JSONEncoder):
        def default(self, obj):
            if isinstance(obj, np.integer):
                return int(obj)
            if isinstance(obj, np.floating):
                return float(obj)
            if isinstance(obj, np.ndarray):
                return obj.tolist()
            return super().default(obj)

    def _write(tmp):
        with open(tmp, 'w') as f:
            json.dump(data_obj, f, cls=NpEncoder, indent=2, sort_keys=True)

    _atomic_replace(path, _write)
