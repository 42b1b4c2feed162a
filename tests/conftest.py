import pathlib
import sys

import pandas as pd
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sexlinked import config


@pytest.fixture
def ctx():
    return config.get_ctx()


@pytest.fixture
def sex_raw():
    return pd.DataFrame({"Individual": ["A", "B", "C", "D"], "Sex": ["F", "F", "M", "M"]})


@pytest.fixture
def het_raw():
    # s1: both sexes heterozygous, females far more so.
    # s2: too few sites, excluded.
    return pd.DataFrame(
        {
            "Scaffold": ["s1", "s1", "s1", "s1", "s2", "s2", "s2", "s2"],
            "Individual": ["A", "B", "C", "D"] * 2,
            "ObservedHomozygoteCount": [20, 22, 150, 148, 10, 12, 40, 45],
            "ExpectedHomozygoteCount": [100.5, 100.5, 100.5, 100.5, 30.0, 30.0, 30.0, 30.0],
            "N": [200, 200, 200, 200, 100, 100, 100, 100],
            "InbreedingCoefficient": [-0.8, -0.78, 0.5, 0.48, 0.1, 0.1, 0.2, 0.2],
        }
    )


@pytest.fixture
def depth_raw():
    return pd.DataFrame(
        {
            "Scaffold": ["chrX", "chr1", "chrR", "chrW"],
            "Position": [100, 200, 300, 400],
            "A": [39, 30, 150, 40],
            "B": [41, 32, 152, 42],
            "C": [-1, 31, 0, 0],
            "D": [1, 29, 1, -1],
        }
    )


@pytest.fixture
def write_tsv(tmp_path):
    def _write(name, df):
        path = tmp_path / name
        df.to_csv(path, sep="\t", index=False)
        return str(path)
    return _write
