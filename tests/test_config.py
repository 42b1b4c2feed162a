import json

import pytest

from sexlinked import config


def test_defaults_are_returned_as_a_copy():
    ctx = config.get_ctx()
    ctx["DEPTH_MIN_RATIO"] = 5
    assert config.DEFAULTS["DEPTH_MIN_RATIO"] == 20
    assert config.get_ctx()["DEPTH_MIN_RATIO"] == 20


def test_overrides_applied_and_none_ignored():
    ctx = config.get_ctx({"HET_P_MAX": 0.01, "DEPTH_MIN_RATIO": None})
    assert ctx["HET_P_MAX"] == 0.01
    assert ctx["DEPTH_MIN_RATIO"] == 20


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"NOT_A_KEY": 1}, "Unknown configuration keys"),
        ({"HET_P_MAX": 0}, "HET_P_MAX"),
        ({"SIGNIFICANCE_ALPHA": 1.5}, "SIGNIFICANCE_ALPHA"),
        ({"DEPTH_MIN_RATIO": "20"}, "must be numeric"),
        ({"HETEROGAMETIC_SEX": "M"}, "must differ"),
        ({"HOMOGAMETIC_SEX": " "}, "non-empty"),
        ({"SINGLETON_POLICY": "guess"}, "SINGLETON_POLICY"),
    ],
)
def test_invalid_overrides_rejected(overrides, message):
    with pytest.raises(ValueError, match=message):
        config.get_ctx(overrides)


def test_sex_order_puts_heterogametic_sex_first():
    ctx = config.get_ctx({"HETEROGAMETIC_SEX": "ZW", "HOMOGAMETIC_SEX": "ZZ"})
    assert config.sex_order(ctx) == ("ZW", "ZZ")


def test_load_config_file(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"DEPTH_MIN_RATIO": 10}))
    assert config.load_config_file(str(path)) == {"DEPTH_MIN_RATIO": 10}

    path.write_text(json.dumps([1, 2]))
    with pytest.raises(ValueError, match="JSON object"):
        config.load_config_file(str(path))


def test_config_errors_are_value_errors(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text("{")
    with pytest.raises(config.ConfigError, match="not valid JSON"):
        config.load_config_file(str(path))
    assert issubclass(config.ConfigError, ValueError)
