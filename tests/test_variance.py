"""Unit tests for the near-zero-variance filter"""

import numpy as np
import pandas as pd
import pytest

from credit_workflow.exceptions import ConfigurationError
from credit_workflow.variance import flag_near_zero_variance, near_zero_variance


@pytest.fixture
def nzv_frame():
    n = 1000
    return pd.DataFrame(
        {
            "rare": np.r_[np.zeros(980), np.ones(20)],
            "balanced": np.tile([0, 1], n // 2),
            "continuous": np.arange(n, dtype=float),
            "constant": np.ones(n),
            "Class": np.tile(["Good", "Good", "Bad", "Good"], n // 4),
        }
    )


@pytest.mark.parametrize("freq_cut", [19, 4])
def test_rare_indicator_is_flagged(nzv_frame, freq_cut):
    """A 980/20 column has frequency ratio 49 and is flagged"""
    metrics = near_zero_variance(nzv_frame, freq_cut=freq_cut, unique_cut=10, exclude=["Class"])

    assert metrics.loc["rare", "freq_ratio"] == pytest.approx(49.0)
    assert metrics.loc["rare", "percent_unique"] == pytest.approx(0.2)
    assert metrics.loc["rare", "nzv"]


def test_either_cut_flags_by_default(nzv_frame):
    flagged = flag_near_zero_variance(nzv_frame, freq_cut=19, unique_cut=10, exclude=["Class"])
    assert flagged == ["rare", "balanced", "constant"]


def test_require_both_cuts(nzv_frame):
    """The balanced binary column only fails the unique cut"""
    flagged = flag_near_zero_variance(nzv_frame, freq_cut=19, unique_cut=10, exclude=["Class"], require_both=True)
    assert flagged == ["rare", "constant"]


def test_lower_freq_cut_flags_more(nzv_frame):
    df = nzv_frame.assign(skewed=np.r_[np.zeros(900), np.ones(100)])
    lenient = flag_near_zero_variance(df, freq_cut=19, unique_cut=0, exclude=["Class"])
    strict = flag_near_zero_variance(df, freq_cut=4, unique_cut=0, exclude=["Class"])

    assert "skewed" not in lenient
    assert "skewed" in strict
    assert set(lenient) <= set(strict)


def test_constant_and_empty_columns():
    df = pd.DataFrame({"constant": [3, 3, 3, 3], "empty": [np.nan] * 4, "ok": [1, 2, 3, 4]})
    metrics = near_zero_variance(df, freq_cut=19, unique_cut=10, require_both=True)

    assert metrics.loc["constant", "zero_var"]
    assert metrics.loc["constant", "nzv"]
    assert metrics.loc["empty", "zero_var"]
    assert metrics.loc["empty", "freq_ratio"] == 0.0
    assert not metrics.loc["ok", "nzv"]


def test_exclude_and_output_shape(nzv_frame):
    metrics = near_zero_variance(nzv_frame, exclude=["Class"])

    assert "Class" not in metrics.index
    assert list(metrics.columns) == ["freq_ratio", "percent_unique", "zero_var", "nzv"]
    assert metrics.loc["continuous", "percent_unique"] == pytest.approx(100.0)
    assert not metrics.loc["continuous", "nzv"]


@pytest.mark.parametrize("freq_cut, unique_cut", [(0, 10), (-1, 10), (19, -5)])
def test_invalid_cuts(nzv_frame, freq_cut, unique_cut):
    with pytest.raises(ConfigurationError):
        near_zero_variance(nzv_frame, freq_cut=freq_cut, unique_cut=unique_cut)
