"""Near-zero-variance predictor checks.

Each column is judged on its own. A categorical that has already been split
into 0/1 indicator columns is therefore judged one indicator at a time, and a
rare level of an otherwise useful categorical can be flagged even though the
parent variable is informative. Look at the flagged indicators as a group
before dropping them; collapsing rare levels (see
:func:`credit_workflow.data.collapse_levels`) is often the better fix.
"""

import logging

import pandas as pd

from credit_workflow import config
from credit_workflow.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _column_metrics(values):
    counts = values.value_counts(dropna=True)
    n_rows = len(values)
    percent_unique = 100.0 * len(counts) / n_rows if n_rows else 0.0
    if len(counts) < 2:
        return 0.0, percent_unique, True
    return float(counts.iloc[0] / counts.iloc[1]), percent_unique, False


def near_zero_variance(
    df,
    freq_cut=config.FREQ_CUT,
    unique_cut=config.UNIQUE_CUT,
    exclude=None,
    require_both=False,
):
    """Compute frequency-ratio and percent-unique metrics for every column.

    Parameters
    ----------
    df : pandas.DataFrame
        Dataset to check. Missing values are ignored when counting.
    freq_cut : float, default=95/5
        Maximum allowed ratio of the most frequent to the second most
        frequent value.
    unique_cut : float, default=10
        Minimum allowed percentage of distinct values among all rows.
    exclude : list of str, optional
        Columns to skip (typically the label).
    require_both : bool, default=False
        If False, a column is flagged when *either* cut is violated. If True,
        it is flagged only when both are violated (the classic, more lenient
        near-zero-variance rule). Constant columns are always flagged.

    Returns
    -------
    pandas.DataFrame
        Indexed by column name with ``freq_ratio``, ``percent_unique``,
        ``zero_var`` and ``nzv`` columns.
    """
    if freq_cut <= 0 or unique_cut < 0:
        raise ConfigurationError(f"near_zero_variance: invalid cuts freq_cut={freq_cut}, unique_cut={unique_cut}")

    exclude = set(exclude or [])
    records = []
    for col in df.columns:
        if col in exclude:
            continue
        freq_ratio, percent_unique, zero_var = _column_metrics(df[col])
        too_frequent = freq_ratio > freq_cut
        too_few_unique = percent_unique < unique_cut
        if require_both:
            flagged = too_frequent and too_few_unique
        else:
            flagged = too_frequent or too_few_unique
        records.append(
            {
                "column": col,
                "freq_ratio": freq_ratio,
                "percent_unique": percent_unique,
                "zero_var": zero_var,
                "nzv": bool(zero_var or flagged),
            }
        )

    metrics = pd.DataFrame(records, columns=["column", "freq_ratio", "percent_unique", "zero_var", "nzv"])
    metrics = metrics.set_index("column")
    logger.info(
        "Near-zero-variance check (freq_cut=%.2f, unique_cut=%.2f): %d of %d columns flagged",
        freq_cut,
        unique_cut,
        int(metrics["nzv"].sum()),
        len(metrics),
    )
    return metrics


def flag_near_zero_variance(df, freq_cut=config.FREQ_CUT, unique_cut=config.UNIQUE_CUT, exclude=None, require_both=False):
    """Return the names of the columns :func:`near_zero_variance` flags."""
    metrics = near_zero_variance(
        df,
        freq_cut=freq_cut,
        unique_cut=unique_cut,
        exclude=exclude,
        require_both=require_both,
    )
    return metrics.index[metrics["nzv"]].tolist()
