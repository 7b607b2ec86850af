"""Loading and reshaping the German credit data.

The loader returns the applicant table in a caret-style schema: numeric
fields, 0/1 flags, one 0/1 indicator column per housing/property/checking
level, and the ``Class`` label with levels ``Good`` and ``Bad``. The schema
helpers below never modify their input; each returns a new DataFrame.
"""

import logging

import numpy as np
import pandas as pd
from sklearn.datasets import fetch_openml

from credit_workflow import config
from credit_workflow.exceptions import ConfigurationError, SchemaMismatchError

logger = logging.getLogger(__name__)

OPENML_NAME = "credit-g"
OPENML_VERSION = 1

NUMERIC_COLUMNS = {
    "duration": "Duration",
    "credit_amount": "Amount",
    "installment_commitment": "InstallmentRatePercentage",
    "residence_since": "ResidenceDuration",
    "age": "Age",
    "existing_credits": "NumberExistingCredits",
    "num_dependents": "NumberPeopleMaintenance",
}

FLAG_COLUMNS = {
    "own_telephone": ("Telephone", "yes"),
    "foreign_worker": ("ForeignWorker", "yes"),
}

INDICATOR_GROUPS = {
    "housing": (
        "Housing",
        {"rent": "Rent", "own": "Own", "for free": "ForFree"},
    ),
    "property_magnitude": (
        "Property",
        {
            "real estate": "RealEstate",
            "life insurance": "Insurance",
            "car": "CarOther",
            "no known property": "Unknown",
        },
    ),
    "checking_status": (
        "CheckingAccountStatus",
        {
            "<0": "lt.0",
            "0<=X<200": "0.to.200",
            ">=200": "gt.200",
            "no checking": "none",
        },
    ),
}

GERMAN_CREDIT_COLUMNS = (
    list(NUMERIC_COLUMNS.values())
    + [name for name, _ in FLAG_COLUMNS.values()]
    + [f"{prefix}.{suffix}" for prefix, levels in INDICATOR_GROUPS.values() for suffix in levels.values()]
    + [config.TARGET_COL]
)


def load_german_credit(path=None, data_home=None):
    """Load the 1000-applicant German credit table.

    Parameters
    ----------
    path : str or path-like, optional
        CSV file already in the caret-style schema. When omitted, the
        ``credit-g`` dataset is fetched from OpenML and converted.
    data_home : str, optional
        Cache directory passed to :func:`sklearn.datasets.fetch_openml`.

    Returns
    -------
    pandas.DataFrame
        One row per applicant with the columns in ``GERMAN_CREDIT_COLUMNS``.

    Raises
    ------
    SchemaMismatchError
        If the CSV lacks one of the expected columns.
    """
    if path is not None:
        df = pd.read_csv(path)
        for col in GERMAN_CREDIT_COLUMNS:
            if col not in df.columns:
                raise SchemaMismatchError(col, "load_german_credit")
        logger.info("Loaded %d rows from %s", len(df), path)
        return df[GERMAN_CREDIT_COLUMNS].copy()

    raw = fetch_openml(OPENML_NAME, version=OPENML_VERSION, as_frame=True, data_home=data_home).frame
    df = from_openml_frame(raw)
    logger.info("Fetched %d rows of %r from OpenML", len(df), OPENML_NAME)
    return df


def from_openml_frame(raw):
    """Convert the OpenML ``credit-g`` frame to the caret-style schema."""
    out = pd.DataFrame(index=raw.index)
    for src, dst in NUMERIC_COLUMNS.items():
        out[dst] = pd.to_numeric(raw[src]).astype(int)

    for src, (dst, yes_value) in FLAG_COLUMNS.items():
        out[dst] = (raw[src].astype(str) == yes_value).astype(int)

    for src, (prefix, levels) in INDICATOR_GROUPS.items():
        values = raw[src].astype(str)
        for level, suffix in levels.items():
            out[f"{prefix}.{suffix}"] = (values == level).astype(int)

    out[config.TARGET_COL] = raw["class"].astype(str).str.capitalize()
    return out.reset_index(drop=True)


def summarize_dataset(df, target=config.TARGET_COL):
    """Return one summary row per column and log the class balance."""
    records = []
    for col in df.columns:
        values = df[col]
        rec = {
            "column": col,
            "dtype": str(values.dtype),
            "n_missing": int(values.isna().sum()),
            "n_distinct": int(values.nunique(dropna=True)),
        }
        if pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values):
            rec.update({"min": values.min(), "median": values.median(), "max": values.max()})
        else:
            mode = values.mode(dropna=True)
            rec["most_frequent"] = mode.iloc[0] if len(mode) else np.nan
        records.append(rec)

    if target in df.columns:
        counts = df[target].value_counts().to_dict()
        logger.info("Class balance for %r: %s", target, counts)
    return pd.DataFrame(records).set_index("column")


def _check_columns(df, columns, caller):
    for col in columns:
        if col not in df.columns:
            raise ConfigurationError(f"{caller}: unknown column {col!r}")


def _as_category(values):
    # Counts come in as 1, 2, ... and become levels "1", "2", ...
    if pd.api.types.is_float_dtype(values) and (values.dropna() % 1 == 0).all():
        values = values.astype("Int64")
    return values.map(str, na_action="ignore").astype("category")


def inject_missing(df, column, fraction, seed=config.RANDOM_STATE, rng=None):
    """Blank out a random ``fraction`` of the rows of ``column``.

    Exactly ``round(fraction * len(df))`` distinct rows are chosen uniformly
    without replacement. Pass ``rng`` to draw from an existing generator
    instead of one seeded from ``seed``.
    """
    _check_columns(df, [column], "inject_missing")
    if not 0.0 <= fraction <= 1.0:
        raise ConfigurationError(f"inject_missing: fraction for {column!r} must be in [0, 1], got {fraction}")

    rng = rng if rng is not None else np.random.default_rng(seed)
    n_missing = int(round(fraction * len(df)))
    rows = rng.choice(len(df), size=n_missing, replace=False)

    mask = np.zeros(len(df), dtype=bool)
    mask[rows] = True
    out = df.copy()
    out[column] = out[column].mask(mask)
    logger.info("Injected %d missing values into %r", n_missing, column)
    return out


def reduce_schema(df, columns, rename=None, missing=None, categorical=None, seed=config.RANDOM_STATE):
    """Select, rename and retype columns, then inject missing values.

    Parameters
    ----------
    df : pandas.DataFrame
        Raw dataset.
    columns : list of str
        Columns to keep, in output order.
    rename : dict, optional
        ``{old_name: new_name}`` applied after selection.
    missing : dict, optional
        ``{column: fraction}`` (new names) of values to blank out. Columns
        are processed in mapping order from a single generator seeded with
        ``seed``, so the result is fixed by the seed.
    categorical : list of str, optional
        Columns (new names) to retype as pandas ``category`` with string levels.
    seed : int
        Seed for the missingness draw.

    Returns
    -------
    pandas.DataFrame
    """
    rename = dict(rename or {})
    missing = dict(missing or {})
    categorical = list(categorical or [])

    _check_columns(df, columns, "reduce_schema")
    for old in rename:
        if old not in columns:
            raise ConfigurationError(f"reduce_schema: cannot rename {old!r}, it is not among the selected columns")

    out = df[list(columns)].rename(columns=rename)
    _check_columns(out, list(missing) + categorical, "reduce_schema")

    for col in categorical:
        out[col] = _as_category(out[col])

    rng = np.random.default_rng(seed)
    for col, fraction in missing.items():
        out = inject_missing(out, col, fraction, rng=rng)

    logger.info("Reduced schema from %d to %d columns", df.shape[1], out.shape[1])
    return out


def collapse_levels(df, column, levels, new_level):
    """Merge the given levels of ``column`` into a single ``new_level``.

    Levels are compared as strings, so ``{2, 3, 4}`` and ``{"2", "3", "4"}``
    are equivalent for a count column retyped by :func:`reduce_schema`.
    """
    _check_columns(df, [column], "collapse_levels")
    wanted = {str(level) for level in levels}

    # plain strings, so a new level can be written into a categorical column
    values = df[column].astype(object).map(str, na_action="ignore")
    merged = values.where(~values.isin(wanted), new_level)

    out = df.copy()
    out[column] = merged.astype("category")
    logger.info("Collapsed levels %s of %r into %r", sorted(wanted), column, new_level)
    return out
