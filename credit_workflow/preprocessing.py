"""Train/test split and the fit-on-train, apply-anywhere preprocessing models.

Every preprocessing step is a pair of functions: ``fit_*`` sees only the
training data and returns a frozen model, ``apply_*`` replays that model on
any dataset (train, test or new applicants) without refitting. Applying a
model to data that lacks one of its fitted columns raises
:class:`~credit_workflow.exceptions.SchemaMismatchError`.
"""

import logging
from dataclasses import dataclass

import pandas as pd
from sklearn.ensemble import BaggingRegressor
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import MinMaxScaler, OneHotEncoder

from credit_workflow import config
from credit_workflow.exceptions import ConfigurationError, DegeneratePartitionError, SchemaMismatchError

logger = logging.getLogger(__name__)

IMPUTE_STRATEGIES = ("bag", "median")


@dataclass(frozen=True, eq=False)
class Split:
    train: pd.DataFrame
    test: pd.DataFrame


@dataclass(frozen=True, eq=False)
class ImputerModel:
    strategy: str
    target: str
    numeric: tuple
    categorical: tuple
    medians: pd.Series
    modes: pd.Series
    estimators: dict  # column -> fitted BaggingRegressor


@dataclass(frozen=True, eq=False)
class EncoderModel:
    target: str
    numeric: tuple
    categorical: tuple
    encoder: OneHotEncoder  # None when there is nothing to encode

    @property
    def feature_names(self):
        names = list(self.numeric)
        if self.encoder is not None:
            names.extend(self.encoder.get_feature_names_out(list(self.categorical)))
        return names


@dataclass(frozen=True, eq=False)
class ScalerModel:
    columns: tuple
    scaler: MinMaxScaler
    clip: bool

    @property
    def data_min(self):
        return pd.Series(self.scaler.data_min_, index=list(self.columns))

    @property
    def data_max(self):
        return pd.Series(self.scaler.data_max_, index=list(self.columns))


@dataclass(frozen=True, eq=False)
class PreprocessingModel:
    target: str
    imputer: ImputerModel
    encoder: EncoderModel
    scaler: ScalerModel


def _require_columns(df, columns, stage):
    for col in columns:
        if col not in df.columns:
            raise SchemaMismatchError(col, stage)


def _is_numeric(values):
    return pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values)


def split_xy(df, target=config.TARGET_COL):
    """Split a labeled dataset into predictors and label."""
    _require_columns(df, [target], "split_xy")
    return df.drop(columns=[target]), df[target]


def reassemble(X, y):
    """Put a label held aside before encoding back onto the predictors."""
    if not X.index.equals(y.index):
        raise ConfigurationError("reassemble: predictor and label indexes differ")
    return pd.concat([X, y], axis=1)


# Split


def split_dataset(df, target=config.TARGET_COL, train_fraction=config.TRAIN_FRACTION, seed=config.RANDOM_STATE):
    """Stratified train/test partition.

    Row labels are kept, so ``train.index`` and ``test.index`` are disjoint
    and together equal ``df.index``. The same ``seed`` always gives the same
    assignment.

    Raises
    ------
    ConfigurationError
        If ``train_fraction`` is not strictly between 0 and 1.
    DegeneratePartitionError
        If a class has fewer than two rows, so it cannot reach both subsets.
    """
    if not 0.0 < train_fraction < 1.0:
        raise ConfigurationError(f"split_dataset: train_fraction must be in (0, 1), got {train_fraction}")
    _require_columns(df, [target], "split_dataset")

    counts = df[target].value_counts()
    if len(counts) < 2 or (counts < 2).any():
        raise DegeneratePartitionError("train/test split", counts[counts >= 2].index, counts.index)

    train, test = train_test_split(
        df,
        train_size=train_fraction,
        stratify=df[target],
        random_state=seed,
        shuffle=True,
    )
    logger.info(
        "Split %d rows into %d train / %d test (train class balance: %s)",
        len(df),
        len(train),
        len(test),
        train[target].value_counts(normalize=True).round(3).to_dict(),
    )
    return Split(train=train, test=test)


# Imputation


def fit_imputer(
    train,
    target=config.TARGET_COL,
    strategy=config.IMPUTE_STRATEGY,
    seed=config.RANDOM_STATE,
    n_estimators=config.IMPUTE_N_ESTIMATORS,
):
    """Learn how to fill missing predictor values from the training data.

    Parameters
    ----------
    train : pandas.DataFrame
        Training data; the ``target`` column is never used.
    strategy : {"bag", "median"}
        ``"median"`` fills numeric columns with their training median.
        ``"bag"`` fits, for each numeric column that has missing values, a
        bagged ensemble of regression trees predicting that column from the
        other numeric predictors (median-filled). Categorical columns are
        always filled with their most frequent training level.
    seed : int
        Seed for the bagging ensembles.
    n_estimators : int
        Number of trees per bagged ensemble.

    Returns
    -------
    ImputerModel
    """
    if strategy not in IMPUTE_STRATEGIES:
        raise ConfigurationError(f"fit_imputer: unknown strategy {strategy!r}, expected one of {IMPUTE_STRATEGIES}")

    predictors = [c for c in train.columns if c != target]
    numeric = [c for c in predictors if _is_numeric(train[c])]
    categorical = [c for c in predictors if c not in numeric]

    medians = train[numeric].median()
    empty = medians.index[medians.isna()].tolist()
    if empty:
        raise ConfigurationError(f"fit_imputer: column {empty[0]!r} has no observed values in the training data")

    modes = pd.Series({c: train[c].mode(dropna=True).iloc[0] for c in categorical if train[c].notna().any()}, dtype=object)

    estimators = {}
    if strategy == "bag":
        filled = train[numeric].fillna(medians)
        for col in numeric:
            observed = train[col].notna()
            others = [c for c in numeric if c != col]
            if observed.all() or not others:
                continue
            model = BaggingRegressor(n_estimators=n_estimators, random_state=seed)
            model.fit(filled.loc[observed, others], train.loc[observed, col])
            estimators[col] = model
            logger.info("Fitted bagged imputation model for %r on %d observed rows", col, int(observed.sum()))

    return ImputerModel(
        strategy=strategy,
        target=target,
        numeric=tuple(numeric),
        categorical=tuple(categorical),
        medians=medians,
        modes=modes,
        estimators=estimators,
    )


def apply_imputer(model, df):
    """Fill missing predictor values using a fitted :class:`ImputerModel`."""
    _require_columns(df, model.numeric + model.categorical, "apply_imputer")
    numeric = list(model.numeric)
    out = df.copy()

    filled = df[numeric].fillna(model.medians)
    for col, estimator in model.estimators.items():
        missing = df[col].isna()
        if not missing.any():
            continue
        others = [c for c in numeric if c != col]
        out[col] = out[col].astype(float)
        out.loc[missing, col] = estimator.predict(filled.loc[missing, others])

    out[numeric] = out[numeric].fillna(model.medians)
    for col, mode in model.modes.items():
        out[col] = out[col].fillna(mode)
    return out


# Encoding


def fit_encoder(train, target=config.TARGET_COL):
    """Learn the indicator columns for every categorical predictor.

    Category, object and bool columns are one-hot encoded; numeric columns
    pass through. The label is held aside and never encoded.
    """
    predictors = [c for c in train.columns if c != target]
    numeric = [c for c in predictors if _is_numeric(train[c])]
    categorical = [c for c in predictors if c not in numeric]

    encoder = None
    if categorical:
        encoder = OneHotEncoder(handle_unknown="ignore", sparse_output=False, dtype=float)
        encoder.fit(train[categorical].astype(object))
        for col, levels in zip(categorical, encoder.categories_):
            logger.debug("Encoding %r with levels %s", col, list(levels))

    return EncoderModel(target=target, numeric=tuple(numeric), categorical=tuple(categorical), encoder=encoder)


def apply_encoder(model, df):
    """Replace each categorical predictor with its 0/1 indicator columns.

    A level never seen in training gives all-zero indicators for that row;
    a training level absent from ``df`` still gets its (all-zero) column.
    Columns not seen at fit time, including the label, are dropped.
    """
    _require_columns(df, model.numeric + model.categorical, "apply_encoder")
    parts = [df[list(model.numeric)].astype(float)]
    if model.encoder is not None:
        categorical = list(model.categorical)
        indicators = model.encoder.transform(df[categorical].astype(object))
        parts.append(
            pd.DataFrame(
                indicators,
                columns=model.encoder.get_feature_names_out(categorical),
                index=df.index,
            )
        )
    return pd.concat(parts, axis=1)


# Range scaling


def fit_scaler(X, clip=False):
    """Record the per-column training minimum and maximum."""
    scaler = MinMaxScaler(clip=clip).fit(X)
    model = ScalerModel(columns=tuple(X.columns), scaler=scaler, clip=clip)
    constant = model.data_max.index[model.data_max == model.data_min].tolist()
    if constant:
        logger.info("Constant columns will scale to 0: %s", constant)
    return model


def apply_scaler(model, X):
    """Map each column to ``(x - min) / (max - min)`` using training ranges.

    Columns with zero training range map to 0.0. Values outside the training
    range land outside [0, 1] and are kept unless the model clips.
    """
    _require_columns(X, model.columns, "apply_scaler")
    columns = list(model.columns)
    data_min = model.data_min
    data_range = model.data_max - data_min

    constant = data_range == 0
    scaled = (X[columns] - data_min) / data_range.where(~constant, 1.0)
    scaled.loc[:, constant[constant].index] = 0.0
    if model.clip:
        scaled = scaled.clip(lower=0.0, upper=1.0)
    return scaled.astype(float)


# Whole pipeline


def fit_preprocessing(
    train,
    target=config.TARGET_COL,
    impute=config.IMPUTE_STRATEGY,
    clip=False,
    seed=config.RANDOM_STATE,
):
    """Fit imputer, encoder and scaler, in that order, on the training data."""
    imputer = fit_imputer(train, target=target, strategy=impute, seed=seed)
    imputed = apply_imputer(imputer, train)
    encoder = fit_encoder(imputed, target=target)
    encoded = apply_encoder(encoder, imputed)
    scaler = fit_scaler(encoded, clip=clip)
    logger.info(
        "Fitted preprocessing on %d rows: %d predictors -> %d model columns",
        len(train),
        len(encoder.numeric) + len(encoder.categorical),
        len(scaler.columns),
    )
    return PreprocessingModel(target=target, imputer=imputer, encoder=encoder, scaler=scaler)


def apply_preprocessing(model, df):
    """Impute, encode and scale ``df``; re-attach the label when present."""
    imputed = apply_imputer(model.imputer, df)
    encoded = apply_encoder(model.encoder, imputed)
    scaled = apply_scaler(model.scaler, encoded)
    if model.target in df.columns:
        return reassemble(scaled, df[model.target])
    return scaled

