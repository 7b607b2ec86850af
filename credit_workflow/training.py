"""Classifier families, resampling control and the cross-validated search.

A search evaluates every candidate hyperparameter setting with repeated
stratified k-fold cross-validation on the (already preprocessed) training
set, picks the candidate with the best mean score on the control's metric and
refits it on the whole training set. Class-imbalance samplers sit inside the
model pipeline, so they only ever touch the training part of a fold.
"""

import logging
import warnings
from dataclasses import dataclass, field, replace

import numpy as np
import optuna
import pandas as pd
from imblearn.combine import SMOTEENN, SMOTETomek
from imblearn.over_sampling import ADASYN, SMOTE, BorderlineSMOTE, RandomOverSampler
from imblearn.pipeline import Pipeline as ImbPipeline
from imblearn.under_sampling import RandomUnderSampler
from joblib import Parallel, delayed
from lightgbm import LGBMClassifier
from optuna.samplers import GridSampler
from sklearn.base import clone
from sklearn.dummy import DummyClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import RepeatedStratifiedKFold, StratifiedKFold
from sklearn.pipeline import Pipeline
from sklearn.svm import SVC

from credit_workflow import config
from credit_workflow.evaluation import PROBABILITY_METRICS, classification_metrics
from credit_workflow.exceptions import (
    ConfigurationError,
    DegeneratePartitionError,
    SchemaMismatchError,
    TrainingFailedError,
    UnevaluableMetricError,
)

logger = logging.getLogger(__name__)

FAMILIES = tuple(config.ALL_FAMILIES)
SAMPLING_METHODS = tuple(config.ALL_SAMPLING_METHODS)
CV_METHODS = ("repeatedcv", "cv")
METRICS = (
    "roc_auc",
    "pr_auc",
    "sensitivity",
    "specificity",
    "precision",
    "accuracy",
    "balanced_accuracy",
    "kappa",
    "mcc",
    "f1",
    "cost_benefit",
)
# Metrics that cannot be computed unless both classes are in the held-out fold
BOTH_CLASS_METRICS = PROBABILITY_METRICS + ("sensitivity", "specificity", "balanced_accuracy")

DEFAULT_COST_MATRIX = (
    (config.BENEFIT_TN, -config.COST_FP),
    (-config.COST_FN, config.BENEFIT_TP),
)


@dataclass(frozen=True)
class TrainControl:
    """How candidates are resampled, scored and rebalanced.

    Parameters
    ----------
    method : {"repeatedcv", "cv"}
        Repeated stratified k-fold or a single stratified k-fold.
    n_splits, n_repeats : int
        Folds per repeat and number of repeats (``n_repeats`` is ignored
        for ``"cv"``).
    metric : str
        One of ``METRICS``; the candidate with the highest mean wins.
    sampling : str
        One of ``SAMPLING_METHODS``; applied to training folds only.
    positive : str
        Class treated as the event for sensitivity, ROC AUC, etc.
    seed : int
        Seed for the fold assignment, samplers and estimators.
    n_jobs : int
        Folds evaluated in parallel with joblib; results do not depend on it.
    cost_matrix : array-like
        2x2 ``[negative, positive]`` cost/benefit matrix for ``cost_benefit``,
        stored as a tuple of tuples.
    """

    method: str = config.CV_METHOD
    n_splits: int = config.N_SPLITS
    n_repeats: int = config.N_REPEATS
    metric: str = config.TUNING_METRIC
    sampling: str = "none"
    positive: str = config.POSITIVE_CLASS
    seed: int = config.RANDOM_STATE
    n_jobs: int = config.NUM_JOBS
    cost_matrix: tuple = DEFAULT_COST_MATRIX

    def __post_init__(self):
        if self.method not in CV_METHODS:
            raise ConfigurationError(f"TrainControl: unknown method {self.method!r}, expected one of {CV_METHODS}")
        if self.n_splits < 2 or self.n_repeats < 1:
            raise ConfigurationError(f"TrainControl: need n_splits >= 2 and n_repeats >= 1, got {self.n_splits}, {self.n_repeats}")
        if self.metric not in METRICS:
            raise ConfigurationError(f"TrainControl: unknown metric {self.metric!r}, expected one of {METRICS}")
        if self.sampling not in SAMPLING_METHODS:
            raise ConfigurationError(f"TrainControl: unknown sampling {self.sampling!r}, expected one of {SAMPLING_METHODS}")
        cost_matrix = np.asarray(self.cost_matrix, dtype=float)
        if cost_matrix.shape != (2, 2):
            raise ConfigurationError(f"TrainControl: cost_matrix must be 2x2, got shape {cost_matrix.shape}")
        # hashable, comparable form whatever the caller passed in
        object.__setattr__(self, "cost_matrix", tuple(tuple(float(v) for v in row) for row in cost_matrix))

    def splitter(self):
        if self.method == "cv":
            return StratifiedKFold(n_splits=self.n_splits, shuffle=True, random_state=self.seed)
        return RepeatedStratifiedKFold(n_splits=self.n_splits, n_repeats=self.n_repeats, random_state=self.seed)

    def fold_label(self, split_idx):
        repeat = split_idx // self.n_splits + 1
        fold = split_idx % self.n_splits + 1
        return f"Fold{fold:02d}.Rep{repeat}"

    def same_resampling(self, other):
        """True when both controls produce the same folds and scores."""
        return replace(self, n_jobs=1) == replace(other, n_jobs=1)


@dataclass(frozen=True)
class CandidateFailure:
    candidate: int
    params: dict
    fold: str
    error: str


@dataclass(frozen=True, eq=False)
class TrainedClassifier:
    """A fitted pipeline plus the record of how it was chosen."""

    family: str
    params: dict
    control: TrainControl
    estimator: object
    classes: tuple
    feature_names: tuple
    results: pd.DataFrame
    resamples: pd.DataFrame
    failures: tuple = field(default_factory=tuple)

    @property
    def best_score(self):
        return float(self.resamples[self.control.metric].mean())

    def predict_proba(self, X):
        """Class probabilities as a DataFrame with one column per class."""
        for col in self.feature_names:
            if col not in X.columns:
                raise SchemaMismatchError(col, f"{self.family} predict")
        proba = self.estimator.predict_proba(X[list(self.feature_names)])
        return pd.DataFrame(proba, columns=list(self.estimator.classes_), index=X.index)

    def predict(self, X):
        """Arg-max class labels."""
        return self.predict_proba(X).idxmax(axis=1).rename("prediction")


def create_estimator(family, params=None, seed=config.RANDOM_STATE):
    """Return an sklearn-compatible classifier with defaults, updated with ``params``."""
    params = dict(params or {})

    if family == "dummy":
        base = {"strategy": "prior"}
        base.update(params)
        return DummyClassifier(**base)

    if family == "random_forest":
        base = {
            "n_estimators": 200,
            "max_features": "sqrt",
            "min_samples_leaf": 1,
            "n_jobs": 1,
            "random_state": seed,
        }
        base.update(params)
        return RandomForestClassifier(**base)

    if family == "elastic_net":
        # l1_ratio=0 is ridge, l1_ratio=1 is lasso
        base = {
            "penalty": "elasticnet",
            "solver": "saga",
            "C": 1.0,
            "l1_ratio": 0.5,
            "max_iter": 5000,
            "tol": 1e-4,
            "random_state": seed,
        }
        base.update(params)
        return LogisticRegression(**base)

    if family == "svm_radial":
        base = {
            "kernel": "rbf",
            "gamma": "scale",
            "C": 1.0,
            "probability": True,  # needed for ROC AUC and thresholds
            "random_state": seed,
        }
        base.update(params)
        return SVC(**base)

    if family == "lightgbm":
        base = {
            "n_estimators": 100,
            "learning_rate": 0.1,
            "max_depth": -1,
            "num_leaves": 31,
            "min_child_samples": 20,
            "random_state": seed,
            "n_jobs": 1,
            "verbose": -1,
        }
        base.update(params)
        return LGBMClassifier(**base)

    raise ConfigurationError(f"Unknown classifier family: {family!r}, expected one of {FAMILIES}")


def make_grid(family, n_features, tune_length=config.TUNE_LENGTH):
    """Automatic candidate grid with ``tune_length`` values per tuned parameter.

    Raises
    ------
    ConfigurationError
        If the family cannot offer ``tune_length`` distinct values, e.g.
        a random forest asked for more ``max_features`` values than there
        are columns.
    """
    if tune_length < 1:
        raise ConfigurationError(f"make_grid: tune_length must be >= 1, got {tune_length}")

    if family == "dummy":
        return [{}]

    if family == "random_forest":
        # Columns tried per split, spread between 2 and all features
        if tune_length == 1:
            values = [max(1, int(np.floor(np.sqrt(n_features))))]
        else:
            values = np.unique(np.floor(np.linspace(2, n_features, tune_length)).astype(int)).tolist()
        if n_features < 2 or len(values) < tune_length:
            raise ConfigurationError(
                f"make_grid: random_forest needs {tune_length} distinct max_features values "
                f"but only {len(values)} exist for {n_features} features"
            )
        return [{"max_features": int(v)} for v in values]

    if family == "elastic_net":
        l1_ratios = np.linspace(0.1, 1.0, tune_length)
        c_values = np.logspace(-2, 2, tune_length) if tune_length > 1 else np.array([1.0])
        return [{"l1_ratio": float(r), "C": float(c)} for r in l1_ratios for c in c_values]

    if family == "svm_radial":
        c_values = 2.0 ** (np.arange(tune_length) - 2)
        return [{"C": float(c)} for c in c_values]

    if family == "lightgbm":
        depths = np.arange(1, tune_length + 1)
        n_trees = 50 * np.arange(1, tune_length + 1)
        return [{"max_depth": int(d), "n_estimators": int(n)} for d in depths for n in n_trees]

    raise ConfigurationError(f"Unknown classifier family: {family!r}, expected one of {FAMILIES}")


def build_pipeline(estimator, sampling="none", seed=config.RANDOM_STATE):
    """Wrap a classifier with an optional class-imbalance sampler.

    Parameters
    ----------
    estimator : estimator object
        An sklearn-compatible classifier.
    sampling : str, default="none"
        - "none": no resampling
        - "down": randomly drop majority rows
        - "up": randomly duplicate minority rows
        - "smote", "adasyn", "borderline_smote": synthetic minority rows
        - "smote_tomek", "smote_enn": SMOTE followed by cleaning
    seed : int
        Seed for the sampler.

    Returns
    -------
    pipeline : Pipeline or ImbPipeline
        An imblearn pipeline when sampling, so the sampler runs during
        ``fit`` only and never on data passed to ``predict``.
    """
    if sampling == "none":
        return Pipeline(steps=[("clf", estimator)])

    if sampling == "down":
        sampler = RandomUnderSampler(random_state=seed)
    elif sampling == "up":
        sampler = RandomOverSampler(random_state=seed)
    elif sampling == "smote":
        sampler = SMOTE(random_state=seed)
    elif sampling == "adasyn":
        sampler = ADASYN(random_state=seed)
    elif sampling == "borderline_smote":
        sampler = BorderlineSMOTE(random_state=seed)
    elif sampling == "smote_tomek":
        sampler = SMOTETomek(random_state=seed)
    elif sampling == "smote_enn":
        sampler = SMOTEENN(random_state=seed)
    else:
        raise ConfigurationError(f"Unknown sampling strategy: {sampling!r}, expected one of {SAMPLING_METHODS}")

    return ImbPipeline(steps=[("sampler", sampler), ("clf", estimator)])


def _score_fold(pipeline, X, y, train_idx, val_idx, fold, control, classes):
    """Fit on one fold and score it; returns (fold, metrics, error)."""
    negative = [c for c in classes if c != control.positive][0]
    y_tr, y_val = y.iloc[train_idx], y.iloc[val_idx]
    try:
        seen = sorted(y_tr.unique())
        if seen != list(classes):
            raise DegeneratePartitionError(fold, seen, classes)
        if y_val.nunique() < len(classes) and control.metric in BOTH_CLASS_METRICS:
            raise UnevaluableMetricError(control.metric, fold)

        with warnings.catch_warnings():
            # ConvergenceWarning is common for the elastic net during tuning
            warnings.filterwarnings("ignore", category=ConvergenceWarning)
            model = clone(pipeline).fit(X.iloc[train_idx], y_tr)
            proba = model.predict_proba(X.iloc[val_idx])

        fitted_classes = np.asarray(model.classes_)
        y_pred = fitted_classes[proba.argmax(axis=1)]
        metrics = classification_metrics(
            y_val,
            y_pred,
            proba[:, list(fitted_classes).index(control.positive)],
            positive=control.positive,
            negative=negative,
            cost_matrix=control.cost_matrix,
        )
        if np.isnan(metrics[control.metric]):
            raise UnevaluableMetricError(control.metric, fold, reason="is undefined on this fold")
    except Exception as e:
        # any estimator error discards the candidate, not the whole search
        return fold, None, f"{type(e).__name__}: {e}"
    return fold, metrics, None


def _check_training_data(X, y, control, family):
    for col in X.columns:
        if not pd.api.types.is_numeric_dtype(X[col]) or pd.api.types.is_bool_dtype(X[col]):
            raise ConfigurationError(f"train_model: column {col!r} is not numeric; apply the preprocessing first")
        if X[col].isna().any():
            raise ConfigurationError(f"train_model: column {col!r} has missing values; apply the preprocessing first")

    counts = y.value_counts()
    if len(counts) != 2 or control.positive not in counts.index:
        raise ConfigurationError(
            f"train_model: {family!r} needs two classes including {control.positive!r}, found {counts.index.tolist()}"
        )
    too_small = counts[counts < control.n_splits]
    if len(too_small):
        raise ConfigurationError(
            f"train_model: class {too_small.index[0]!r} has {int(too_small.iloc[0])} rows, "
            f"fewer than n_splits={control.n_splits}; some folds would not contain it"
        )


def train_model(train, target=config.TARGET_COL, family="random_forest", control=None, tune_length=config.TUNE_LENGTH, grid=None):
    """Tune and fit one classifier family.

    Parameters
    ----------
    train : pandas.DataFrame
        Preprocessed, labeled training data (numeric predictors only).
    target : str
        Label column.
    family : str
        One of ``FAMILIES``.
    control : TrainControl, optional
        Resampling, metric and sampling configuration.
    tune_length : int
        Size of the automatic grid (see :func:`make_grid`); ignored when
        ``grid`` is given.
    grid : list of dict, optional
        Explicit candidate hyperparameter settings.

    Returns
    -------
    TrainedClassifier

    Raises
    ------
    ConfigurationError
        Bad family, grid or data.
    TrainingFailedError
        Every candidate failed on at least one fold.
    """
    control = control or TrainControl()
    if family not in FAMILIES:
        raise ConfigurationError(f"Unknown classifier family: {family!r}, expected one of {FAMILIES}")
    if target not in train.columns:
        raise ConfigurationError(f"train_model: label column {target!r} not in the training data")

    X = train.drop(columns=[target])
    y = train[target]
    _check_training_data(X, y, control, family)
    classes = tuple(sorted(y.unique()))

    candidates = [dict(c) for c in grid] if grid is not None else make_grid(family, X.shape[1], tune_length)
    if not candidates:
        raise ConfigurationError(f"train_model: empty hyperparameter grid for {family!r}")

    folds = list(control.splitter().split(X, y))
    fold_labels = [control.fold_label(i) for i in range(len(folds))]

    records = {}
    fold_scores = {}
    failures = []

    def objective(trial):
        idx = trial.suggest_categorical("candidate", list(range(len(candidates))))
        params = candidates[idx]
        pipeline = build_pipeline(create_estimator(family, params, control.seed), control.sampling, control.seed)

        outcomes = Parallel(n_jobs=control.n_jobs)(
            delayed(_score_fold)(pipeline, X, y, train_idx, val_idx, label, control, classes)
            for (train_idx, val_idx), label in zip(folds, fold_labels)
        )

        errors = [(label, err) for label, _, err in outcomes if err is not None]
        if errors:
            for label, err in errors:
                failures.append(CandidateFailure(candidate=idx, params=params, fold=label, error=str(err)))
                logger.warning("%s candidate %d %s discarded on %s: %s", family, idx, params, label, err)
            records[idx] = {"candidate": idx, "status": "failed", **{f"param_{k}": v for k, v in params.items()}}
            raise optuna.TrialPruned()

        per_fold = pd.DataFrame([dict(metrics, fold=label) for label, metrics, _ in outcomes])
        fold_scores[idx] = per_fold
        rec = {"candidate": idx, "status": "ok", **{f"param_{k}": v for k, v in params.items()}}
        for metric in METRICS:
            rec[f"mean_{metric}"] = per_fold[metric].mean()
            rec[f"std_{metric}"] = per_fold[metric].std()
        records[idx] = rec
        logger.debug("%s candidate %d %s: mean %s = %.4f", family, idx, params, control.metric, rec[f"mean_{control.metric}"])
        return float(rec[f"mean_{control.metric}"])

    study = optuna.create_study(
        direction="maximize",
        sampler=GridSampler({"candidate": list(range(len(candidates)))}, seed=control.seed),
        study_name=f"{family}_{control.metric}",
    )
    study.optimize(objective, n_trials=len(candidates))

    results = pd.DataFrame([records[i] for i in sorted(records)])
    valid = results[results["status"] == "ok"]
    if valid.empty:
        raise TrainingFailedError(family, failures)

    # Highest mean score; ties go to the earliest candidate in the grid
    best_idx = int(valid.sort_values([f"mean_{control.metric}", "candidate"], ascending=[False, True])["candidate"].iloc[0])
    best_params = candidates[best_idx]

    estimator = build_pipeline(create_estimator(family, best_params, control.seed), control.sampling, control.seed)
    estimator.fit(X, y)

    resamples = fold_scores[best_idx].assign(model=family)
    logger.info(
        "%s: best candidate %d %s with mean %s %.4f over %d folds (%d of %d candidates discarded)",
        family,
        best_idx,
        best_params,
        control.metric,
        resamples[control.metric].mean(),
        len(folds),
        len(results) - len(valid),
        len(results),
    )
    return TrainedClassifier(
        family=family,
        params=dict(best_params),
        control=control,
        estimator=estimator,
        classes=classes,
        feature_names=tuple(X.columns),
        results=results,
        resamples=resamples,
        failures=tuple(failures),
    )


def train_models(train, target=config.TARGET_COL, families=config.FAMILIES, control=None, tune_length=config.TUNE_LENGTH, grids=None):
    """Train several families under one shared control; returns ``{family: model}``."""
    control = control or TrainControl()
    grids = grids or {}
    return {
        family: train_model(train, target, family, control, tune_length=tune_length, grid=grids.get(family))
        for family in families
    }


def _as_named(models):
    if isinstance(models, dict):
        return dict(models)
    return {m.family: m for m in models}


def compare_models(models):
    """Per-fold resampled metrics of several models, stacked long-form.

    All models must share the same resampling so that row ``FoldXX.RepY`` of
    each model was scored on the same held-out rows.
    """
    named = _as_named(models)
    if not named:
        raise ConfigurationError("compare_models: no models given")
    first_name, first = next(iter(named.items()))
    for name, model in named.items():
        if not model.control.same_resampling(first.control):
            raise ConfigurationError(f"compare_models: {name!r} was trained with a different control than {first_name!r}")
    frames = [model.resamples.assign(model=name) for name, model in named.items()]
    return pd.concat(frames, ignore_index=True)


def summarize_resamples(models, metric=None):
    """Distribution of one resampled metric per model (min, quartiles, mean, max)."""
    comparison = compare_models(models)
    metric = metric or next(iter(_as_named(models).values())).control.metric
    if metric not in comparison.columns:
        raise ConfigurationError(f"summarize_resamples: unknown metric {metric!r}")
    summary = comparison.groupby("model")[metric].describe()
    summary = summary.rename(columns={"25%": "q1", "50%": "median", "75%": "q3"})
    return summary[["min", "q1", "median", "mean", "q3", "max", "count"]].sort_values("mean", ascending=False)
