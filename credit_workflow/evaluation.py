"""Predictions, confusion matrices, derived metrics and variable importance."""

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from sklearn.inspection import permutation_importance
from sklearn.metrics import (
    accuracy_score,
    average_precision_score,
    confusion_matrix,
    matthews_corrcoef,
    roc_auc_score,
)

from credit_workflow import config
from credit_workflow.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Metrics reported for every evaluation; roc_auc and pr_auc need probabilities
CONFUSION_METRICS = (
    "sensitivity",
    "specificity",
    "precision",
    "npv",
    "accuracy",
    "balanced_accuracy",
    "kappa",
    "mcc",
    "f1",
)
PROBABILITY_METRICS = ("roc_auc", "pr_auc")


def _ratio(num, denom):
    return num / denom if denom > 0 else np.nan


def make_cost_matrix(cost_fp=config.COST_FP, cost_fn=config.COST_FN, benefit_tp=config.BENEFIT_TP, benefit_tn=config.BENEFIT_TN):
    """Build a 2x2 cost/benefit matrix ordered ``[negative, positive]``.

    Convention: benefits are positive, costs are negative, rows are the true
    class and columns the predicted class::

        [[BENEFIT_TN, -COST_FP],
         [-COST_FN,    BENEFIT_TP]]
    """
    return np.array([[benefit_tn, -cost_fp], [-cost_fn, benefit_tp]], dtype=float)


def cost_threshold(cost_matrix):
    """Positive-class probability above which flagging an applicant pays off.

    Predicting positive has the higher expected value once
    ``p * (M[1, 1] - M[1, 0]) >= (1 - p) * (M[0, 0] - M[0, 1])``, which gives
    ``COST_FP / (COST_FP + COST_FN)`` when both benefits are zero. Depends on
    the costs only, so it can be fixed before any data is seen.
    """
    m = np.asarray(cost_matrix, dtype=float)
    if m.shape != (2, 2):
        raise ConfigurationError(f"cost_threshold: expected a 2x2 cost matrix, got shape {m.shape}")
    keep_negative = m[0, 0] - m[0, 1]
    flag_positive = m[1, 1] - m[1, 0]
    if keep_negative < 0 or flag_positive < 0 or keep_negative + flag_positive == 0:
        raise ConfigurationError(f"cost_threshold: each class must be worth predicting correctly, got {m.tolist()}")
    return keep_negative / (keep_negative + flag_positive)


def specificity_score(y_true, y_pred, positive=config.POSITIVE_CLASS, negative=config.NEGATIVE_CLASS):
    """Proportion of actual negatives predicted negative, TN / (TN + FP).

    Not provided by sklearn. Returns np.nan when there are no negatives.
    """
    tn, fp, _, _ = confusion_matrix(y_true, y_pred, labels=[negative, positive]).ravel()
    return _ratio(tn, tn + fp)


def cost_benefit_score(y_true, y_pred, cost_matrix, labels=None, normalize=True):
    """Calculate a cost-benefit score from a confusion matrix and a cost matrix.

    Parameters
    ----------
    y_true, y_pred : array-like
        True and predicted labels.
    cost_matrix : array-like, shape (n_classes, n_classes)
        Entry ``[i, j]`` is the value of predicting class ``j`` for a true
        class ``i``; positive values are benefits, negative values costs.
    labels : list, optional
        Class order used for both matrices, e.g. ``[negative, positive]``.
    normalize : bool, default=True
        If True, rescale to [0, 1] between the worst possible and the best
        possible score for the observed class counts. If False, return the
        per-sample average, which is comparable across fold sizes.

    Returns
    -------
    float
    """
    cm = confusion_matrix(y_true, y_pred, labels=labels)
    cost_matrix = np.asarray(cost_matrix, dtype=float)

    if cm.shape != cost_matrix.shape:
        raise ConfigurationError(f"Confusion matrix shape {cm.shape} doesn't match cost matrix shape {cost_matrix.shape}")

    raw_score = np.sum(cm * cost_matrix)
    n_samples = cm.sum()
    if not normalize:
        return raw_score / n_samples if n_samples > 0 else 0.0

    class_counts = cm.sum(axis=1)
    best_score = np.sum(class_counts * np.diag(cost_matrix))

    # Worst: every sample of class i gets the most costly wrong prediction
    worst_score = 0.0
    for i in range(cm.shape[0]):
        costs_for_class = cost_matrix[i, :].copy()
        costs_for_class[i] = np.inf
        worst_score += class_counts[i] * cost_matrix[i, np.argmin(costs_for_class)]

    if best_score == worst_score:
        return 1.0 if raw_score >= best_score else 0.0
    return float(np.clip((raw_score - worst_score) / (best_score - worst_score), 0.0, 1.0))


def classification_metrics(y_true, y_pred, proba=None, positive=config.POSITIVE_CLASS, negative=config.NEGATIVE_CLASS, cost_matrix=None):
    """Compute every confusion-matrix metric, plus ROC/PR AUC from ``proba``.

    ``proba`` is the predicted probability of ``positive``. Undefined values
    (a zero denominator, or an AUC on single-class data) are np.nan.
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[negative, positive]).ravel()
    n = tn + fp + fn + tp

    sensitivity = _ratio(tp, tp + fn)
    specificity = _ratio(tn, tn + fp)
    p_observed = _ratio(tp + tn, n)
    p_expected = _ratio((tp + fp) * (tp + fn) + (tn + fn) * (tn + fp), n * n)

    metrics = {
        "sensitivity": sensitivity,
        "specificity": specificity,
        "precision": _ratio(tp, tp + fp),
        "npv": _ratio(tn, tn + fn),
        "accuracy": accuracy_score(y_true, y_pred) if n else np.nan,
        "balanced_accuracy": (sensitivity + specificity) / 2,
        "kappa": _ratio(p_observed - p_expected, 1 - p_expected),
        "mcc": matthews_corrcoef(y_true, y_pred) if n else np.nan,
        "f1": _ratio(2 * tp, 2 * tp + fp + fn),
    }

    if proba is not None:
        is_positive = (y_true == positive).astype(int)
        both_classes = 0 < is_positive.sum() < len(is_positive)
        metrics["roc_auc"] = roc_auc_score(is_positive, proba) if both_classes else np.nan
        metrics["pr_auc"] = average_precision_score(is_positive, proba) if both_classes else np.nan

    if cost_matrix is not None:
        metrics["cost_benefit"] = cost_benefit_score(y_true, y_pred, cost_matrix, labels=[negative, positive], normalize=False)
    return metrics


@dataclass(frozen=True)
class ConfusionReport:
    """Predictions against ground truth for one decision rule.

    Rows of :attr:`matrix` are predictions and columns the reference labels,
    positive class first.
    """

    positive: str
    negative: str
    tp: int
    fp: int
    tn: int
    fn: int
    metrics: dict = field(default_factory=dict)
    threshold: float = None

    @property
    def n(self):
        return self.tp + self.fp + self.tn + self.fn

    @property
    def matrix(self):
        index = pd.Index([self.positive, self.negative], name="Prediction")
        columns = pd.Index([self.positive, self.negative], name="Reference")
        return pd.DataFrame([[self.tp, self.fp], [self.fn, self.tn]], index=index, columns=columns)

    def to_series(self):
        return pd.Series(self.metrics, name="value")


def _other_class(labels, positive):
    others = set(labels) - {positive}
    if len(others) > 1:
        raise ConfigurationError(f"Expected a binary problem with positive class {positive!r}, found labels {sorted(others | {positive})}")
    return others.pop() if others else config.NEGATIVE_CLASS


def confusion_report(
    y_true,
    y_pred,
    positive=config.POSITIVE_CLASS,
    negative=None,
    extra=None,
    cost_matrix=None,
    threshold=None,
):
    """Summarise predictions as a :class:`ConfusionReport`.

    Parameters
    ----------
    y_true, y_pred : array-like
        Reference and predicted labels.
    positive : str
        The class counted as a "positive" (for credit risk, ``"Bad"``).
    negative : str, optional
        The other class; inferred from the labels when omitted.
    extra : dict, optional
        ``{name: callable(y_true, y_pred) -> float}`` additional metrics.
    cost_matrix : array-like, optional
        2x2 matrix ordered ``[negative, positive]`` (see
        :func:`make_cost_matrix`); adds ``cost_benefit`` to the metrics.
    threshold : float, optional
        Recorded on the report for reference.
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if negative is None:
        negative = _other_class(np.concatenate([y_true, y_pred]), positive)

    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[negative, positive]).ravel()
    if tp + fp + tn + fn != len(y_true):
        raise ConfigurationError(f"Labels outside {{{positive!r}, {negative!r}}} found in the predictions or reference")

    metrics = classification_metrics(y_true, y_pred, positive=positive, negative=negative, cost_matrix=cost_matrix)
    for name, func in (extra or {}).items():
        metrics[name] = func(y_true, y_pred)

    return ConfusionReport(
        positive=positive,
        negative=negative,
        tp=int(tp),
        fp=int(fp),
        tn=int(tn),
        fn=int(fn),
        metrics=metrics,
        threshold=threshold,
    )


def predict_labels(model, X, threshold=None, positive=None):
    """Predict labels by arg-max probability or by a positive-class threshold.

    With ``threshold``, a row is labeled ``positive`` when its predicted
    probability of ``positive`` is at least ``threshold``. Moving the
    threshold away from 0.5 trades one error type for the other; choosing it
    is left to the caller.
    """
    proba = model.predict_proba(X)
    if threshold is None:
        return proba.idxmax(axis=1).rename("prediction")

    if not 0.0 <= threshold <= 1.0:
        raise ConfigurationError(f"predict_labels: threshold must be in [0, 1], got {threshold}")
    positive = positive or model.control.positive
    if positive not in proba.columns:
        raise ConfigurationError(f"predict_labels: unknown positive class {positive!r}, model classes are {list(proba.columns)}")
    negative = _other_class(proba.columns, positive)
    labels = np.where(proba[positive] >= threshold, positive, negative)
    return pd.Series(labels, index=proba.index, name="prediction")


@dataclass(frozen=True, eq=False)
class Evaluation:
    predictions: pd.Series
    probabilities: pd.DataFrame
    report: ConfusionReport


def evaluate(model, test, target=config.TARGET_COL, threshold=None, positive=None, extra=None, cost_matrix=None):
    """Predict on a labeled test set and build the confusion report.

    Returns
    -------
    Evaluation
        Predicted labels, class probabilities and the :class:`ConfusionReport`.
    """
    if target not in test.columns:
        raise ConfigurationError(f"evaluate: label column {target!r} not in the test data")
    positive = positive or model.control.positive
    X = test.drop(columns=[target])
    y = test[target]

    probabilities = model.predict_proba(X)
    predictions = predict_labels(model, X, threshold=threshold, positive=positive)
    negative = _other_class(model.classes, positive)
    report = confusion_report(
        y,
        predictions,
        positive=positive,
        negative=negative,
        extra=extra,
        cost_matrix=cost_matrix,
        threshold=threshold,
    )
    logger.info(
        "Evaluated %s on %d rows (threshold=%s): sensitivity=%.3f specificity=%.3f",
        model.family,
        report.n,
        threshold,
        report.metrics["sensitivity"],
        report.metrics["specificity"],
    )
    return Evaluation(predictions=predictions, probabilities=probabilities, report=report)


def threshold_table(model, test, target=config.TARGET_COL, thresholds=None, positive=None, cost_matrix=None):
    """Confusion counts and metrics for a range of positive-class thresholds."""
    if thresholds is None:
        thresholds = np.linspace(0.0, 1.0, 101)
    positive = positive or model.control.positive
    negative = _other_class(model.classes, positive)
    X = test.drop(columns=[target])
    y = test[target]
    proba = model.predict_proba(X)[positive].to_numpy()

    records = []
    for thr in thresholds:
        y_thr = np.where(proba >= thr, positive, negative)
        report = confusion_report(y, y_thr, positive=positive, negative=negative, cost_matrix=cost_matrix, threshold=thr)
        rec = {"threshold": thr, "tp": report.tp, "fp": report.fp, "tn": report.tn, "fn": report.fn}
        rec.update(report.metrics)
        records.append(rec)
    return pd.DataFrame(records)


def variable_importance(model, X=None, y=None, seed=config.RANDOM_STATE, n_repeats=5, scale=True):
    """Rank the model's input columns by importance.

    Tree ensembles report impurity importances and linear models the
    absolute coefficients. Other models (e.g. the radial SVM) fall back to
    permutation importance measured by ROC AUC on ``X``/``y``, which must
    then be given. With ``scale``, values are rescaled to 0-100.
    """
    clf = model.estimator.named_steps["clf"]
    features = list(model.feature_names)

    if hasattr(clf, "feature_importances_"):
        values = np.asarray(clf.feature_importances_, dtype=float)
    elif hasattr(clf, "coef_"):
        values = np.abs(np.asarray(clf.coef_, dtype=float)).ravel()
    else:
        if X is None or y is None:
            raise ConfigurationError(f"variable_importance: {model.family!r} has no built-in importances; pass X and y")
        result = permutation_importance(
            model.estimator,
            X[features],
            y,
            scoring="roc_auc",
            n_repeats=n_repeats,
            random_state=seed,
        )
        values = result.importances_mean

    if scale:
        spread = values.max() - values.min()
        values = (values - values.min()) / spread * 100.0 if spread > 0 else np.zeros_like(values)

    importance_df = pd.DataFrame({"feature": features, "importance": values})
    return importance_df.sort_values("importance", ascending=False, ignore_index=True)
