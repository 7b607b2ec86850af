"""Unit tests for the decision rules, confusion report and importances"""

import numpy as np
import pandas as pd
import pytest

from credit_workflow.evaluation import (
    classification_metrics,
    confusion_report,
    cost_benefit_score,
    cost_threshold,
    evaluate,
    make_cost_matrix,
    predict_labels,
    specificity_score,
    threshold_table,
    variable_importance,
)
from credit_workflow.exceptions import ConfigurationError
from credit_workflow.training import train_model

Y_TRUE = ["Bad", "Bad", "Bad", "Good", "Good"]
Y_PRED = ["Bad", "Bad", "Good", "Good", "Bad"]


def test_confusion_report_counts_and_metrics():
    report = confusion_report(Y_TRUE, Y_PRED, positive="Bad")

    assert (report.tp, report.fn, report.tn, report.fp) == (2, 1, 1, 1)
    assert report.negative == "Good"
    assert report.n == 5
    assert report.metrics["sensitivity"] == pytest.approx(2 / 3)
    assert report.metrics["specificity"] == pytest.approx(1 / 2)
    assert report.metrics["precision"] == pytest.approx(2 / 3)
    assert report.metrics["npv"] == pytest.approx(1 / 2)
    assert report.metrics["accuracy"] == pytest.approx(3 / 5)


def test_confusion_matrix_layout():
    matrix = confusion_report(Y_TRUE, Y_PRED, positive="Bad").matrix

    assert matrix.index.name == "Prediction"
    assert matrix.columns.name == "Reference"
    assert matrix.loc["Bad", "Bad"] == 2
    assert matrix.loc["Bad", "Good"] == 1
    assert matrix.loc["Good", "Bad"] == 1
    assert matrix.loc["Good", "Good"] == 1


def test_confusion_report_undefined_ratio_is_nan():
    report = confusion_report(["Good", "Good"], ["Good", "Good"], positive="Bad", negative="Good")
    assert np.isnan(report.metrics["sensitivity"])
    assert np.isnan(report.metrics["precision"])
    assert report.metrics["specificity"] == 1.0


def test_confusion_report_extra_metrics_and_costs():
    cost_matrix = make_cost_matrix(cost_fp=1, cost_fn=5)
    report = confusion_report(
        Y_TRUE,
        Y_PRED,
        positive="Bad",
        extra={"n_flagged": lambda y, p: float((np.asarray(p) == "Bad").sum())},
        cost_matrix=cost_matrix,
    )
    assert report.metrics["n_flagged"] == 3.0
    # one missed Bad (-5) and one refused Good (-1) over five applicants
    assert report.metrics["cost_benefit"] == pytest.approx(-6 / 5)
    assert report.to_series()["n_flagged"] == 3.0


def test_confusion_report_rejects_foreign_labels():
    with pytest.raises(ConfigurationError):
        confusion_report(["Bad", "Good", "Maybe"], ["Bad", "Good", "Good"], positive="Bad")


def test_make_cost_matrix():
    assert make_cost_matrix(cost_fp=1, cost_fn=5, benefit_tp=2, benefit_tn=3).tolist() == [[3.0, -1.0], [-5.0, 2.0]]


def test_cost_threshold():
    assert cost_threshold(make_cost_matrix(cost_fp=1, cost_fn=5)) == pytest.approx(1 / 6)
    assert cost_threshold(make_cost_matrix(cost_fp=1, cost_fn=1)) == pytest.approx(0.5)
    # benefits shift the break-even point: (3 + 1) / (3 + 1 + 2 + 5)
    assert cost_threshold(make_cost_matrix(cost_fp=1, cost_fn=5, benefit_tp=2, benefit_tn=3)) == pytest.approx(4 / 11)

    with pytest.raises(ConfigurationError):
        cost_threshold([[0, 0], [0, 0]])


def test_cost_benefit_score_normalized():
    cost_matrix = [[0, -1], [-10, 5]]
    y_true = [0, 0, 1, 1, 1]
    y_pred = [0, 1, 1, 1, 0]
    # raw -1, best 15, worst -32
    assert cost_benefit_score(y_true, y_pred, cost_matrix) == pytest.approx(31 / 47)
    assert cost_benefit_score(y_true, y_pred, cost_matrix, normalize=False) == pytest.approx(-0.2)
    assert cost_benefit_score(y_true, y_true, cost_matrix) == pytest.approx(1.0)


def test_cost_benefit_score_shape_mismatch():
    with pytest.raises(ConfigurationError):
        cost_benefit_score([0, 1, 2], [0, 1, 2], [[0, -1], [-1, 0]])


def test_specificity_score():
    assert specificity_score(Y_TRUE, Y_PRED, positive="Bad", negative="Good") == pytest.approx(0.5)


def test_classification_metrics_auc():
    proba = [0.9, 0.8, 0.3, 0.2, 0.6]
    metrics = classification_metrics(Y_TRUE, Y_PRED, proba, positive="Bad", negative="Good")
    # Bad scores (0.9, 0.8, 0.3) against Good scores (0.2, 0.6): 5 of 6 pairs ordered
    assert metrics["roc_auc"] == pytest.approx(5 / 6)

    single = classification_metrics(["Bad", "Bad"], ["Bad", "Good"], [0.9, 0.4], positive="Bad", negative="Good")
    assert np.isnan(single["roc_auc"])
    assert np.isnan(single["pr_auc"])


# Decision rules on a trained model


def test_predict_labels_argmax_matches_default_threshold(rf_model, processed):
    X = processed.test.drop(columns="Class")
    argmax = predict_labels(rf_model, X)
    proba = rf_model.predict_proba(X)

    assert argmax.equals(rf_model.predict(X))
    not_tied = (proba["Bad"] - 0.5).abs() > 1e-9
    at_half = predict_labels(rf_model, X, threshold=0.5, positive="Bad")
    assert (argmax[not_tied] == at_half[not_tied]).all()


@pytest.mark.parametrize("threshold", [-0.1, 1.5])
def test_predict_labels_rejects_bad_threshold(rf_model, processed, threshold):
    with pytest.raises(ConfigurationError):
        predict_labels(rf_model, processed.test.drop(columns="Class"), threshold=threshold)


def test_predict_labels_unknown_positive(rf_model, processed):
    with pytest.raises(ConfigurationError, match="Ugly"):
        predict_labels(rf_model, processed.test.drop(columns="Class"), threshold=0.3, positive="Ugly")


def test_evaluate(rf_model, processed):
    result = evaluate(rf_model, processed.test, target="Class")
    report = result.report

    assert report.n == len(processed.test) == 300
    assert report.tp + report.fn == 90
    assert report.tn + report.fp == 210
    assert list(result.probabilities.columns) == ["Bad", "Good"]
    assert result.predictions.index.equals(processed.test.index)
    assert report.threshold is None


def test_lower_threshold_flags_more_applicants(rf_model, processed):
    default = evaluate(rf_model, processed.test, threshold=0.5).report
    lenient = evaluate(rf_model, processed.test, threshold=0.2).report

    assert lenient.tp + lenient.fp >= default.tp + default.fp
    assert lenient.metrics["sensitivity"] >= default.metrics["sensitivity"]
    assert lenient.metrics["specificity"] <= default.metrics["specificity"]
    assert lenient.threshold == 0.2


def test_threshold_table_is_monotone(rf_model, processed):
    table = threshold_table(rf_model, processed.test, cost_matrix=make_cost_matrix())

    assert len(table) == 101
    assert ((table[["tp", "fp", "tn", "fn"]].sum(axis=1)) == 300).all()
    assert (np.diff(table["sensitivity"]) <= 0).all()
    assert (np.diff(table["specificity"]) >= 0).all()
    assert table.loc[0, "sensitivity"] == 1.0
    assert "cost_benefit" in table.columns


def test_evaluate_missing_label(rf_model, processed):
    with pytest.raises(ConfigurationError):
        evaluate(rf_model, processed.test.drop(columns="Class"))


# Importance


def test_variable_importance_tree(rf_model):
    importance = variable_importance(rf_model)

    assert set(importance["feature"]) == set(rf_model.feature_names)
    assert importance["importance"].iloc[0] == pytest.approx(100.0)
    assert importance["importance"].min() == pytest.approx(0.0)
    assert importance["importance"].is_monotonic_decreasing


def test_variable_importance_linear(processed, small_control):
    model = train_model(processed.train, "Class", "elastic_net", small_control, grid=[{"C": 1.0}])
    importance = variable_importance(model, scale=False)
    assert (importance["importance"] >= 0).all()
    assert len(importance) == len(model.feature_names)


def test_variable_importance_permutation(processed, small_control):
    model = train_model(processed.train, "Class", "svm_radial", small_control, grid=[{"C": 1.0}])

    with pytest.raises(ConfigurationError):
        variable_importance(model)

    X = processed.test.drop(columns="Class")
    importance = variable_importance(model, X, processed.test["Class"], n_repeats=2)
    assert len(importance) == X.shape[1]
    assert isinstance(importance, pd.DataFrame)
