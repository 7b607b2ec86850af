"""Pytest fixtures for testing"""

import numpy as np
import pandas as pd
import pytest

from credit_workflow import config
from credit_workflow.preprocessing import Split, apply_preprocessing, fit_preprocessing, split_dataset
from credit_workflow.data import reduce_schema
from credit_workflow.training import TrainControl, train_model

SEED = 355


def make_credit_frame(n_rows=1000, n_bad=300, seed=0):
    """Synthetic applicants in the German credit schema with a 700/300 label split."""
    rng = np.random.default_rng(seed)
    bad = np.zeros(n_rows, dtype=bool)
    bad[rng.choice(n_rows, size=n_bad, replace=False)] = True

    df = pd.DataFrame(
        {
            "Duration": np.clip(rng.normal(np.where(bad, 26, 18), 10), 4, 72).round().astype(int),
            "Amount": np.clip(rng.lognormal(np.where(bad, 8.3, 7.8), 0.7), 250, 18500).round().astype(int),
            "InstallmentRatePercentage": rng.integers(1, 5, n_rows),
            "ResidenceDuration": rng.integers(1, 5, n_rows),
            "Age": np.clip(rng.normal(np.where(bad, 32, 37), 10), 19, 75).round().astype(int),
            "NumberExistingCredits": rng.choice([1, 2, 3, 4], n_rows, p=[0.63, 0.33, 0.03, 0.01]),
            "NumberPeopleMaintenance": rng.choice([1, 2], n_rows, p=[0.85, 0.15]),
            "Telephone": rng.binomial(1, 0.4, n_rows),
            "ForeignWorker": rng.binomial(1, 0.96, n_rows),
        }
    )

    groups = {
        "Housing": (["Rent", "Own", "ForFree"], [0.18, 0.71, 0.11]),
        "Property": (["RealEstate", "Insurance", "CarOther", "Unknown"], [0.28, 0.23, 0.33, 0.16]),
        "CheckingAccountStatus": (["lt.0", "0.to.200", "gt.200", "none"], [0.27, 0.27, 0.06, 0.40]),
    }
    for prefix, (levels, probs) in groups.items():
        drawn = rng.choice(levels, n_rows, p=probs)
        for level in levels:
            df[f"{prefix}.{level}"] = (drawn == level).astype(int)

    df["Class"] = np.where(bad, "Bad", "Good")
    return df


@pytest.fixture(scope="session")
def credit_df():
    return make_credit_frame()


@pytest.fixture(scope="session")
def reduced_df(credit_df):
    return reduce_schema(
        credit_df,
        columns=config.REDUCED_COLUMNS,
        rename=config.RENAME_COLUMNS,
        missing=config.MISSING_FRACTIONS,
        categorical=config.CATEGORICAL_COLUMNS,
        seed=SEED,
    )


@pytest.fixture(scope="session")
def split(reduced_df):
    return split_dataset(reduced_df, target="Class", train_fraction=0.7, seed=SEED)


@pytest.fixture(scope="session")
def preprocessing_model(split):
    return fit_preprocessing(split.train, target="Class", impute="bag", seed=SEED)


@pytest.fixture(scope="session")
def processed(split, preprocessing_model):
    return Split(
        train=apply_preprocessing(preprocessing_model, split.train),
        test=apply_preprocessing(preprocessing_model, split.test),
    )


@pytest.fixture(scope="session")
def small_control():
    return TrainControl(method="repeatedcv", n_splits=3, n_repeats=2, metric="roc_auc", seed=SEED)


@pytest.fixture(scope="session")
def rf_model(processed, small_control):
    grid = [
        {"max_features": 2, "n_estimators": 50},
        {"max_features": 4, "n_estimators": 50},
    ]
    return train_model(processed.train, "Class", "random_forest", small_control, grid=grid)


@pytest.fixture(scope="session")
def dummy_model(processed, small_control):
    return train_model(processed.train, "Class", "dummy", small_control)
