"""Credit-risk classification workflow on the German credit data.

Stages: load -> reduce schema -> variance check -> split -> fit preprocessing
on train and apply to both sets -> train/tune classifiers -> evaluate.
"""

__version__ = "0.1.0"

from credit_workflow.data import collapse_levels, inject_missing, load_german_credit, reduce_schema, summarize_dataset
from credit_workflow.evaluation import (
    ConfusionReport,
    confusion_report,
    cost_threshold,
    evaluate,
    make_cost_matrix,
    predict_labels,
    threshold_table,
    variable_importance,
)
from credit_workflow.exceptions import (
    ConfigurationError,
    DegeneratePartitionError,
    SchemaMismatchError,
    TrainingFailedError,
    UnevaluableMetricError,
    WorkflowError,
)
from credit_workflow.preprocessing import apply_preprocessing, fit_preprocessing, split_dataset
from credit_workflow.training import TrainControl, TrainedClassifier, compare_models, summarize_resamples, train_model, train_models
from credit_workflow.variance import flag_near_zero_variance, near_zero_variance
