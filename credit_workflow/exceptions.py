"""Workflow exceptions"""


class WorkflowError(Exception):
    """Base exception for the credit workflow"""

    pass


class ConfigurationError(WorkflowError, ValueError):
    """A parameter, column name or grid cannot be used as given"""

    pass


class SchemaMismatchError(ConfigurationError):
    """A fitted model was applied to data missing one of its fitted columns"""

    def __init__(self, column, stage):
        self.column = column
        self.stage = stage
        super().__init__(f"{stage}: column {column!r} was present at fit time but is missing from the data")


class DegeneratePartitionError(WorkflowError):
    """A split or cross-validation fold does not contain every class"""

    def __init__(self, fold, classes, expected):
        self.fold = fold
        self.classes = list(classes)
        self.expected = list(expected)
        super().__init__(f"{fold}: found classes {self.classes}, expected {self.expected}")


class UnevaluableMetricError(WorkflowError):
    """A metric that needs both classes was computed on a single-class fold"""

    def __init__(self, metric, fold, reason="needs both classes in the held-out data"):
        self.metric = metric
        self.fold = fold
        super().__init__(f"{fold}: metric {metric!r} {reason}")


class TrainingFailedError(WorkflowError):
    """Every candidate of a hyperparameter search was discarded"""

    def __init__(self, family, failures):
        self.family = family
        self.failures = list(failures)
        detail = "; ".join(f"candidate {f.candidate} ({f.fold}): {f.error}" for f in self.failures[:5])
        super().__init__(f"No valid candidate for {family!r} ({len(self.failures)} failures): {detail}")
