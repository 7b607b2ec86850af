"""Default configuration for the credit-risk workflow.

Every randomized function in the package takes an explicit ``seed`` argument;
the values here are only the defaults used when a caller does not pass one.
"""

# Reproducibility and partitioning
RANDOM_STATE = 355
TRAIN_FRACTION = 0.7  # 70% train / 30% test

# Quick mode for faster development and testing
QUICK_MODE = False

# Cross-validation configuration
CV_METHOD = "repeatedcv"
N_SPLITS = 3 if QUICK_MODE else 10
N_REPEATS = 1 if QUICK_MODE else 5
TUNE_LENGTH = 3

# Parallelism for the fold loop (results do not depend on this)
NUM_JOBS = 1

# Target definition
TARGET_COL = "Class"
POSITIVE_CLASS = "Bad"  # the event of interest: an applicant who defaults
NEGATIVE_CLASS = "Good"

# Columns kept from the full German credit data
REDUCED_COLUMNS = [
    "Duration",
    "Amount",
    "InstallmentRatePercentage",
    "ResidenceDuration",
    "Age",
    "NumberExistingCredits",
    "NumberPeopleMaintenance",
    "Telephone",
    "ForeignWorker",
    "Housing.Rent",
    "Housing.Own",
    "Housing.ForFree",
    "Property.RealEstate",
    "Property.Insurance",
    "Property.CarOther",
    "Property.Unknown",
    "Class",
]
RENAME_COLUMNS = {"InstallmentRatePercentage": "InstallmentRate"}

# Low-cardinality counts that are better treated as categories
CATEGORICAL_COLUMNS = ["NumberExistingCredits", "NumberPeopleMaintenance"]

# Synthetic missingness injected for the imputation walkthrough
MISSING_FRACTIONS = {"Age": 0.03, "Duration": 0.07}

# Near-zero-variance thresholds
FREQ_CUT = 95 / 5
UNIQUE_CUT = 10

# Imputation strategy: "bag" (bagged trees per column) or "median"
IMPUTE_STRATEGY = "bag"
IMPUTE_N_ESTIMATORS = 25

# Classifier families (master list) and the ones compared by default
ALL_FAMILIES = [
    "dummy",
    "random_forest",
    "elastic_net",
    "svm_radial",
    "lightgbm",
]
FAMILIES = ["random_forest", "elastic_net", "svm_radial"]

# Sampling strategies for handling class imbalance inside training folds
ALL_SAMPLING_METHODS = [
    "none",
    "down",
    "up",
    "smote",
    "adasyn",
    "borderline_smote",
    "smote_tomek",
    "smote_enn",
]

# Optimisation metric used to pick the best candidate
TUNING_METRIC = "roc_auc"

# Cost/benefit parameters for the asymmetric cost framing
# Lending to a defaulter (missing a "Bad") costs far more than refusing a good applicant
COST_FP = 1  # Cost of flagging a good applicant as bad
COST_FN = 5  # Cost of missing a bad applicant
BENEFIT_TP = 0
BENEFIT_TN = 0
