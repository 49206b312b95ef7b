# utils/constants.py

# --- Top-Level Result Directories ---
# Sequentially numbered for proper sorting

CONFIG_DIR = "01_RunConfiguration"        # Run config, metadata, seeds
DATA_INTEGRITY_DIR = "02_InputMatrixChecks"  # Matrix validation summary
NETWORK_DIR = "03_PredictiveNetwork"      # Edge list and run summary

# --- Edge List Layout ---
EDGE_SOURCE_COL = "featX"   # predictive feature
EDGE_TARGET_COL = "featY"   # feature being predicted
EDGE_IMPORTANCE_COL = "imp"
EDGE_FIT_COL = "R2"
EDGE_COLUMNS = [EDGE_SOURCE_COL, EDGE_TARGET_COL, EDGE_IMPORTANCE_COL, EDGE_FIT_COL]

EDGE_LIST_FILENAME = "edge_list.parquet"
NETWORK_SUMMARY_FILENAME = "network_summary.json"

# --- iRF Defaults ---
DEFAULT_ITERATIONS = 3              # rounds per feature inside iRF-LOOP
DEFAULT_IRF_ITERATIONS = 5          # rounds for a standalone iRF run
DEFAULT_NUM_TREES = 500
DEFAULT_NUM_PERMUTATIONS = 500
DEFAULT_FDR_THRESHOLD = 0.2
DEFAULT_IMPORTANCE_MODE = "impurity_corrected"
IMPORTANCE_MODES = ("impurity", "impurity_corrected")

# Fixed floor for the active-feature stopping rule: stop once fewer than
# max(STOP_FRACTION * n_predictors, STOP_MIN_FEATURES) predictors keep weight.
STOP_FRACTION = 0.01
STOP_MIN_FEATURES = 10

# --- Failure Policy ---
ON_ERROR_ABORT = "abort"
ON_ERROR_SKIP = "skip"
ON_ERROR_POLICIES = (ON_ERROR_ABORT, ON_ERROR_SKIP)
