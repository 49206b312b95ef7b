import logging
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Optional, Dict, Any

from utils.exceptions import DataValidationError
from utils.error_handling import handle_engine_errors
from utils.file_io import read_dataframe, save_json
from utils import constants

class DataManager:
    """
    Loads and validates the feature matrix used to build the predictive network.

    Rows are samples and columns are features; an optional index column holds
    sample identifiers and is not treated as a feature.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        self.config = config
        self.logger = logger
        self.data: Optional[pd.DataFrame] = None
        self.base_dir = Path(self.config.get('outputs', {}).get('base_results_dir', 'results'))

    @handle_engine_errors("Data Management", wrap_as=DataValidationError)
    def execute(self) -> pd.DataFrame:
        """
        Load, validate and summarize the feature matrix.

        Returns:
            pd.DataFrame: The validated matrix.
        """
        self.logger.info("Starting Data Manager execution...")

        self.load_data()
        summary = self.validate_matrix()

        save_json(summary, self.base_dir / constants.DATA_INTEGRITY_DIR / "matrix_summary.json")
        self.logger.info(
            f"Feature matrix validated: {summary['n_samples']} samples x {summary['n_features']} features"
        )
        return self.data

    def load_data(self) -> pd.DataFrame:
        data_cfg = self.config.get('data', {})
        file_path = data_cfg.get('file_path')
        if not file_path:
            raise DataValidationError("data.file_path must be specified.")

        path = Path(file_path)
        if not path.is_file():
            raise DataValidationError(f"Data file not found: {path}")

        try:
            self.data = read_dataframe(path, index_col=data_cfg.get('index_column'))
        except ValueError as e:
            raise DataValidationError(str(e)) from e

        self.logger.info(f"Loaded {path} with shape {self.data.shape}")
        return self.data

    def validate_matrix(self) -> Dict[str, Any]:
        """
        Checks the loaded matrix and returns a summary dict.

        Raises:
            DataValidationError: On any violation.
        """
        if self.data is None:
            raise DataValidationError("No data loaded.")
        df = self.data

        if df.shape[1] < 2:
            raise DataValidationError(f"At least 2 feature columns are required, found {df.shape[1]}.")
        if df.shape[0] < 2:
            raise DataValidationError(f"At least 2 samples are required, found {df.shape[0]}.")

        dupes = df.columns[df.columns.duplicated()].unique().tolist()
        if dupes:
            raise DataValidationError(f"Duplicate feature names: {dupes}")

        non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
        if non_numeric:
            raise DataValidationError(f"Non-numeric feature columns: {non_numeric[:10]}")

        values = df.to_numpy(dtype=float)
        n_nan = int(np.isnan(values).sum())
        n_inf = int(np.isinf(values).sum())
        if n_nan or n_inf:
            raise DataValidationError(f"Feature matrix contains {n_nan} NaN and {n_inf} infinite values.")

        constant_cols = df.columns[df.nunique() <= 1].tolist()
        if constant_cols:
            # Still usable; a constant response just yields an undefined R^2.
            self.logger.warning(f"{len(constant_cols)} constant feature(s): {constant_cols[:10]}")

        return {
            'n_samples': int(df.shape[0]),
            'n_features': int(df.shape[1]),
            'constant_features': [str(c) for c in constant_cols],
        }
