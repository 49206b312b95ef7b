import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from modules.base.base_engine import BaseEngine
from modules.forest_engine import ForestEngine, WeightedForestEngine
from modules.network_engine.edges import Edge, edges_from_result, edges_to_frame
from modules.reweighting_engine import MtryPolicy, ReweightingEngine, check_max_rounds
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.exceptions import (
    FeatureTaskError,
    IRFLoopException,
    InvalidInputError,
    InvalidRangeError,
)
from utils.file_io import save_dataframe, save_json


def _run_feature(reweighter: ReweightingEngine,
                 matrix: pd.DataFrame,
                 g: int,
                 run_kwargs: Dict[str, Any],
                 on_error: str) -> Tuple[int, Optional[List[Edge]], Optional[str]]:
    """
    iRF for one response column (1-based index ``g``).

    Returns:
        (g, edges, error). ``edges`` is None and ``error`` set when the task
        failed under the skip policy.
    """
    target = matrix.columns[g - 1]
    response = matrix.iloc[:, g - 1]
    predictors = matrix.drop(columns=[target])
    try:
        best = reweighter.run(predictors, response, save_all=False, **run_kwargs)
    except IRFLoopException as exc:
        if on_error == constants.ON_ERROR_SKIP:
            return g, None, f"{type(exc).__name__}: {exc}"
        raise FeatureTaskError(g, str(target), exc) from exc
    return g, edges_from_result(best, target), None


class NetworkEngine(BaseEngine):
    """
    iRF Leave-One-Out Prediction (iRF-LOOP).

    For a matrix of n features, each feature g is used once as the response
    and the remaining n - 1 as predictors. The best-fitting iRF round for each
    g contributes one edge (predictor -> g) per predictor with importance > 0.
    Importances are normalized within each run, so edges are comparable across
    responses; the model's fit is carried on every edge.

    Features are processed in parallel, but the edge list is always ordered by
    response index, then predictor column order.
    """

    def __init__(self, config: dict, logger: logging.Logger, forest_engine: Optional[ForestEngine] = None):
        super().__init__(config, logger)

        net_cfg = config.get('network', {})
        self.iterations = net_cfg.get('iterations', constants.DEFAULT_ITERATIONS)
        self.first = net_cfg.get('first')
        self.last = net_cfg.get('last')
        self.mtry = net_cfg.get('mtry')
        self.classification = net_cfg.get('classification', False)
        self.use_pvalues = net_cfg.get('use_pvalues', False)
        self.on_error = net_cfg.get('on_error', constants.ON_ERROR_ABORT)
        self.show_progress = net_cfg.get('show_progress', False)
        if self.on_error not in constants.ON_ERROR_POLICIES:
            raise InvalidInputError(
                f"on_error must be one of {list(constants.ON_ERROR_POLICIES)}, got '{self.on_error}'"
            )

        exec_cfg = config.get('execution', {})
        self.n_jobs = exec_cfg.get('n_jobs', 1)
        self.backend = exec_cfg.get('backend', 'loky')
        self.seed = config.get('_internal_seeds', {}).get('forest', exec_cfg.get('seed'))

        # 'importance' selects the importance mode; the rest are forest options
        forest_cfg = {k: v for k, v in config.get('forest', {}).items() if k != 'importance'}
        self.forest_engine = forest_engine or WeightedForestEngine(logger=logger, **forest_cfg)
        self.reweighter = ReweightingEngine(self.forest_engine, config, logger)

        self.failed_features: List[Dict[str, Any]] = []
        self.features_processed = 0

    def _get_engine_directory_name(self) -> str:
        return constants.NETWORK_DIR

    def build_network(self,
                      matrix: pd.DataFrame,
                      max_rounds: Optional[int] = None,
                      feature_range: Optional[Tuple[int, int]] = None,
                      engine_options: Optional[Dict[str, Any]] = None) -> List[Edge]:
        """
        Build the directed predictive network.

        Args:
            matrix: Samples x features, at least two uniquely named columns.
            max_rounds: iRF rounds per feature (defaults to network.iterations).
            feature_range: 1-based inclusive (first, last) columns to use as
                response. Defaults to network.first/last, or all columns.
            engine_options: Extra forest options for every iRF run.

        Returns:
            Edges ordered by response index, then predictor column order.

        Raises:
            InvalidInputError: Malformed matrix, non-positive round bound or bad mtry.
            InvalidRangeError: ``feature_range`` outside [1, n] or first > last.
            FeatureTaskError: A feature failed while ``on_error`` is 'abort'.
        """
        self._validate_matrix(matrix)
        first, last = self._resolve_range(feature_range, matrix.shape[1])
        max_rounds = check_max_rounds(self.iterations if max_rounds is None else max_rounds)
        mtry = MtryPolicy.from_value(self.mtry)
        indices = list(range(first, last + 1))

        self.failed_features = []
        self.logger.info(
            f"Running iRF-LOOP on features {first}..{last} of {matrix.shape[1]} "
            f"({matrix.shape[0]} samples, {max_rounds} iteration(s), n_jobs={self.n_jobs})"
        )

        start_time = time.time()
        tasks = (
            delayed(_run_feature)(self.reweighter, matrix, g,
                                  self._run_kwargs(g, max_rounds, mtry, engine_options), self.on_error)
            for g in indices
        )
        try:
            with Parallel(n_jobs=self.n_jobs, backend=self.backend, return_as="generator") as parallel:
                outcomes = list(tqdm(parallel(tasks), total=len(indices), desc="iRF-LOOP", unit="feature",
                                     disable=not self.show_progress))
        except FeatureTaskError as exc:
            self.logger.error(str(exc))
            raise

        edges: List[Edge] = []
        for g, feature_edges, error in sorted(outcomes, key=lambda o: o[0]):
            if feature_edges is None:
                name = matrix.columns[g - 1]
                self.logger.warning(f"Skipping feature #{g} ('{name}'): {error}")
                self.failed_features.append({'index': g, 'name': str(name), 'error': error})
                continue
            edges.extend(feature_edges)

        self.features_processed = len(indices) - len(self.failed_features)
        self.logger.info(
            f"iRF-LOOP finished in {time.time() - start_time:.2f}s: {len(edges)} edges from "
            f"{self.features_processed} feature(s), {len(self.failed_features)} skipped"
        )
        return edges

    @handle_engine_errors("Network construction")
    def execute(self, matrix: pd.DataFrame) -> pd.DataFrame:
        """
        Build the network from configuration and persist the edge list and summary.

        Returns:
            Edge list DataFrame (featX, featY, imp, R2).
        """
        edges = self.build_network(matrix)
        edge_df = edges_to_frame(edges)

        csv_copy = self.config.get('outputs', {}).get('save_csv_copy', False)
        edge_path = save_dataframe(edge_df, self.output_dir / constants.EDGE_LIST_FILENAME,
                                   csv_copy=csv_copy, index=False)

        summary = {
            'n_samples': int(matrix.shape[0]),
            'n_features': int(matrix.shape[1]),
            'features_processed': self.features_processed,
            'failed_features': self.failed_features,
            'n_edges': len(edge_df),
            'iterations': self.iterations,
            'use_pvalues': self.use_pvalues,
            'classification': self.classification,
        }
        save_json(summary, self.output_dir / constants.NETWORK_SUMMARY_FILENAME)

        self.logger.info(f"Edge list saved to {edge_path}")
        return edge_df

    def _run_kwargs(self, g: int, max_rounds: int, mtry: MtryPolicy,
                    engine_options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        options = dict(engine_options or {})
        # Per-feature seed keeps results independent of worker scheduling.
        if self.seed is not None and 'random_state' not in options:
            options['random_state'] = int(self.seed) + g
        return {
            'max_rounds': max_rounds,
            'mtry': mtry,
            'classification': self.classification,
            'use_pvalues': self.use_pvalues,
            'engine_options': options or None,
        }

    def _resolve_range(self, feature_range: Optional[Tuple[int, int]], n_features: int) -> Tuple[int, int]:
        if feature_range is None:
            if self.first is None and self.last is None:
                return 1, n_features
            feature_range = (
                1 if self.first is None else self.first,
                n_features if self.last is None else self.last,
            )

        first, last = feature_range
        if first < 1 or last > n_features or first > last:
            raise InvalidRangeError(
                f"Feature range [{first}, {last}] must satisfy 1 <= first <= last <= {n_features}."
            )
        return int(first), int(last)

    @staticmethod
    def _validate_matrix(matrix: pd.DataFrame) -> None:
        if not isinstance(matrix, pd.DataFrame):
            raise InvalidInputError(f"Feature matrix must be a pandas DataFrame, got {type(matrix).__name__}.")
        if matrix.shape[1] < 2:
            raise InvalidInputError(f"Feature matrix needs at least 2 columns, got {matrix.shape[1]}.")
        if matrix.columns.duplicated().any():
            dupes = matrix.columns[matrix.columns.duplicated()].unique().tolist()
            raise InvalidInputError(f"Feature names must be unique; duplicated: {dupes}")
        if not all(pd.api.types.is_numeric_dtype(dtype) for dtype in matrix.dtypes):
            raise InvalidInputError("Feature matrix must be numeric.")
