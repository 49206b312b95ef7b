import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

import numpy as np
import pandas as pd

from modules.forest_engine import ForestEngine, ForestResult
from modules.reweighting_engine.mtry_policy import MtryPolicy
from modules.reweighting_engine.stopping_criteria import StoppingRule
from modules.reweighting_engine.weights import cull_by_pvalues, normalize_importances
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.exceptions import DegenerateWeightsError, EngineFailureError, InvalidInputError


def check_max_rounds(max_rounds) -> int:
    """Raise InvalidInputError unless ``max_rounds`` is a positive integer."""
    if isinstance(max_rounds, bool) or not isinstance(max_rounds, (int, np.integer)) or max_rounds < 1:
        raise InvalidInputError(f"max_rounds must be a positive integer, got {max_rounds!r}.")
    return int(max_rounds)


@dataclass
class RunHistory:
    """Forest results of one iRF run, one per completed round (index 0 = round 1)."""
    results: List[ForestResult] = field(default_factory=list)
    stop_reason: str = ""

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, index: int) -> ForestResult:
        return self.results[index]

    def __iter__(self) -> Iterator[ForestResult]:
        return iter(self.results)

    def append(self, result: ForestResult) -> None:
        self.results.append(result)

    @property
    def fit_qualities(self) -> List[float]:
        return [r.fit_quality for r in self.results]

    def best(self) -> ForestResult:
        """Round with the highest fit quality; the earliest wins ties, NaN never wins."""
        if not self.results:
            raise InvalidInputError("Run history is empty")
        qualities = np.asarray(self.fit_qualities, dtype=float)
        if np.isnan(qualities).all():
            return self.results[0]
        return self.results[int(np.nanargmax(qualities))]


class ReweightingEngine:
    """
    Iterative Random Forest (iRF).

    Each round trains a forest whose split selection is biased by the current
    weight vector, then turns the forest's importances into the next weight
    vector. Predictors whose weight drops to zero are never offered again, so
    the model sharpens onto a shrinking set of informative predictors.

    Logic per round:
    1. Resolve mtry against the predictors that still carry weight.
    2. Train the forest with the current weights.
    3. Derive next weights: |importance|-normalized (negatives zeroed), or
       permutation p-values + FDR culling when ``use_pvalues`` is set.
    4. Record the round with its importances replaced by the new weights.
    5. Stop once active predictors fall below max(1% of predictors, 10).
    """

    def __init__(self, forest_engine: ForestEngine, config: Optional[dict] = None,
                 logger: Optional[logging.Logger] = None):
        self.forest_engine = forest_engine
        self.config = config or {}
        self.logger = logger or logging.getLogger(__name__)

        net_cfg = self.config.get('network', {})
        self.num_permutations = net_cfg.get('num_permutations', constants.DEFAULT_NUM_PERMUTATIONS)
        self.fdr_threshold = net_cfg.get('fdr_threshold', constants.DEFAULT_FDR_THRESHOLD)
        self.verbose = net_cfg.get('verbose', False)
        self.importance_mode = self.config.get('forest', {}).get('importance', constants.DEFAULT_IMPORTANCE_MODE)

    def run(self,
            predictors: pd.DataFrame,
            response,
            max_rounds: int = constants.DEFAULT_IRF_ITERATIONS,
            mtry: Union[None, float, MtryPolicy] = None,
            classification: bool = False,
            use_pvalues: bool = False,
            engine_options: Optional[Dict[str, Any]] = None,
            save_all: bool = True) -> Union[RunHistory, ForestResult]:
        """
        Run iRF on one (predictors, response) pair.

        Args:
            predictors: Predictor matrix, one named column per predictor.
            response: Response aligned with ``predictors`` rows.
            max_rounds: Upper bound on rounds.
            mtry: None (sqrt of active), a proportion in (0, 1], or an absolute count.
            classification: Use classification forests.
            use_pvalues: Cull predictors by FDR-corrected permutation p-values (slow).
            engine_options: Passed through to the forest engine.
            save_all: Return the full ``RunHistory`` instead of the best round.

        Returns:
            RunHistory if ``save_all`` else the ForestResult with the best fit.
        """
        predictors = predictors if isinstance(predictors, pd.DataFrame) else pd.DataFrame(predictors)
        self._validate_inputs(predictors, response, max_rounds)
        policy = MtryPolicy.from_value(mtry)

        n_predictors = predictors.shape[1]
        weights = np.full(n_predictors, 1.0 / n_predictors)
        stopping = StoppingRule(n_predictors)
        history = RunHistory()

        for round_index in range(1, max_rounds + 1):
            m = policy.resolve(weights)
            result = self._train_round(predictors, response, weights, m, classification, engine_options)

            try:
                weights = self._next_weights(result, predictors, response, use_pvalues)
            except DegenerateWeightsError as exc:
                if not history:
                    raise
                self.logger.warning(f"iRF round {round_index} discarded: {exc}")
                history.stop_reason = f"Degenerate weights at round {round_index}"
                break

            recorded = result.with_importances(weights, round_index)
            history.append(recorded)
            self._log_round(recorded, response, classification)

            stop, reason = stopping.should_stop(weights)
            if stop:
                history.stop_reason = reason
                break
        else:
            history.stop_reason = f"Maximum rounds reached ({max_rounds})"

        self.logger.debug(f"iRF finished after {len(history)} round(s): {history.stop_reason}")

        if save_all:
            return history
        return history.best()

    def _validate_inputs(self, predictors: pd.DataFrame, response, max_rounds: int) -> None:
        if predictors.shape[1] == 0:
            raise InvalidInputError("At least one predictor column is required.")
        if len(response) != len(predictors):
            raise InvalidInputError(
                f"Response length ({len(response)}) does not match predictor rows ({len(predictors)})."
            )
        check_max_rounds(max_rounds)

    @handle_engine_errors("Random forest training", wrap_as=EngineFailureError)
    def _train_round(self, predictors, response, weights, mtry, classification, engine_options) -> ForestResult:
        return self.forest_engine.train(
            predictors, response, weights, mtry,
            classification=classification,
            importance_mode=self.importance_mode,
            options=engine_options,
        )

    def _next_weights(self, result: ForestResult, predictors, response, use_pvalues: bool) -> np.ndarray:
        if not use_pvalues:
            return normalize_importances(result.importances.to_numpy())

        pvals = self._importance_pvalues(result, predictors, response)
        pvals = pvals.reindex(result.importances.index)
        return cull_by_pvalues(pvals['importance'].to_numpy(), pvals['pvalue'].to_numpy(), self.fdr_threshold)

    @handle_engine_errors("Importance p-values", wrap_as=EngineFailureError)
    def _importance_pvalues(self, result, predictors, response) -> pd.DataFrame:
        return self.forest_engine.importance_pvalues(result, predictors, response, self.num_permutations)

    def _log_round(self, result: ForestResult, response, classification: bool) -> None:
        level = logging.INFO if self.verbose else logging.DEBUG
        if not self.logger.isEnabledFor(level):
            return

        self.logger.log(level, f"iRF iteration {result.round_index}")
        self.logger.log(level, f"  mtry: {result.mtry}")
        self.logger.log(level, f"  prediction error: {result.prediction_error:.6g}")
        if classification:
            if result.confusion is not None:
                self.logger.log(level, f"  confusion matrix:\n{result.confusion.to_string()}")
        else:
            self.logger.log(level, f"  R^2: {result.fit_quality:.6g}")
            y = np.asarray(response, dtype=float)
            yhat = np.asarray(result.oob_predictions, dtype=float)
            seen = ~np.isnan(yhat)
            if seen.sum() > 1 and np.std(y[seen]) > 0 and np.std(yhat[seen]) > 0:
                self.logger.log(level, f"  OOB cor(y, yhat): {np.corrcoef(y[seen], yhat[seen])[0, 1]:.6g}")
        self.logger.log(level, f"  Features with importance > 0: {result.n_active}")
