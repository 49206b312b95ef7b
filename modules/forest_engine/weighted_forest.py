import logging
import time
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.metrics import confusion_matrix
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

from modules.forest_engine.forest_engine import ForestEngine, ForestResult, TrainingSettings
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.exceptions import EngineFailureError, InvalidInputError

_MAX_SEED = 2**31 - 1


def _grow_tree(X: np.ndarray,
               y: np.ndarray,
               n_real: int,
               active: np.ndarray,
               probs: np.ndarray,
               mtry: int,
               classification: bool,
               corrected: bool,
               tree_params: Dict[str, Any],
               seed: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Fit a single tree on a bootstrap sample.

    The candidate pool is drawn from the active predictors with probability
    proportional to their weight; only pooled columns are visible to the tree.

    Returns:
        (unnormalized impurity decrease per column of X, OOB row indices, OOB predictions)
    """
    rng = np.random.default_rng(seed)
    n_samples = X.shape[0]

    # Weighted candidate pool: |active| draws with replacement, topped up to mtry.
    pool = np.unique(rng.choice(active, size=len(active), replace=True, p=probs))
    if len(pool) < mtry:
        remaining = np.setdiff1d(active, pool)
        rem_p = probs[np.isin(active, remaining)]
        extra = rng.choice(remaining, size=mtry - len(pool), replace=False, p=rem_p / rem_p.sum())
        pool = np.sort(np.concatenate([pool, extra]))

    cols = np.concatenate([pool, pool + n_real]) if corrected else pool

    boot = rng.integers(0, n_samples, size=n_samples)
    oob_mask = np.ones(n_samples, dtype=bool)
    oob_mask[boot] = False
    oob_rows = np.flatnonzero(oob_mask)

    tree_cls = DecisionTreeClassifier if classification else DecisionTreeRegressor
    tree = tree_cls(max_features=min(mtry, len(cols)),
                    random_state=int(rng.integers(0, _MAX_SEED)),
                    **tree_params)
    tree.fit(X[np.ix_(boot, cols)], y[boot])

    importance = np.zeros(X.shape[1])
    importance[cols] = tree.tree_.compute_feature_importances(normalize=False)

    if len(oob_rows):
        oob_pred = tree.predict(X[np.ix_(oob_rows, cols)])
    else:
        oob_pred = np.empty(0)
    return importance, oob_rows, oob_pred


class WeightedForestEngine(ForestEngine):
    """
    Random forest built from scikit-learn decision trees with weighted
    split-candidate selection.

    Each tree sees a candidate pool sampled from predictors with weight > 0
    (probability proportional to weight) and considers ``mtry`` of them per split.
    Predictors with weight 0 are never offered, so a culled predictor keeps an
    importance of exactly 0.

    Importance modes:
    - ``impurity``: mean decrease in impurity across trees.
    - ``impurity_corrected``: impurity importance of each predictor minus that of
      a row-permuted shadow copy; may be negative for uninformative predictors.
    """

    DEFAULT_OPTIONS = {
        'num_trees': constants.DEFAULT_NUM_TREES,
        'min_samples_leaf': 5,
        'max_depth': None,
        'random_state': None,
        'n_jobs': 1,
    }

    def __init__(self, logger: Optional[logging.Logger] = None, **options):
        self.logger = logger or logging.getLogger(__name__)
        self.options = self._merge_options(options)

    def _merge_options(self, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = dict(getattr(self, 'options', self.DEFAULT_OPTIONS))
        for key, value in (options or {}).items():
            if key not in self.DEFAULT_OPTIONS:
                raise InvalidInputError(
                    f"Unknown forest option '{key}'. Available: {sorted(self.DEFAULT_OPTIONS)}"
                )
            merged[key] = value
        if merged['num_trees'] < 1:
            raise InvalidInputError(f"num_trees must be >= 1, got {merged['num_trees']}")
        return merged

    @handle_engine_errors("Forest training", wrap_as=EngineFailureError)
    def train(self,
              predictors: pd.DataFrame,
              response,
              weights,
              mtry: int,
              classification: bool = False,
              importance_mode: str = constants.DEFAULT_IMPORTANCE_MODE,
              options: Optional[Dict[str, Any]] = None) -> ForestResult:
        opts = self._merge_options(options)
        if importance_mode not in constants.IMPORTANCE_MODES:
            raise InvalidInputError(
                f"Unknown importance mode '{importance_mode}'. Available: {list(constants.IMPORTANCE_MODES)}"
            )

        X = predictors.to_numpy(dtype=float)
        n_samples, n_real = X.shape
        weights = np.asarray(weights, dtype=float)
        if len(weights) != n_real:
            raise InvalidInputError(f"Expected {n_real} weights, got {len(weights)}")

        active = np.flatnonzero(weights > 0)
        if n_samples < 2:
            raise EngineFailureError(f"At least 2 samples are required, got {n_samples}")
        if mtry < 1 or mtry > len(active):
            raise EngineFailureError(
                f"mtry ({mtry}) must be between 1 and the number of weighted predictors ({len(active)})"
            )

        if classification:
            classes, y = np.unique(np.asarray(response), return_inverse=True)
        else:
            classes, y = None, np.asarray(response, dtype=float)

        rng = np.random.default_rng(opts['random_state'])
        corrected = importance_mode == "impurity_corrected"
        if corrected:
            # Shadow block: same predictors, rows shuffled to break any link to y.
            X = np.hstack([X, X[rng.permutation(n_samples)]])

        probs = weights[active] / weights[active].sum()
        tree_params = {'min_samples_leaf': opts['min_samples_leaf'], 'max_depth': opts['max_depth']}
        seeds = rng.integers(0, _MAX_SEED, size=opts['num_trees'])

        start_time = time.time()
        trees = Parallel(n_jobs=opts['n_jobs'], backend="threading")(
            delayed(_grow_tree)(X, y, n_real, active, probs, mtry,
                                classification, corrected, tree_params, int(seed))
            for seed in seeds
        )
        self.logger.debug(
            f"Grew {len(trees)} trees (mtry={mtry}, active={len(active)}) in {time.time() - start_time:.2f}s"
        )

        importance = np.mean([t[0] for t in trees], axis=0)
        if corrected:
            importance = importance[:n_real] - importance[n_real:]

        settings = TrainingSettings(weights=weights, mtry=int(mtry), classification=classification,
                                    importance_mode=importance_mode, options=opts)
        importances = pd.Series(importance, index=predictors.columns, dtype=float)

        if classification:
            return self._classification_result(trees, y, classes, importances, settings)
        return self._regression_result(trees, y, importances, settings)

    def _regression_result(self, trees, y, importances, settings) -> ForestResult:
        sums = np.zeros(len(y))
        counts = np.zeros(len(y))
        for _, rows, preds in trees:
            sums[rows] += preds
            counts[rows] += 1

        seen = counts > 0
        if not seen.any():
            raise EngineFailureError("No out-of-bag samples available; increase num_trees")

        oob = np.full(len(y), np.nan)
        oob[seen] = sums[seen] / counts[seen]

        mse = float(np.mean((y[seen] - oob[seen]) ** 2))
        var_y = float(np.var(y, ddof=1))
        r_squared = 1.0 - mse / var_y if var_y > 0 else float('nan')

        return ForestResult(importances=importances, fit_quality=r_squared, prediction_error=mse,
                            oob_predictions=oob, mtry=settings.mtry, settings=settings)

    def _classification_result(self, trees, y, classes, importances, settings) -> ForestResult:
        votes = np.zeros((len(y), len(classes)))
        for _, rows, preds in trees:
            votes[rows, preds.astype(int)] += 1

        seen = votes.sum(axis=1) > 0
        if not seen.any():
            raise EngineFailureError("No out-of-bag samples available; increase num_trees")

        predicted = votes.argmax(axis=1)
        error = float(np.mean(predicted[seen] != y[seen]))

        oob = np.full(len(y), np.nan, dtype=object)
        oob[seen] = classes[predicted[seen]]

        labels = np.arange(len(classes))
        confusion = pd.DataFrame(confusion_matrix(y[seen], predicted[seen], labels=labels),
                                 index=pd.Index(classes, name='true'),
                                 columns=pd.Index(classes, name='predicted'))

        return ForestResult(importances=importances, fit_quality=1.0 - error, prediction_error=error,
                            oob_predictions=oob, confusion=confusion, mtry=settings.mtry,
                            settings=settings)

    @handle_engine_errors("Importance p-values", wrap_as=EngineFailureError)
    def importance_pvalues(self,
                           result: ForestResult,
                           predictors: pd.DataFrame,
                           response,
                           num_permutations: int = constants.DEFAULT_NUM_PERMUTATIONS) -> pd.DataFrame:
        """
        Altmann permutation p-values.

        The response is permuted ``num_permutations`` times and a forest with the
        same settings is refit each time; the p-value of a predictor is the share
        of null importances at least as large as the observed one, with +1
        smoothing in numerator and denominator.
        """
        if result.settings is None:
            raise InvalidInputError("ForestResult carries no training settings; cannot refit for p-values")
        if num_permutations < 1:
            raise InvalidInputError(f"num_permutations must be >= 1, got {num_permutations}")

        s = result.settings
        response = np.asarray(response)
        rng = np.random.default_rng(s.options.get('random_state'))
        perm_seeds = rng.integers(0, _MAX_SEED, size=num_permutations)

        self.logger.info(f"Computing Altmann p-values with {num_permutations} permutations...")

        def _null_importance(seed):
            perm_rng = np.random.default_rng(seed)
            opts = dict(s.options, random_state=int(seed), n_jobs=1)
            null_fit = self.train(predictors, response[perm_rng.permutation(len(response))],
                                  s.weights, s.mtry, s.classification, s.importance_mode, opts)
            return null_fit.importances.to_numpy()

        null = np.vstack(Parallel(n_jobs=s.options.get('n_jobs', 1), backend="threading")(
            delayed(_null_importance)(int(seed)) for seed in perm_seeds
        ))

        observed = result.importances.to_numpy()
        pvalues = ((null >= observed).sum(axis=0) + 1) / (num_permutations + 1)

        return pd.DataFrame({'importance': observed, 'pvalue': pvalues}, index=result.importances.index)
