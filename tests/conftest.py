import logging
from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest

from modules.forest_engine import ForestEngine, ForestResult, TrainingSettings


class ScriptedForestEngine(ForestEngine):
    """
    Deterministic stand-in for the random forest engine.

    Raw importances come from ``importance_fn(predictors, response, weights, call_index)``
    (default: |Pearson correlation| with the response, masked by weight > 0);
    fit qualities are read from ``fits`` by call index (last value repeats).
    """

    def __init__(self, importance_fn=None, fits=None, pvalues=None, fail_for=None):
        self.importance_fn = importance_fn or self._correlation_importance
        self.fits = list(fits) if fits else [0.5]
        self.pvalues = pvalues
        self.fail_for = set(fail_for or [])
        self.calls = []
        self.pvalue_calls = []

    @staticmethod
    def _correlation_importance(predictors, response, weights, call_index):
        y = np.asarray(response, dtype=float)
        imp = []
        for col in predictors.columns:
            x = predictors[col].to_numpy(dtype=float)
            if np.std(x) == 0 or np.std(y) == 0:
                imp.append(0.0)
            else:
                imp.append(abs(np.corrcoef(x, y)[0, 1]))
        return np.asarray(imp) * (np.asarray(weights) > 0)

    def train(self, predictors, response, weights, mtry, classification=False,
              importance_mode="impurity_corrected", options=None):
        name = getattr(response, 'name', None)
        if name in self.fail_for:
            raise RuntimeError(f"engine exploded on {name}")

        call_index = len(self.calls)
        self.calls.append({
            'weights': np.array(weights, dtype=float),
            'mtry': mtry,
            'columns': list(predictors.columns),
            'response': name,
            'options': options,
            'classification': classification,
            'importance_mode': importance_mode,
        })
        raw = np.asarray(self.importance_fn(predictors, response, weights, call_index), dtype=float)
        fit = self.fits[min(call_index, len(self.fits) - 1)]
        return ForestResult(
            importances=pd.Series(raw, index=predictors.columns),
            fit_quality=fit,
            prediction_error=1.0 - fit,
            oob_predictions=np.asarray(response, dtype=float),
            mtry=mtry,
            settings=TrainingSettings(weights=np.array(weights, dtype=float), mtry=mtry),
        )

    def importance_pvalues(self, result, predictors, response, num_permutations=500):
        self.pvalue_calls.append(num_permutations)
        pvals = self.pvalues if self.pvalues is not None else np.full(len(result.importances), 0.01)
        return pd.DataFrame({'importance': result.importances.to_numpy(), 'pvalue': pvals},
                            index=result.importances.index)


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def scripted_engine():
    return ScriptedForestEngine


@pytest.fixture
def linear_matrix():
    """5 features x 40 samples: f1 ~ f2, f3 ~ f4, f5 noise."""
    rng = np.random.default_rng(0)
    f2 = rng.normal(size=40)
    f4 = rng.normal(size=40)
    return pd.DataFrame({
        'f1': 2 * f2 + rng.normal(scale=0.1, size=40),
        'f2': f2,
        'f3': -f4 + rng.normal(scale=0.1, size=40),
        'f4': f4,
        'f5': rng.normal(size=40),
    })
