import abc
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class TrainingSettings:
    """Everything needed to refit an equivalent forest (used for permutation p-values)."""
    weights: np.ndarray
    mtry: int
    classification: bool = False
    importance_mode: str = "impurity_corrected"
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ForestResult:
    """
    Outcome of one forest training.

    Attributes:
        importances: Per-predictor importance, indexed by predictor name.
        fit_quality: OOB R^2 (regression) or OOB accuracy (classification).
        prediction_error: OOB MSE (regression) or misclassification rate.
        oob_predictions: One OOB prediction per sample, NaN if never out of bag.
        confusion: Confusion table (classification only).
        mtry: Split candidates per node used for this fit.
        round_index: 1-based iRF round that produced this result (0 if standalone).
        settings: Training settings, kept so the fit can be reproduced.
    """
    importances: pd.Series
    fit_quality: float
    prediction_error: float
    oob_predictions: np.ndarray
    confusion: Optional[pd.DataFrame] = None
    mtry: int = 0
    round_index: int = 0
    settings: Optional[TrainingSettings] = None

    @property
    def n_active(self) -> int:
        """Number of predictors with importance > 0."""
        return int((self.importances > 0).sum())

    def with_importances(self, importances, round_index: int) -> "ForestResult":
        """Return a copy whose importances are replaced (e.g. by next-round weights)."""
        series = pd.Series(np.asarray(importances, dtype=float), index=self.importances.index)
        return dataclasses.replace(self, importances=series, round_index=round_index)


class ForestEngine(abc.ABC):
    """
    Abstract Random Forest Engine.

    Implementations train a forest whose split-candidate selection is biased by
    a per-predictor weight vector and report importances plus OOB fit statistics.
    """

    @abc.abstractmethod
    def train(self,
              predictors: pd.DataFrame,
              response,
              weights,
              mtry: int,
              classification: bool = False,
              importance_mode: str = "impurity_corrected",
              options: Optional[Dict[str, Any]] = None) -> ForestResult:
        """
        Train one weighted forest.

        Args:
            predictors: Predictor matrix (samples x predictors).
            response: Response vector aligned with ``predictors`` rows.
            weights: Non-negative split-selection weights, one per predictor.
            mtry: Number of candidate predictors per split.
            classification: Grow classification trees instead of regression trees.
            importance_mode: How raw importances are computed.
            options: Engine specific options (tree count, seed, ...).
        """
        raise NotImplementedError("Subclasses must implement train.")

    @abc.abstractmethod
    def importance_pvalues(self,
                           result: ForestResult,
                           predictors: pd.DataFrame,
                           response,
                           num_permutations: int = 500) -> pd.DataFrame:
        """
        Permutation p-values for a trained forest's importances.

        Returns:
            DataFrame indexed by predictor with columns ``importance`` and ``pvalue``.
        """
        raise NotImplementedError("Subclasses must implement importance_pvalues.")
