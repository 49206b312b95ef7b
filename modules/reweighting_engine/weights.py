"""Turning one round's raw importances into the next round's weight vector."""

import numpy as np
from statsmodels.stats.multitest import multipletests

from utils import constants
from utils.exceptions import DegenerateWeightsError


def normalize_importances(raw) -> np.ndarray:
    """
    Scale raw importances by the sum of their absolute values, then zero the negatives.

    The result lies in [0, 1] and sums to 1 only when nothing was clamped.
    """
    raw = np.asarray(raw, dtype=float)
    total = np.abs(raw).sum()
    if total == 0:
        raise DegenerateWeightsError("All importances are zero; weights are undefined")
    return np.clip(raw / total, 0.0, None)


def cull_by_pvalues(importance, pvalues, fdr_threshold: float = constants.DEFAULT_FDR_THRESHOLD) -> np.ndarray:
    """
    Zero predictors whose Benjamini-Hochberg q-value exceeds ``fdr_threshold``
    (negative importances are zeroed first) and renormalize the survivors to sum to 1.
    """
    importance = np.clip(np.asarray(importance, dtype=float), 0.0, None)
    _, qvalues, _, _ = multipletests(np.asarray(pvalues, dtype=float), method='fdr_bh')

    importance[qvalues > fdr_threshold] = 0.0
    total = importance.sum()
    if total == 0:
        raise DegenerateWeightsError(
            f"No predictor survived FDR culling (q <= {fdr_threshold}) with positive importance"
        )
    return importance / total
