"""
Reweighting Engine Module (iterative Random Forest)
===================================================

Responsibility:
- Runs a bounded sequence of weighted forest fits for one (predictors, response) pair.
- Feeds each round's normalized importances back as the next round's
  split-selection weights, culling uninformative predictors to zero.
- Stops once too few predictors keep a positive weight.
- Returns the full round history or the best-fitting round.
"""

from .mtry_policy import MtryPolicy
from .weights import normalize_importances, cull_by_pvalues
from .stopping_criteria import StoppingRule
from .reweighting_engine import ReweightingEngine, RunHistory, check_max_rounds

__all__ = [
    'MtryPolicy',
    'normalize_importances',
    'cull_by_pvalues',
    'StoppingRule',
    'ReweightingEngine',
    'RunHistory',
    'check_max_rounds'
]
