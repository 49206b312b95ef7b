"""
Forest Engine Module
====================

Responsibility:
- Defines the Random Forest Engine contract consumed by the iRF core
  (``train`` and ``importance_pvalues``).
- Carries per-round fit results (``ForestResult``).
- Provides a scikit-learn backed forest that honours split-selection weights.
"""

from .forest_engine import ForestEngine, ForestResult, TrainingSettings
from .weighted_forest import WeightedForestEngine

__all__ = ['ForestEngine', 'ForestResult', 'TrainingSettings', 'WeightedForestEngine']
