"""
Network Engine Module (iRF-LOOP)
================================

Responsibility:
- Treats every feature of the matrix in turn as the response and runs iRF with
  all remaining features as predictors.
- Merges every positive importance into a directed, weighted edge list
  (predictor -> response) in canonical order.
- Fans the per-feature runs out over a joblib worker pool.
- Persists the edge list and a run summary.
"""

from .edges import Edge, edges_to_frame
from .network_engine import NetworkEngine

__all__ = ['Edge', 'edges_to_frame', 'NetworkEngine']
