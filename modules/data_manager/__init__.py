"""
Data Manager Module
===================

Responsibility:
- Loads the samples x features matrix (CSV/TSV/Parquet/Excel).
- Rejects matrices iRF-LOOP cannot use: non-numeric, missing or infinite
  values, duplicate feature names, fewer than two features.
- Writes a short validation summary next to the run's outputs.
"""

from .data_manager import DataManager

__all__ = ['DataManager']
