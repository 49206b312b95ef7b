"""
Utility package setup.

Enables pandas Copy-on-Write globally so predictor views sliced out of the
shared feature matrix never trigger defensive copies.
"""

import pandas as pd

# Reduce implicit copies across the pipeline.
pd.options.mode.copy_on_write = True
