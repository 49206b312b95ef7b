import numpy as np
from typing import Tuple

from utils import constants


class StoppingRule:
    """
    Halts the iRF loop once too few predictors keep a positive weight.

    The floor is max(1% of the predictor count, 10) and is not configurable.
    With fewer than 10 predictors every run therefore stops after its first round.
    """

    def __init__(self, n_predictors: int):
        self.n_predictors = n_predictors
        self.floor = max(constants.STOP_FRACTION * n_predictors, constants.STOP_MIN_FEATURES)

    def should_stop(self, weights) -> Tuple[bool, str]:
        """
        Returns:
            (bool, reason_string)
        """
        active = int(np.count_nonzero(np.asarray(weights, dtype=float) > 0))
        if active < self.floor:
            return True, f"Active predictors ({active}) below floor ({self.floor:g})"
        return False, ""
