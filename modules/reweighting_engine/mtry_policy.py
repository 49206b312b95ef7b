import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from utils.exceptions import InvalidInputError

# Guards floor() against values like 0.29 * 100 == 28.999999999999996
_FLOOR_EPS = 1e-9


@dataclass(frozen=True)
class MtryPolicy:
    """
    How many split candidates to offer per node, evaluated against the number
    of predictors whose current weight is > 0.

    - ``None``: floor(sqrt(active))
    - ``0 < value <= 1``: proportion, floor(value * active). ``1`` means all active.
    - ``value > 1``: absolute count.

    The resolved value is clamped to [1, active].
    """
    value: Optional[float] = None

    @classmethod
    def from_value(cls, value: Union[None, float, "MtryPolicy"]) -> "MtryPolicy":
        if isinstance(value, MtryPolicy):
            return value
        if value is not None:
            if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
                raise InvalidInputError(f"mtry must be a number or None, got {value!r}")
            if not value > 0:
                raise InvalidInputError(f"mtry must be > 0, got {value}")
        return cls(value)

    @property
    def kind(self) -> str:
        if self.value is None:
            return "default"
        if self.value <= 1:
            return "proportion"
        return "absolute"

    def resolve(self, weights) -> int:
        active = int(np.count_nonzero(np.asarray(weights, dtype=float) > 0))
        if active == 0:
            return 0

        if self.kind == "default":
            m = math.floor(math.sqrt(active) + _FLOOR_EPS)
        elif self.kind == "proportion":
            m = math.floor(self.value * active + _FLOOR_EPS)
        else:
            m = int(self.value)

        return max(1, min(m, active))
