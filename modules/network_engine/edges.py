from typing import Any, Iterable, List, NamedTuple

import pandas as pd

from modules.forest_engine import ForestResult
from utils import constants


class Edge(NamedTuple):
    """Directed edge: ``source`` helps predict ``target``."""
    source: Any
    target: Any
    importance: float
    fit_quality: float


def edges_from_result(result: ForestResult, target) -> List[Edge]:
    """One edge per predictor with importance strictly greater than zero, in predictor order."""
    fit = float(result.fit_quality)
    return [
        Edge(source, target, float(weight), fit)
        for source, weight in result.importances.items()
        if weight > 0
    ]


def edges_to_frame(edges: Iterable[Edge]) -> pd.DataFrame:
    """Tabular edge list with columns featX, featY, imp, R2."""
    return pd.DataFrame([tuple(e) for e in edges], columns=constants.EDGE_COLUMNS)
