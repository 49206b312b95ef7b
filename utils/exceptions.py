"""
Custom exception hierarchy for the iRF-LOOP Predictive Network Builder.
"""

class IRFLoopException(Exception):
    """Base exception for all system errors."""
    pass

class ConfigurationError(IRFLoopException):
    """Configuration validation failed."""
    pass

class DataValidationError(IRFLoopException):
    """Feature matrix loading or validation failed."""
    pass

class InvalidInputError(IRFLoopException):
    """Malformed predictors/response, or a non-positive iteration bound."""
    pass

class InvalidRangeError(IRFLoopException):
    """Feature range selection is outside the matrix columns."""
    pass

class EngineFailureError(IRFLoopException):
    """The random forest engine raised an error while training."""
    pass

class DegenerateWeightsError(IRFLoopException):
    """Importances summed to exactly zero, so no weight vector can be derived."""
    pass

class FeatureTaskError(IRFLoopException):
    """A single leave-one-out feature task failed."""

    def __init__(self, feature_index: int, feature_name: str, cause: Exception):
        self.feature_index = feature_index
        self.feature_name = feature_name
        self.cause = cause
        super().__init__(
            f"iRF failed for feature #{feature_index} ('{feature_name}'): "
            f"{type(cause).__name__}: {cause}"
        )

    def __reduce__(self):
        # Survives the trip back from a worker process.
        return (self.__class__, (self.feature_index, self.feature_name, self.cause))
