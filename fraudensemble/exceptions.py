"""
Error types raised by fraudensemble.

Only conditions the caller must act on are exceptions. Insufficient
reference data, degenerate splits and features missing at prediction time
are recovered inside the detectors and never surface here.
"""


class FraudEnsembleError(Exception):
    """Base class for all library errors."""


class InvalidInput(FraudEnsembleError, ValueError):
    """Empty dataset, missing required columns or malformed numeric fields."""


class ModelNotTrained(FraudEnsembleError, RuntimeError):
    """Prediction or evaluation requested before any training completed."""


class ModelNotFound(FraudEnsembleError, KeyError):
    """No stored model with the requested id."""


class TrainingCancelled(FraudEnsembleError):
    """Raised from a progress callback to abort a training run between trees."""


class DatasetNotFound(FraudEnsembleError, KeyError):
    """No stored dataset with the requested id."""
