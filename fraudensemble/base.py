"""
Common interface of the scoring models.

Every detector maps a feature matrix to scores in [0, 1] where higher means
more likely fraudulent, and flags rows whose score exceeds its threshold.
NaN entries mark features unknown for that row.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

import numpy as np
from sklearn.preprocessing import StandardScaler

from .exceptions import InvalidInput

NEUTRAL_SCORE = 0.5


def restore_scaler(mean: Sequence[float], scale: Sequence[float]) -> StandardScaler:
    """Rebuild a fitted StandardScaler from its stored statistics."""
    scaler = StandardScaler()
    scaler.mean_ = np.asarray(mean, dtype=np.float64)
    scaler.scale_ = np.asarray(scale, dtype=np.float64)
    scaler.var_ = scaler.scale_ ** 2
    scaler.n_features_in_ = len(scaler.mean_)
    scaler.n_samples_seen_ = 0
    return scaler


def prepare_features(X: np.ndarray, scaler: StandardScaler) -> np.ndarray:
    """Standardise, then replace unknown features with the training mean (0)."""
    X = scaler.transform(X)
    return np.nan_to_num(X, nan=0.0, posinf=0.0, neginf=0.0)


class BaseDetector(ABC):
    """Base class for detectors."""

    kind: str = ''

    def __init__(self, threshold: float = 0.5):
        self.threshold = threshold
        self.n_features_: int = 0

    @abstractmethod
    def fit(self, X: np.ndarray, y: Optional[np.ndarray] = None, **kwargs) -> 'BaseDetector':
        """Fit the detector on a feature matrix."""
        pass

    @abstractmethod
    def score_samples(self, X: np.ndarray) -> np.ndarray:
        """Fraud/anomaly score per row, in [0, 1]."""
        pass

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable parameters and fitted state."""
        pass

    @classmethod
    @abstractmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDetector':
        """Rebuild a fitted detector from ``to_dict`` output."""
        pass

    def predict(self, X: np.ndarray, threshold: Optional[float] = None) -> np.ndarray:
        """Binary fraud flags: score strictly above the threshold."""
        if threshold is None:
            threshold = self.threshold
        return (self.score_samples(X) > threshold).astype(int)

    def _validate_fit_input(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2:
            raise InvalidInput("X must be 2-dimensional")
        if len(X) == 0:
            raise InvalidInput("Cannot fit on an empty dataset")
        self.n_features_ = X.shape[1]
        return X

    def _validate_predict_input(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.ndim != 2:
            raise InvalidInput("X must be 2-dimensional")
        if self.n_features_ and X.shape[1] != self.n_features_:
            raise InvalidInput(f"X has {X.shape[1]} features, expected {self.n_features_}")
        return X
