"""
Simplified one-class boundary scorer.

This is a coarse approximation of a one-class SVM: there is no margin
optimisation. The first ``max_support`` training points act as support
vectors with uniform weights, the decision function is their averaged RBF
kernel and the rejection threshold rho is the empirical ``nu``-quantile of
the training decision values. Roughly a fraction ``nu`` of the training data
falls outside the boundary by construction.
"""

import math
from typing import Optional, Dict, Any

import numpy as np
from scipy.spatial.distance import cdist
from sklearn.preprocessing import StandardScaler

from .base import BaseDetector, prepare_features, restore_scaler
from .config import ONE_CLASS


class OneClassBoundaryDetector(BaseDetector):
    """
    Kernel-density boundary with an empirical threshold.

    A point is anomalous iff decision_function(x) < rho_. Scores map the
    decision value onto [0, 1] so that score > 0.5 exactly when the point
    lies outside the boundary.
    """

    kind = ONE_CLASS

    def __init__(self,
                 nu: float = 0.1,
                 gamma: Optional[float] = None,
                 max_support: int = 50,
                 scale_features: bool = True,
                 threshold: float = 0.5):
        """
        Args:
            nu: Expected contamination fraction; sets the rho quantile
            gamma: RBF kernel width (default 1 / n_features)
            max_support: Number of leading training points kept as support
            scale_features: Standardise columns before kernel evaluation
            threshold: Score above which a point is flagged
        """
        super().__init__(threshold=threshold)
        self.nu = nu
        self.gamma = gamma
        self.max_support = max_support
        self.scale_features = scale_features

        self.support_vectors_: Optional[np.ndarray] = None
        self.weights_: Optional[np.ndarray] = None
        self.gamma_: float = 0.0
        self.rho_: float = 0.0
        self.scaler_: Optional[StandardScaler] = None

    def fit(self, X: np.ndarray, y: Optional[np.ndarray] = None, **kwargs) -> 'OneClassBoundaryDetector':
        X = self._validate_fit_input(X)

        if self.scale_features:
            self.scaler_ = StandardScaler().fit(X)
        else:
            self.scaler_ = None
        X = self._prepare(X)

        n_support = min(self.max_support, len(X))
        self.support_vectors_ = X[:n_support]
        self.weights_ = np.full(n_support, 1.0 / n_support)
        self.gamma_ = self.gamma if self.gamma is not None else 1.0 / max(X.shape[1], 1)

        decisions = np.sort(self._decision(X))
        quantile_index = min(int(math.floor(self.nu * len(decisions))), len(decisions) - 1)
        self.rho_ = float(decisions[quantile_index])
        return self

    def _prepare(self, X: np.ndarray) -> np.ndarray:
        if self.scaler_ is not None:
            return prepare_features(X, self.scaler_)
        return np.nan_to_num(X, nan=0.0)

    def _decision(self, X: np.ndarray) -> np.ndarray:
        sq_distances = cdist(X, self.support_vectors_, metric='sqeuclidean')
        return np.exp(-self.gamma_ * sq_distances) @ self.weights_

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """Weighted RBF kernel sum against the support points."""
        X = self._validate_predict_input(X)
        if self.support_vectors_ is None:
            return np.zeros(len(X))
        return self._decision(self._prepare(X))

    def is_outlier(self, X: np.ndarray) -> np.ndarray:
        """Boolean boundary test: decision value below rho."""
        return self.decision_function(X) < self.rho_

    def score_samples(self, X: np.ndarray) -> np.ndarray:
        decisions = self.decision_function(X)
        if self.rho_ <= 0:
            return np.zeros(len(decisions))
        return np.clip(1.0 - decisions / (2.0 * self.rho_), 0.0, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'kind': self.kind,
            'params': {
                'nu': self.nu,
                'gamma': self.gamma,
                'max_support': self.max_support,
                'scale_features': self.scale_features,
                'threshold': self.threshold,
            },
            'n_features': self.n_features_,
            'gamma_': self.gamma_,
            'rho_': self.rho_,
            'support_vectors': None if self.support_vectors_ is None else self.support_vectors_.tolist(),
            'weights': None if self.weights_ is None else self.weights_.tolist(),
        }
        if self.scaler_ is not None:
            data['scaler'] = {'mean': self.scaler_.mean_.tolist(), 'scale': self.scaler_.scale_.tolist()}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OneClassBoundaryDetector':
        detector = cls(**data['params'])
        detector.n_features_ = data['n_features']
        detector.gamma_ = data['gamma_']
        detector.rho_ = data['rho_']
        if data['support_vectors'] is not None:
            support = np.asarray(data['support_vectors'], dtype=np.float64)
            detector.support_vectors_ = support.reshape(len(support), -1)
            detector.weights_ = np.asarray(data['weights'], dtype=np.float64)
        if 'scaler' in data:
            detector.scaler_ = restore_scaler(data['scaler']['mean'], data['scaler']['scale'])
        return detector
