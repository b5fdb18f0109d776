"""
Local Outlier Factor scorer over a stored reference set.

There is no training beyond storing the reference vectors; prediction cost
scales with the reference set size. The k-NN search uses scikit-learn's
``NearestNeighbors`` index, the density ratio itself is computed here.
"""

from typing import Optional, Dict, Any, Sequence

import numpy as np
from loguru import logger
from sklearn.neighbors import NearestNeighbors
from sklearn.preprocessing import StandardScaler

from .base import BaseDetector, NEUTRAL_SCORE, prepare_features, restore_scaler
from .config import LOCAL_OUTLIER

# Score returned for every point when the reference set has k or fewer points
INSUFFICIENT_DATA_SCORE = 0.5

# LOF values centre on 1; (LOF - 1) / LOF_SCALE maps them onto [0, 1]
LOF_SCALE = 4.0


def normalise_lof(lof: float) -> float:
    if not np.isfinite(lof):
        return NEUTRAL_SCORE
    return float(np.clip((lof - 1.0) / LOF_SCALE, 0.0, 1.0))


class LocalOutlierDetector(BaseDetector):
    """
    Density-ratio anomaly scorer.

    reach(a, b) = max(k-distance(b), d(a, b))
    lrd(x)      = k / sum of reach(x, n) over x's k nearest neighbours
    LOF(x)      = mean over neighbours n of lrd(n) / lrd(x)
    """

    kind = LOCAL_OUTLIER

    def __init__(self,
                 n_neighbors: int = 5,
                 features: Optional[Sequence[int]] = None,
                 scale_features: bool = True,
                 threshold: float = 0.5):
        """
        Args:
            n_neighbors: k, the neighbourhood size
            features: Column indices used for distances (default: all)
            scale_features: Standardise columns before measuring distances
            threshold: Normalised score above which a point is flagged
        """
        super().__init__(threshold=threshold)
        self.n_neighbors = n_neighbors
        self.features = list(features) if features is not None else None
        self.scale_features = scale_features

        self.reference_: Optional[np.ndarray] = None
        self.scaler_: Optional[StandardScaler] = None
        self.column_means_: Optional[np.ndarray] = None
        self.k_distances_: Optional[np.ndarray] = None
        self.lrd_: Optional[np.ndarray] = None
        self._index: Optional[NearestNeighbors] = None

    @property
    def has_sufficient_data(self) -> bool:
        return self.reference_ is not None and len(self.reference_) > self.n_neighbors

    def fit(self, X: np.ndarray, y: Optional[np.ndarray] = None, **kwargs) -> 'LocalOutlierDetector':
        """Store the reference set and precompute its k-distances and densities."""
        X = self._validate_fit_input(X)
        X = self._select(X)

        if self.scale_features:
            self.scaler_ = StandardScaler().fit(X)
            self.column_means_ = None
            reference = prepare_features(X, self.scaler_)
        else:
            self.scaler_ = None
            self.column_means_ = self._nan_means(X)
            reference = self._fill_missing(X)

        self._set_reference(reference)
        return self

    def _select(self, X: np.ndarray) -> np.ndarray:
        if self.features is None:
            return X
        return X[:, self.features]

    @staticmethod
    def _nan_means(X: np.ndarray) -> np.ndarray:
        counts = np.sum(~np.isnan(X), axis=0)
        sums = np.nansum(X, axis=0)
        return np.divide(sums, counts, out=np.zeros(X.shape[1]), where=counts > 0)

    def _fill_missing(self, X: np.ndarray) -> np.ndarray:
        X = X.copy()
        rows, cols = np.where(np.isnan(X))
        X[rows, cols] = self.column_means_[cols]
        return X

    def _set_reference(self, reference: np.ndarray) -> None:
        self.reference_ = reference
        n_reference = len(reference)

        # Every reference point needs k neighbours other than itself
        if n_reference <= self.n_neighbors:
            logger.warning(f"LOF reference set has {n_reference} points, need more than "
                           f"k={self.n_neighbors}; scores fall back to {INSUFFICIENT_DATA_SCORE}")
            self._index = None
            self.k_distances_ = None
            self.lrd_ = None
            return

        self._index = NearestNeighbors().fit(reference)

        # Querying without X excludes each reference point from its own neighbours
        distances, indices = self._index.kneighbors(n_neighbors=self.n_neighbors)

        self.k_distances_ = distances[:, -1]
        reach = np.maximum(self.k_distances_[indices], distances)
        self.lrd_ = self._local_reachability_density(reach)

    @staticmethod
    def _local_reachability_density(reach: np.ndarray) -> np.ndarray:
        totals = reach.sum(axis=1)
        with np.errstate(divide='ignore'):
            return np.where(totals > 0, reach.shape[1] / np.where(totals > 0, totals, 1.0), np.inf)

    def _prepare(self, X: np.ndarray) -> np.ndarray:
        X = self._select(X)
        if self.scaler_ is not None:
            return prepare_features(X, self.scaler_)
        return self._fill_missing(X)

    def local_outlier_factor(self, X: np.ndarray) -> np.ndarray:
        """Raw LOF values; NaN where the reference set is too small."""
        X = self._validate_predict_input(X)
        if not self.has_sufficient_data:
            return np.full(len(X), np.nan)

        points = self._prepare(X)
        distances, indices = self._index.kneighbors(points, n_neighbors=self.n_neighbors)

        reach = np.maximum(self.k_distances_[indices], distances)
        point_lrd = self._local_reachability_density(reach)
        neighbour_lrd = self.lrd_[indices]

        with np.errstate(divide='ignore', invalid='ignore'):
            ratios = neighbour_lrd / point_lrd[:, None]
        return ratios.mean(axis=1)

    def score_samples(self, X: np.ndarray) -> np.ndarray:
        """Normalised LOF in [0, 1]; 0.5 when undefined or data is insufficient."""
        X = self._validate_predict_input(X)
        if not self.has_sufficient_data:
            logger.debug("LOF scoring with insufficient reference data")
            return np.full(len(X), INSUFFICIENT_DATA_SCORE)
        return np.array([normalise_lof(lof) for lof in self.local_outlier_factor(X)])

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'kind': self.kind,
            'params': {
                'n_neighbors': self.n_neighbors,
                'features': self.features,
                'scale_features': self.scale_features,
                'threshold': self.threshold,
            },
            'n_features': self.n_features_,
            'reference': self.reference_.tolist() if self.reference_ is not None else None,
        }
        if self.scaler_ is not None:
            data['scaler'] = {'mean': self.scaler_.mean_.tolist(), 'scale': self.scaler_.scale_.tolist()}
        if self.column_means_ is not None:
            data['column_means'] = self.column_means_.tolist()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LocalOutlierDetector':
        detector = cls(**data['params'])
        detector.n_features_ = data['n_features']
        if 'scaler' in data:
            detector.scaler_ = restore_scaler(data['scaler']['mean'], data['scaler']['scale'])
        if 'column_means' in data:
            detector.column_means_ = np.asarray(data['column_means'], dtype=np.float64)
        if data['reference'] is not None:
            reference = np.asarray(data['reference'], dtype=np.float64)
            detector._set_reference(reference.reshape(len(reference), -1))
        return detector
