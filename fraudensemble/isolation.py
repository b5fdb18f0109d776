"""
Isolation forest built from truly random splits.

Anomalies are few and different, so random axis-aligned cuts isolate them
after fewer splits than normal points. The anomaly score compares a point's
average isolation depth with the expected depth of an unsuccessful search
in a binary search tree of the same size.
"""

import math
from functools import partial
from typing import Optional, Dict, Any, List

import numpy as np
from loguru import logger

from ._parallel import ProgressCallback, build_trees
from ._random import RandomState, check_random_state, spawn_seeds
from .base import BaseDetector, NEUTRAL_SCORE
from .config import ISOLATION_FOREST

EULER_GAMMA = 0.5772156649


def average_path_length(n: int) -> float:
    """
    c(n): average path length of an unsuccessful BST search over n points.

    c(n) = 2 * (ln(n - 1) + gamma) - 2 * (n - 1) / n for n > 1, else 0.
    """
    if n <= 1:
        return 0.0
    return 2.0 * (math.log(n - 1) + EULER_GAMMA) - 2.0 * (n - 1) / n


class IsolationTree:
    """
    One random-split isolation tree.

    Nodes are dicts: ``{'leaf': True, 'size': n}`` or
    ``{'leaf': False, 'feature', 'split_value', 'n_samples', 'left', 'right'}``.
    """

    def __init__(self, max_depth: int, random_state: RandomState = None):
        self.max_depth = max_depth
        self.random_state = random_state
        self.tree_: Dict[str, Any] = {}

    def fit(self, X: np.ndarray) -> 'IsolationTree':
        self._rng = check_random_state(self.random_state)
        self.tree_ = self._build_tree(X, depth=0)
        return self

    def _build_tree(self, X: np.ndarray, depth: int) -> Dict[str, Any]:
        n_samples, n_features = X.shape

        if n_samples <= 1 or depth >= self.max_depth or n_features == 0:
            return {'leaf': True, 'size': n_samples}

        feature = int(self._rng.integers(n_features))
        values = X[:, feature]
        valid_values = values[~np.isnan(values)]

        # Degenerate split: no retry with another feature
        if len(valid_values) == 0:
            return {'leaf': True, 'size': n_samples}
        min_val, max_val = valid_values.min(), valid_values.max()
        if min_val == max_val:
            return {'leaf': True, 'size': n_samples}

        split_value = float(self._rng.uniform(min_val, max_val))

        # NaN compares False and joins the right partition
        left_mask = values < split_value

        return {
            'leaf': False,
            'feature': feature,
            'split_value': split_value,
            'n_samples': n_samples,
            'left': self._build_tree(X[left_mask], depth + 1),
            'right': self._build_tree(X[~left_mask], depth + 1),
        }

    def path_length(self, x: np.ndarray) -> float:
        return self._path_length(x, self.tree_, 0)

    def _path_length(self, x: np.ndarray, node: Dict[str, Any], depth: int) -> float:
        if node['leaf']:
            return depth + average_path_length(node['size'])

        value = x[node['feature']]

        # Unknown feature: estimate the rest of the path from the subtree size
        if np.isnan(value):
            return depth + average_path_length(node['n_samples'])

        if value < node['split_value']:
            return self._path_length(x, node['left'], depth + 1)
        return self._path_length(x, node['right'], depth + 1)

    def n_leaves(self) -> int:
        return self._count_leaves(self.tree_)

    def _count_leaves(self, node: Dict[str, Any]) -> int:
        if node['leaf']:
            return 1
        return self._count_leaves(node['left']) + self._count_leaves(node['right'])


def _build_isolation_tree(X: np.ndarray, max_samples: int, max_depth: int,
                          seed: int) -> IsolationTree:
    rng = np.random.default_rng(seed)
    sample = X[rng.permutation(len(X))[:max_samples]]
    return IsolationTree(max_depth=max_depth, random_state=rng).fit(sample)


class IsolationForestDetector(BaseDetector):
    """
    Unsupervised ensemble of isolation trees.

    Scores near 1 indicate anomalies; an unfitted forest (or one with zero
    trees) scores everything at the neutral 0.5 so that callers polling
    before the first training completes get a defined answer.
    """

    kind = ISOLATION_FOREST

    def __init__(self,
                 n_estimators: int = 100,
                 max_samples: int = 256,
                 max_depth: Optional[int] = None,
                 threshold: float = 0.6,
                 n_jobs: int = 1,
                 random_state: RandomState = None):
        """
        Args:
            n_estimators: Number of isolation trees
            max_samples: Subsample size drawn (without replacement) per tree
            max_depth: Depth limit; defaults to ceil(log2(subsample size))
            threshold: Score above which a point is flagged
            n_jobs: joblib workers for tree construction
            random_state: Seed or Generator for reproducible training
        """
        super().__init__(threshold=threshold)
        self.n_estimators = n_estimators
        self.max_samples = max_samples
        self.max_depth = max_depth
        self.n_jobs = n_jobs
        self.random_state = random_state

        self.estimators_: List[IsolationTree] = []
        self.max_samples_: int = 0
        self.max_depth_: int = 0

    def fit(self, X: np.ndarray, y: Optional[np.ndarray] = None,
            progress_callback: Optional[ProgressCallback] = None) -> 'IsolationForestDetector':
        """
        Grow the forest. Labels, if given, are ignored.

        Args:
            X: Feature matrix (n_samples, n_features); NaN marks missing values
            y: Unused
            progress_callback: Called as ``callback(trees_done, n_estimators)``
        """
        X = self._validate_fit_input(X)
        n_samples = len(X)

        self.max_samples_ = min(self.max_samples, n_samples)
        if self.max_depth is not None:
            self.max_depth_ = self.max_depth
        else:
            self.max_depth_ = int(math.ceil(math.log2(max(self.max_samples_, 1))))

        logger.debug(f"Growing {self.n_estimators} isolation trees on {n_samples} samples "
                     f"(subsample={self.max_samples_}, max_depth={self.max_depth_})")

        rng = check_random_state(self.random_state)
        seeds = spawn_seeds(rng, self.n_estimators)
        build_one = partial(_build_isolation_tree, X, self.max_samples_, self.max_depth_)

        # Assign only after every tree is built
        self.estimators_ = build_trees(build_one, seeds, self.n_jobs, progress_callback)
        return self

    def path_lengths(self, X: np.ndarray) -> np.ndarray:
        """Average isolation path length per row across the forest."""
        X = self._validate_predict_input(X)
        if not self.estimators_:
            return np.zeros(len(X))
        return np.array([
            np.mean([tree.path_length(x) for tree in self.estimators_]) for x in X
        ])

    def score_samples(self, X: np.ndarray) -> np.ndarray:
        """Anomaly score 2^(-E[h(x)] / c(max_samples)), clamped to [0, 1]."""
        X = self._validate_predict_input(X)

        normaliser = average_path_length(self.max_samples_)
        if not self.estimators_ or normaliser == 0:
            return np.full(len(X), NEUTRAL_SCORE)

        scores = np.power(2.0, -self.path_lengths(X) / normaliser)
        return np.clip(scores, 0.0, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'params': {
                'n_estimators': self.n_estimators,
                'max_samples': self.max_samples,
                'max_depth': self.max_depth,
                'threshold': self.threshold,
            },
            'n_features': self.n_features_,
            'max_samples_': self.max_samples_,
            'max_depth_': self.max_depth_,
            'trees': [tree.tree_ for tree in self.estimators_],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IsolationForestDetector':
        detector = cls(**data['params'])
        detector.n_features_ = data['n_features']
        detector.max_samples_ = data['max_samples_']
        detector.max_depth_ = data['max_depth_']
        for root in data['trees']:
            tree = IsolationTree(max_depth=detector.max_depth_)
            tree.tree_ = root
            detector.estimators_.append(tree)
        return detector
