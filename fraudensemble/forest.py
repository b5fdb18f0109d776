"""
Class-weighted decision forest for supervised fraud classification.

Fraud is a rare-event class. Two corrections keep minority signal alive:
each tree's bootstrap sample oversamples fraud, and split quality is a Gini
impurity in which fraud counts are multiplied by ``class_weight``. Without
both, pure-legitimate splits win almost every comparison.
"""

import math
from dataclasses import dataclass
from functools import partial
from typing import Optional, Tuple, Dict, Any, List, Union

import numpy as np
from loguru import logger

from ._parallel import ProgressCallback, build_trees
from ._random import RandomState, check_random_state, spawn_seeds
from .base import BaseDetector, NEUTRAL_SCORE
from .config import DECISION_FOREST
from .exceptions import InvalidInput


def weighted_gini(n_fraud: float, n_legit: float, class_weight: float = 1.0) -> float:
    """
    Gini impurity with fraud mass scaled by ``class_weight``.

    With ``class_weight=1`` this is the ordinary Gini impurity 1 - p^2 - q^2.
    """
    fraud_mass = n_fraud * class_weight
    total_mass = fraud_mass + n_legit
    if total_mass == 0:
        return 0.0
    p = fraud_mass / total_mass
    return 1.0 - p ** 2 - (1.0 - p) ** 2


@dataclass
class SplitInfo:
    """Information about a tree split."""
    feature: int
    threshold: float
    impurity: float
    n_samples_left: int
    n_samples_right: int


class ClassWeightedDecisionTree:
    """
    Binary decision tree split on class-weighted Gini impurity.

    Leaves store the fraud fraction of their training samples. Nodes are
    dicts with a ``'leaf'`` flag, as in ``{'leaf': True, 'value': p,
    'n_samples': n}``.
    """

    def __init__(self,
                 max_depth: int = 8,
                 min_samples_leaf: int = 2,
                 class_weight: float = 10.0,
                 n_split_points: int = 10,
                 random_state: RandomState = None):
        """
        Args:
            max_depth: Maximum tree depth
            min_samples_leaf: Minimum samples required on each side of a split
            class_weight: Multiplier applied to fraud counts in the impurity
            n_split_points: Candidate thresholds evaluated per feature
            random_state: Seed or Generator for feature sampling
        """
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.class_weight = class_weight
        self.n_split_points = n_split_points
        self.random_state = random_state

        # Tree structure (will be built during fit)
        self.tree_ = {}
        self.feature_importances_ = None

    def fit(self, X: np.ndarray, y: np.ndarray) -> 'ClassWeightedDecisionTree':
        """
        Fit the tree.

        Args:
            X: Feature matrix (n_samples, n_features); NaN marks missing values
            y: Binary labels (1 = fraud)
        """
        n_samples, n_features = X.shape
        self._rng = check_random_state(self.random_state)
        self._n_candidates = max(1, int(math.ceil(math.sqrt(n_features)))) if n_features else 0

        self.feature_importances_ = np.zeros(n_features)
        self.tree_ = self._build_tree(X, y, depth=0)

        if self.feature_importances_.sum() > 0:
            self.feature_importances_ /= self.feature_importances_.sum()

        return self

    def _leaf(self, y: np.ndarray) -> Dict[str, Any]:
        n_samples = len(y)
        value = float(np.sum(y)) / n_samples if n_samples else 0.0
        return {'leaf': True, 'value': value, 'n_samples': n_samples}

    def _build_tree(self, X: np.ndarray, y: np.ndarray, depth: int) -> Dict[str, Any]:
        """Recursively build the decision tree."""
        n_samples = len(y)
        n_fraud = int(np.sum(y))

        if (depth >= self.max_depth or
            n_samples < 2 * self.min_samples_leaf or
            n_fraud == 0 or n_fraud == n_samples):
            return self._leaf(y)

        best_split = self._find_best_split(X, y)
        if best_split is None:
            return self._leaf(y)

        parent_impurity = weighted_gini(n_fraud, n_samples - n_fraud, self.class_weight)
        decrease = parent_impurity - best_split.impurity
        if decrease > 0:
            self.feature_importances_[best_split.feature] += decrease * n_samples

        left_mask, right_mask = self._split_data(X, best_split)

        return {
            'leaf': False,
            'feature': best_split.feature,
            'threshold': best_split.threshold,
            'impurity': best_split.impurity,
            'n_samples': n_samples,
            'left': self._build_tree(X[left_mask], y[left_mask], depth + 1),
            'right': self._build_tree(X[right_mask], y[right_mask], depth + 1),
        }

    def _candidate_thresholds(self, values: np.ndarray) -> np.ndarray:
        """Up to ``n_split_points`` evenly spaced midpoints between distinct values."""
        unique_values = np.unique(values)
        if len(unique_values) < 2:
            return np.empty(0)
        n_gaps = len(unique_values) - 1
        positions = np.unique(
            np.linspace(0, n_gaps - 1, num=min(self.n_split_points, n_gaps)).astype(int))
        return (unique_values[positions] + unique_values[positions + 1]) / 2

    def _find_best_split(self, X: np.ndarray, y: np.ndarray) -> Optional[SplitInfo]:
        """Find the lowest-impurity split over a random subset of features."""
        n_samples, n_features = X.shape
        best_split = None
        best_impurity = np.inf

        candidates = self._rng.choice(n_features, size=self._n_candidates, replace=False)

        for feature in candidates:
            feature_values = X[:, feature]
            valid_mask = ~np.isnan(feature_values)
            if not np.any(valid_mask):
                continue

            valid_values = feature_values[valid_mask]
            valid_labels = y[valid_mask]

            for threshold in self._candidate_thresholds(valid_values):
                left = valid_values <= threshold
                n_left = int(np.sum(left))
                # Missing values follow the right branch
                n_right = n_samples - n_left

                if n_left < self.min_samples_leaf or n_right < self.min_samples_leaf:
                    continue

                fraud_left = float(np.sum(valid_labels[left]))
                fraud_right = float(np.sum(y)) - fraud_left

                impurity = (
                    n_left / n_samples * weighted_gini(fraud_left, n_left - fraud_left, self.class_weight) +
                    n_right / n_samples * weighted_gini(fraud_right, n_right - fraud_right, self.class_weight)
                )

                if impurity < best_impurity:
                    best_impurity = impurity
                    best_split = SplitInfo(
                        feature=int(feature),
                        threshold=float(threshold),
                        impurity=float(impurity),
                        n_samples_left=n_left,
                        n_samples_right=n_right
                    )

        return best_split

    def _split_data(self, X: np.ndarray, split: SplitInfo) -> Tuple[np.ndarray, np.ndarray]:
        """Split data based on the split info."""
        feature_values = X[:, split.feature]
        left_mask = feature_values <= split.threshold
        return left_mask, ~left_mask

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Fraud probability per row."""
        return np.array([self._predict_sample(x, self.tree_) for x in X])

    def _predict_sample(self, x: np.ndarray, tree: Dict[str, Any]) -> float:
        """Predict a single sample by traversing the tree."""
        if tree['leaf']:
            return tree['value']

        feature_value = x[tree['feature']]

        # Unknown feature: neutral contribution instead of guessing a branch
        if np.isnan(feature_value):
            return NEUTRAL_SCORE

        if feature_value <= tree['threshold']:
            return self._predict_sample(x, tree['left'])
        return self._predict_sample(x, tree['right'])

    def get_leaf_values(self) -> np.ndarray:
        """Get all leaf values from the tree."""
        leaf_values = []
        self._collect_leaf_values(self.tree_, leaf_values)
        return np.array(leaf_values)

    def _collect_leaf_values(self, tree: Dict[str, Any], leaf_values: list):
        if tree['leaf']:
            leaf_values.append(tree['value'])
        else:
            self._collect_leaf_values(tree['left'], leaf_values)
            self._collect_leaf_values(tree['right'], leaf_values)

    def split_features(self) -> List[Tuple[int, float]]:
        """(feature, threshold) of every internal node, pre-order."""
        splits: List[Tuple[int, float]] = []
        stack = [self.tree_]
        while stack:
            node = stack.pop()
            if not node['leaf']:
                splits.append((node['feature'], node['threshold']))
                stack.extend([node['right'], node['left']])
        return splits


def draw_bootstrap(fraud_indices: np.ndarray, legit_indices: np.ndarray, size: int,
                   fraud_fraction: float, rng: np.random.Generator) -> np.ndarray:
    """
    Fraud-oversampled bootstrap sample of row indices.

    Fraud rows fill up to ``fraud_fraction`` of the sample, limited to three
    draws per available fraud row; legitimate rows fill the rest. Both are
    drawn with replacement and the result is shuffled.
    """
    if len(legit_indices) == 0:
        n_fraud = size
    else:
        n_fraud = min(int(size * fraud_fraction), 3 * len(fraud_indices))
    n_legit = size - n_fraud

    parts = []
    if n_fraud > 0:
        parts.append(rng.choice(fraud_indices, size=n_fraud, replace=True))
    if n_legit > 0:
        parts.append(rng.choice(legit_indices, size=n_legit, replace=True))

    sample = np.concatenate(parts) if parts else np.empty(0, dtype=int)
    rng.shuffle(sample)
    return sample


def _build_decision_tree(X: np.ndarray, y: np.ndarray, fraud_indices: np.ndarray,
                         legit_indices: np.ndarray, sample_size: int, fraud_fraction: float,
                         tree_params: Dict[str, Any], seed: int) -> ClassWeightedDecisionTree:
    rng = np.random.default_rng(seed)
    sample = draw_bootstrap(fraud_indices, legit_indices, sample_size, fraud_fraction, rng)
    tree = ClassWeightedDecisionTree(random_state=rng, **tree_params)
    return tree.fit(X[sample], y[sample])


class WeightedDecisionForest(BaseDetector):
    """
    Supervised ensemble of class-weighted decision trees.

    Key features:
    - Fraud-oversampled bootstrap per tree
    - Class-weighted Gini splits over sqrt(n_features) random candidates
    - Neutral 0.5 contribution from trees that meet an unknown feature
    - Impurity-decrease feature importances
    """

    kind = DECISION_FOREST

    def __init__(self,
                 n_estimators: int = 100,
                 max_depth: int = 8,
                 class_weight: Union[float, str] = 10.0,
                 min_samples_leaf: int = 2,
                 max_bootstrap_size: int = 5000,
                 fraud_fraction: float = 0.3,
                 n_split_points: int = 10,
                 threshold: float = 0.5,
                 n_jobs: int = 1,
                 random_state: RandomState = None):
        """
        Args:
            n_estimators: Number of trees
            max_depth: Maximum tree depth
            class_weight: Fraud weight in the impurity, or 'balanced' for n_legit / n_fraud
            min_samples_leaf: Minimum samples on each side of a split
            max_bootstrap_size: Cap on each tree's bootstrap sample
            fraud_fraction: Target share of fraud rows in a bootstrap sample
            n_split_points: Candidate thresholds per feature
            threshold: Probability above which a row is flagged
            n_jobs: joblib workers for tree construction
            random_state: Seed or Generator for reproducible training
        """
        super().__init__(threshold=threshold)
        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.class_weight = class_weight
        self.min_samples_leaf = min_samples_leaf
        self.max_bootstrap_size = max_bootstrap_size
        self.fraud_fraction = fraud_fraction
        self.n_split_points = n_split_points
        self.n_jobs = n_jobs
        self.random_state = random_state

        # Fitted attributes
        self.estimators_: List[ClassWeightedDecisionTree] = []
        self.class_weight_: float = 1.0
        self.feature_importances_: Optional[np.ndarray] = None

    def _resolve_class_weight(self, n_fraud: int, n_legit: int) -> float:
        if self.class_weight == 'balanced':
            return n_legit / n_fraud if n_fraud > 0 else 1.0
        if isinstance(self.class_weight, str):
            raise InvalidInput(f"Unknown class weight: {self.class_weight!r}")
        return float(self.class_weight)

    def fit(self, X: np.ndarray, y: Optional[np.ndarray] = None,
            progress_callback: Optional[ProgressCallback] = None) -> 'WeightedDecisionForest':
        """
        Fit the forest.

        Args:
            X: Training features (n_samples, n_features)
            y: Training labels (n_samples,) - binary 0/1
            progress_callback: Called as ``callback(trees_done, n_estimators)``
        """
        X, y = self._validate_input(X, y)

        fraud_indices = np.where(y == 1)[0]
        legit_indices = np.where(y == 0)[0]
        self.class_weight_ = self._resolve_class_weight(len(fraud_indices), len(legit_indices))
        sample_size = min(self.max_bootstrap_size, len(y))

        logger.debug(f"Growing {self.n_estimators} decision trees on {len(y)} samples "
                     f"({len(fraud_indices)} fraud, class_weight={self.class_weight_:.2f})")

        tree_params = {
            'max_depth': self.max_depth,
            'min_samples_leaf': self.min_samples_leaf,
            'class_weight': self.class_weight_,
            'n_split_points': self.n_split_points,
        }
        build_one = partial(_build_decision_tree, X, y, fraud_indices, legit_indices,
                            sample_size, self.fraud_fraction, tree_params)

        rng = check_random_state(self.random_state)
        seeds = spawn_seeds(rng, self.n_estimators)
        self.estimators_ = build_trees(build_one, seeds, self.n_jobs, progress_callback)

        importance_sum = np.zeros(self.n_features_)
        for tree in self.estimators_:
            importance_sum += tree.feature_importances_
        if importance_sum.sum() > 0:
            self.feature_importances_ = importance_sum / importance_sum.sum()
        else:
            self.feature_importances_ = np.zeros(self.n_features_)

        return self

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Predict class probabilities."""
        X = self._validate_predict_input(X)

        if not self.estimators_:
            probabilities = np.full(len(X), NEUTRAL_SCORE)
        else:
            probabilities = np.mean([tree.predict(X) for tree in self.estimators_], axis=0)

        return np.column_stack([1 - probabilities, probabilities])

    def score_samples(self, X: np.ndarray) -> np.ndarray:
        return self.predict_proba(X)[:, 1]

    def _validate_input(self, X: np.ndarray, y: Optional[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
        """Validate input arrays."""
        X = self._validate_fit_input(X)
        if y is None:
            raise InvalidInput("Supervised training requires labels")
        y = np.asarray(y, dtype=np.int32)

        if y.ndim != 1:
            raise InvalidInput("y must be 1-dimensional")
        if len(X) != len(y):
            raise InvalidInput("X and y must have same number of samples")
        if not np.all(np.isin(y, [0, 1])):
            raise InvalidInput("y must contain only 0 and 1 values")

        return X, y

    def get_params(self) -> Dict[str, Any]:
        """Get model parameters."""
        return {
            'n_estimators': self.n_estimators,
            'max_depth': self.max_depth,
            'class_weight': self.class_weight,
            'min_samples_leaf': self.min_samples_leaf,
            'max_bootstrap_size': self.max_bootstrap_size,
            'fraud_fraction': self.fraud_fraction,
            'n_split_points': self.n_split_points,
            'threshold': self.threshold,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'params': self.get_params(),
            'n_features': self.n_features_,
            'class_weight_': self.class_weight_,
            'feature_importances': (None if self.feature_importances_ is None
                                    else self.feature_importances_.tolist()),
            'trees': [tree.tree_ for tree in self.estimators_],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WeightedDecisionForest':
        forest = cls(**data['params'])
        forest.n_features_ = data['n_features']
        forest.class_weight_ = data['class_weight_']
        if data['feature_importances'] is not None:
            forest.feature_importances_ = np.asarray(data['feature_importances'])
        for root in data['trees']:
            tree = ClassWeightedDecisionTree(
                max_depth=forest.max_depth,
                min_samples_leaf=forest.min_samples_leaf,
                class_weight=forest.class_weight_,
                n_split_points=forest.n_split_points
            )
            tree.tree_ = root
            forest.estimators_.append(tree)
        return forest
