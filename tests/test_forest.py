"""
Test the class-weighted decision forest.
"""

import json

import numpy as np
import pytest

import sys
sys.path.append('../')

from fraudensemble.exceptions import InvalidInput
from fraudensemble.forest import (
    ClassWeightedDecisionTree,
    WeightedDecisionForest,
    draw_bootstrap,
    weighted_gini
)


class TestWeightedGini:

    def test_unit_weight_is_plain_gini(self):
        for n_fraud, n_legit in [(3, 7), (0, 10), (5, 5), (1, 99)]:
            p = n_fraud / (n_fraud + n_legit)
            expected = 1 - p ** 2 - (1 - p) ** 2
            assert np.isclose(weighted_gini(n_fraud, n_legit, 1.0), expected)

    def test_class_weight_inflates_fraud(self):
        # One fraud weighted 9x against nine legit is a balanced node
        assert np.isclose(weighted_gini(1, 9, 9.0), 0.5)
        assert weighted_gini(1, 9, 9.0) > weighted_gini(1, 9, 1.0)

    def test_empty_node(self):
        assert weighted_gini(0, 0, 10.0) == 0.0


class TestDrawBootstrap:

    def test_fraud_oversampling_caps(self):
        rng = np.random.default_rng(0)
        fraud = np.arange(2)
        legit = np.arange(2, 100)

        sample = draw_bootstrap(fraud, legit, 100, 0.3, rng)

        # 30% of 100 would be 30 rows, capped at 3x the two fraud rows
        assert len(sample) == 100
        assert np.sum(np.isin(sample, fraud)) == 6

    def test_fraud_fraction(self):
        rng = np.random.default_rng(0)
        fraud = np.arange(50)
        legit = np.arange(50, 1000)

        sample = draw_bootstrap(fraud, legit, 500, 0.3, rng)
        assert np.sum(np.isin(sample, fraud)) == 150

    def test_no_legitimate_rows(self):
        rng = np.random.default_rng(0)
        sample = draw_bootstrap(np.arange(5), np.array([], dtype=int), 5, 0.3, rng)

        assert len(sample) == 5
        assert np.all(sample < 5)


class TestClassWeightedDecisionTree:

    @pytest.fixture
    def separable_data(self):
        np.random.seed(42)
        X = np.random.normal(0, 1, (200, 2))
        y = (X[:, 1] > 1.0).astype(int)
        return X, y

    def test_splits_on_informative_feature(self, separable_data):
        X, y = separable_data
        tree = ClassWeightedDecisionTree(max_depth=3, class_weight=1.0, random_state=0)
        tree.fit(X, y)

        assert tree.feature_importances_ is not None
        assert np.isclose(tree.feature_importances_.sum(), 1.0)
        assert np.argmax(tree.feature_importances_) == 1

        predictions = tree.predict(X)
        assert np.all((predictions >= 0) & (predictions <= 1))

        leaf_values = tree.get_leaf_values()
        assert len(leaf_values) >= 2
        assert set(np.unique(predictions)) <= set(leaf_values)

    def test_max_depth_zero_is_single_leaf(self, separable_data):
        X, y = separable_data
        tree = ClassWeightedDecisionTree(max_depth=0, random_state=0).fit(X, y)

        assert tree.tree_['leaf']
        assert np.isclose(tree.tree_['value'], y.mean())

    def test_min_samples_leaf_respected(self, separable_data):
        X, y = separable_data
        tree = ClassWeightedDecisionTree(max_depth=8, min_samples_leaf=20, random_state=0).fit(X, y)

        stack = [tree.tree_]
        while stack:
            node = stack.pop()
            if node['leaf']:
                assert node['n_samples'] >= 20
            else:
                stack.extend([node['left'], node['right']])

    def test_pure_node_is_leaf(self):
        X = np.random.normal(0, 1, (10, 2))
        tree = ClassWeightedDecisionTree(random_state=0).fit(X, np.ones(10, dtype=int))

        assert tree.tree_['leaf']
        assert tree.tree_['value'] == 1.0


class TestWeightedDecisionForest:

    @pytest.fixture
    def ten_records(self):
        """Two 9000 fraud records among eight legitimate ones around 50."""
        amounts = np.array([48.0, 50.0, 52.0, 49.0, 51.0, 47.0, 53.0, 50.5, 9000.0, 9000.0])
        y = np.array([0, 0, 0, 0, 0, 0, 0, 0, 1, 1])
        return amounts.reshape(-1, 1), y

    def test_ten_record_scenario(self, ten_records):
        X, y = ten_records
        forest = WeightedDecisionForest(n_estimators=10, max_depth=3, class_weight=100,
                                        min_samples_leaf=2, random_state=42)
        forest.fit(X, y)

        assert len(forest.estimators_) == 10
        for tree in forest.estimators_:
            feature, threshold = tree.split_features()[0]
            assert feature == 0
            assert 53.0 < threshold < 9000.0

        proba = forest.predict_proba(np.array([[8500.0]]))
        assert proba.shape == (1, 2)
        assert proba[0, 1] > 0.5
        assert forest.predict(np.array([[8500.0]]))[0] == 1
        assert forest.predict(np.array([[50.0]]))[0] == 0

    def test_zero_fraud_roots_are_leaves(self):
        np.random.seed(0)
        X = np.random.normal(0, 1, (50, 3))
        y = np.zeros(50, dtype=int)

        forest = WeightedDecisionForest(n_estimators=5, random_state=0).fit(X, y)

        for tree in forest.estimators_:
            assert tree.tree_['leaf']
            assert tree.tree_['value'] == 0.0
        assert np.all(forest.score_samples(X) == 0.0)

    def test_missing_split_feature_is_neutral(self, ten_records):
        X, y = ten_records
        forest = WeightedDecisionForest(n_estimators=5, max_depth=3, class_weight=100,
                                        random_state=0).fit(X, y)

        assert np.isclose(forest.score_samples(np.array([[np.nan]]))[0], 0.5)

    def test_balanced_class_weight(self, ten_records):
        X, y = ten_records
        forest = WeightedDecisionForest(n_estimators=2, class_weight='balanced', random_state=0).fit(X, y)

        assert forest.class_weight_ == 4.0

    def test_invalid_labels(self, ten_records):
        X, _ = ten_records

        with pytest.raises(InvalidInput):
            WeightedDecisionForest(n_estimators=2).fit(X, np.full(10, 2))
        with pytest.raises(InvalidInput):
            WeightedDecisionForest(n_estimators=2).fit(X, None)
        with pytest.raises(InvalidInput):
            WeightedDecisionForest(n_estimators=2).fit(X, np.zeros(5))

    def test_feature_count_checked_at_predict(self, ten_records):
        X, y = ten_records
        forest = WeightedDecisionForest(n_estimators=2, random_state=0).fit(X, y)

        with pytest.raises(InvalidInput):
            forest.predict_proba(np.zeros((1, 3)))

    def test_serialization_round_trip(self):
        np.random.seed(1)
        X = np.random.normal(0, 1, (300, 4))
        y = (X[:, 0] + X[:, 2] > 2.0).astype(int)
        forest = WeightedDecisionForest(n_estimators=10, max_depth=4, random_state=1).fit(X, y)

        restored = WeightedDecisionForest.from_dict(json.loads(json.dumps(forest.to_dict())))

        np.testing.assert_allclose(forest.predict_proba(X), restored.predict_proba(X))
        np.testing.assert_allclose(forest.feature_importances_, restored.feature_importances_)
