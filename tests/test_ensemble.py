"""
Test score aggregation and explanations.
"""

import numpy as np
import pytest

import sys
sys.path.append('../')

from fraudensemble.ensemble import (
    WeightedBlendAggregator,
    SingleModelAggregator,
    aggregator_from_dict,
    explain,
    risk_tier,
    WEAK_SIGNALS_REASON
)
from fraudensemble.exceptions import InvalidInput


class TestAggregators:

    def test_default_blend(self):
        blend = WeightedBlendAggregator()
        score = blend.combine({'isolation_forest': 1.0, 'lof': 0.0, 'one_class': 0.5})

        assert np.isclose(score, 0.4 + 0.15)

    def test_weights_must_sum_to_one(self):
        with pytest.raises(InvalidInput):
            WeightedBlendAggregator({'isolation_forest': 0.5, 'lof': 0.3})
        with pytest.raises(InvalidInput):
            WeightedBlendAggregator({'isolation_forest': 1.2, 'lof': -0.2})

        # Within tolerance
        WeightedBlendAggregator({'isolation_forest': 0.3333333, 'lof': 0.3333333, 'one_class': 0.3333334})

    def test_missing_sub_score(self):
        with pytest.raises(InvalidInput):
            WeightedBlendAggregator().combine({'isolation_forest': 0.9})

    def test_combine_many(self):
        blend = WeightedBlendAggregator({'lof': 0.5, 'one_class': 0.5})
        scores = blend.combine_many({'lof': np.array([0.0, 1.0]), 'one_class': np.array([1.0, 1.0])})

        np.testing.assert_allclose(scores, [0.5, 1.0])

    def test_single_model_is_identity(self):
        single = SingleModelAggregator('lof', threshold=0.5)

        assert single.combine({'lof': 0.37, 'one_class': 0.9}) == 0.37
        with pytest.raises(InvalidInput):
            single.combine({'one_class': 0.9})

    def test_round_trip(self):
        for aggregator in (WeightedBlendAggregator(threshold=0.55), SingleModelAggregator('lof', 0.4)):
            restored = aggregator_from_dict(aggregator.to_dict())

            assert restored.kinds == aggregator.kinds
            assert restored.threshold == aggregator.threshold


class TestRiskTier:

    def test_tiers(self):
        assert risk_tier(0.95) == 'high'
        assert risk_tier(0.7) == 'medium'
        assert risk_tier(0.41) == 'medium'
        assert risk_tier(0.4) == 'low'
        assert risk_tier(0.0) == 'low'


class TestExplain:

    def test_individual_reasons(self):
        features = {
            'amount_zscore': 3.1,
            'time_risk': 0.8,
            'merchant_risk': 0.8,
            'location_risk': 0.9,
            'device_risk': 0.9,
            'velocity': 4.0,
        }
        reasons = explain(features, {'isolation_forest': 0.82}, flagged=True)

        assert len(reasons) == 7
        assert any('isolation_forest' in reason for reason in reasons)
        assert WEAK_SIGNALS_REASON not in reasons

    def test_flagged_without_reasons(self):
        reasons = explain({'amount_zscore': 0.5}, {'lof': 0.6}, flagged=True)
        assert reasons == [WEAK_SIGNALS_REASON]

    def test_not_flagged_may_be_empty(self):
        assert explain({'amount_zscore': 0.5}, {'lof': 0.1}, flagged=False) == []

    def test_thresholds_are_strict(self):
        features = {'amount_zscore': 2.0, 'time_risk': 0.5, 'velocity': 3.0}
        assert explain(features, {}, flagged=False) == []
