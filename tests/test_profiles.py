"""
Test the rule-based behavioral scorer.
"""

import threading

import numpy as np
import pytest

import sys
sys.path.append('../')

from fraudensemble.exceptions import InvalidInput
from fraudensemble.profiles import (
    BehavioralProfile,
    ProfileStore,
    RuleBasedScorer,
    detect_behavioral_anomalies,
    risk_status,
    RISK_HISTORY_SIZE
)


def make_transaction(**overrides):
    transaction = {
        'userId': 'user_1',
        'amount': 100.0,
        'timestamp': '2024-05-01T14:00:00Z',
        'merchant': 'Amazon',
        'location': 'New York, NY',
        'deviceRisk': 'low',
        'frequency': 1,
        'velocity': 1,
    }
    transaction.update(overrides)
    return transaction


class TestBehavioralProfile:

    def test_update(self):
        profile = BehavioralProfile()
        profile.update(make_transaction(amount=100.0), risk_score=10)
        profile.update(make_transaction(amount=300.0, merchant='Target'), risk_score=20)

        assert profile.total_transactions == 2
        assert profile.avg_amount == 200.0
        assert profile.merchants == {'Amazon': 1, 'Target': 1}
        assert profile.hourly[14] == 2
        assert profile.locations == {'New York, NY': 2}
        assert list(profile.risk_history) == [10, 20]

    def test_risk_history_is_bounded(self):
        profile = BehavioralProfile()
        for i in range(15):
            profile.update(make_transaction(), risk_score=i)

        assert len(profile.risk_history) == RISK_HISTORY_SIZE
        assert list(profile.risk_history) == list(range(5, 15))

    def test_missing_timestamp_skips_hourly(self):
        profile = BehavioralProfile()
        profile.update(make_transaction(timestamp=np.nan))
        profile.update(make_transaction(timestamp=None))

        assert profile.total_transactions == 2
        assert sum(profile.hourly) == 0

    def test_malformed_record_leaves_profile_untouched(self):
        profile = BehavioralProfile()
        profile.update(make_transaction())

        with pytest.raises(InvalidInput):
            profile.update(make_transaction(amount=500.0, merchant='Target',
                                            timestamp='not a date'))

        assert profile.total_transactions == 1
        assert profile.avg_amount == 100.0
        assert profile.merchants == {'Amazon': 1}


class TestAnomalies:

    @pytest.fixture
    def profile(self):
        profile = BehavioralProfile()
        for _ in range(5):
            profile.update(make_transaction(amount=100.0))
        return profile

    def test_requires_history(self):
        profile = BehavioralProfile()
        profile.update(make_transaction())
        profile.update(make_transaction())

        assert detect_behavioral_anomalies(profile, make_transaction(amount=10000.0)) == []
        assert detect_behavioral_anomalies(None, make_transaction()) == []

    def test_familiar_transaction(self, profile):
        assert detect_behavioral_anomalies(profile, make_transaction()) == []

    def test_amount_anomaly(self, profile):
        anomalies = detect_behavioral_anomalies(profile, make_transaction(amount=400.0))
        amount = [a for a in anomalies if a.type == 'amount_anomaly'][0]

        assert amount.severity == 'medium'
        assert amount.confidence == pytest.approx(0.6)

        anomalies = detect_behavioral_anomalies(profile, make_transaction(amount=1000.0))
        amount = [a for a in anomalies if a.type == 'amount_anomaly'][0]
        assert amount.severity == 'high'
        assert amount.confidence == 1.0

    def test_merchant_time_and_location(self, profile):
        transaction = make_transaction(amount=200.0, merchant='Crypto Exchange',
                                       timestamp='2024-05-01T03:00:00Z',
                                       location='International - Lagos')
        types = {a.type: a for a in detect_behavioral_anomalies(profile, transaction)}

        assert set(types) == {'merchant_anomaly', 'time_anomaly', 'location_anomaly'}
        assert types['location_anomaly'].severity == 'high'
        assert types['time_anomaly'].severity == 'low'


class TestRuleBasedScorer:

    def test_rule_risk(self):
        scorer = RuleBasedScorer()
        result = scorer.score(make_transaction(
            userId=None, amount=6000.0, timestamp='2024-05-01T02:00:00Z',
            location='High Risk Country', deviceRisk='medium', velocity=4))

        # 20 (amount) + 15 (hour) + 25 (location) + 15 (device) + 25 (velocity)
        assert result.risk_score == 100.0
        assert result.status == 'blocked'
        assert 'High Velocity' in result.risk_factors

    def test_low_risk(self):
        result = RuleBasedScorer().score(make_transaction())

        assert result.risk_score == 0.0
        assert result.status == 'approved'

    def test_status_thresholds(self):
        assert risk_status(71) == 'blocked'
        assert risk_status(70) == 'flagged'
        assert risk_status(41) == 'flagged'
        assert risk_status(40) == 'approved'

    def test_observe_builds_profile(self):
        store = ProfileStore()
        scorer = RuleBasedScorer(store)
        for _ in range(4):
            scorer.observe(make_transaction())

        profile = store.get('user_1')
        assert profile.total_transactions == 4

        # New location adds a medium anomaly: 0.9 x 15
        result = scorer.score(make_transaction(location='Boston, MA'))
        assert result.risk_score == pytest.approx(13.5)
        assert any(factor.startswith('ML:') for factor in result.risk_factors)

    def test_observe_frame_row_without_timestamp(self):
        scorer = RuleBasedScorer()
        for _ in range(3):
            scorer.observe(make_transaction())

        result = scorer.observe(make_transaction(timestamp=np.nan))

        assert 'Off Hours' not in result.risk_factors
        assert not any(a.type == 'time_anomaly' for a in result.anomalies)
        assert scorer.profiles.get('user_1').total_transactions == 4


class TestProfileStore:

    def test_lru_eviction(self):
        store = ProfileStore(max_profiles=2)
        store.get_or_create('a')
        store.get_or_create('b')
        store.get('a')
        store.get_or_create('c')

        assert len(store) == 2
        assert store.get('b') is None
        assert store.get('a') is not None

    def test_concurrent_updates_same_user(self):
        scorer = RuleBasedScorer(ProfileStore())

        def worker():
            for _ in range(50):
                scorer.observe(make_transaction())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert scorer.profiles.get('user_1').total_transactions == 200

    def test_held_lock_survives_eviction(self):
        store = ProfileStore(max_profiles=1)
        store.get_or_create('u')
        holding = threading.Event()
        release = threading.Event()
        entered = threading.Event()

        def holder():
            with store.user_lock('u'):
                holding.set()
                release.wait(5)

        def contender():
            with store.user_lock('u'):
                entered.set()

        first = threading.Thread(target=holder)
        first.start()
        assert holding.wait(5)

        store.get_or_create('v')
        assert store.get('u') is None

        second = threading.Thread(target=contender)
        second.start()
        assert not entered.wait(0.2)

        release.set()
        first.join()
        second.join()
        assert entered.is_set()
        assert 'u' not in store._user_locks
