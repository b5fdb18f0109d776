"""
Rule-based behavioral risk scoring with per-user profiles.

A lightweight alternative to the learned models: additive risk rules on the
transaction itself plus deviations from the user's own history. Profiles
accumulate from every observed transaction.
"""

import threading
from collections import OrderedDict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, List, Mapping, Optional

from loguru import logger

from .dataset import get_amount
from .features import has_timestamp, parse_timestamp

MIN_HISTORY = 3
RISK_HISTORY_SIZE = 10

BLOCKED_SCORE = 70
FLAGGED_SCORE = 40

SEVERITY_WEIGHTS = {'high': 25, 'medium': 15, 'low': 10}


@dataclass
class Anomaly:
    """Deviation from a user's usual behaviour."""
    type: str
    severity: str
    description: str
    confidence: float


def transaction_hour(transaction: Mapping[str, Any]) -> Optional[int]:
    """Hour of day, or None when the timestamp is missing."""
    value = transaction.get('timestamp')
    if not has_timestamp(value):
        return None
    return parse_timestamp(value).hour


@dataclass
class BehavioralProfile:
    """Accumulated statistics of one user's transactions."""
    total_transactions: int = 0
    avg_amount: float = 0.0
    merchants: Dict[str, int] = field(default_factory=dict)
    hourly: List[int] = field(default_factory=lambda: [0] * 24)
    locations: Dict[str, int] = field(default_factory=dict)
    risk_history: Deque[float] = field(default_factory=lambda: deque(maxlen=RISK_HISTORY_SIZE))

    def update(self, transaction: Mapping[str, Any], risk_score: Optional[float] = None) -> None:
        # Parse everything first so a bad record leaves the profile untouched
        amount = get_amount(transaction)
        hour = transaction_hour(transaction)

        self.total_transactions += 1
        self.avg_amount += (amount - self.avg_amount) / self.total_transactions

        merchant = transaction.get('merchant')
        self.merchants[merchant] = self.merchants.get(merchant, 0) + 1

        if hour is not None:
            self.hourly[hour] += 1

        location = transaction.get('location')
        self.locations[location] = self.locations.get(location, 0) + 1

        if risk_score is None:
            risk_score = transaction.get('riskScore')
        if risk_score is not None:
            self.risk_history.append(risk_score)


def detect_behavioral_anomalies(profile: Optional[BehavioralProfile],
                                transaction: Mapping[str, Any]) -> List[Anomaly]:
    """
    Compare a transaction against the user's profile.

    Returns no anomalies until the profile holds at least three transactions.
    """
    if profile is None or profile.total_transactions < MIN_HISTORY:
        return []

    anomalies = []
    amount = get_amount(transaction)
    avg = profile.avg_amount
    n = profile.total_transactions

    if avg > 0:
        deviation = abs(amount - avg) / avg
        if deviation > 2:
            significantly = deviation > 5
            anomalies.append(Anomaly(
                type='amount_anomaly',
                severity='high' if significantly else 'medium',
                description=f"Amount {'significantly' if significantly else 'moderately'} "
                            f"deviates from user's average",
                confidence=min(deviation * 0.2, 1.0)
            ))

    merchant_share = profile.merchants.get(transaction.get('merchant'), 0) / n
    if merchant_share < 0.1 and amount > avg * 1.5:
        anomalies.append(Anomaly('merchant_anomaly', 'medium',
                                 'High-value transaction at unfamiliar merchant', 0.8))

    hour = transaction_hour(transaction)
    if hour is not None:
        if profile.hourly[hour] / n < 0.05 and amount > avg:
            anomalies.append(Anomaly('time_anomaly', 'low',
                                     'Transaction at unusual time for this user', 0.6))

    location = transaction.get('location')
    if profile.locations.get(location, 0) == 0:
        international = isinstance(location, str) and 'International' in location
        anomalies.append(Anomaly('location_anomaly', 'high' if international else 'medium',
                                 'Transaction from completely new location', 0.9))

    return anomalies


@dataclass
class RuleScore:
    """Result of rule-based scoring."""
    risk_score: float
    status: str
    anomalies: List[Anomaly]
    risk_factors: List[str]


def risk_status(risk_score: float) -> str:
    if risk_score > BLOCKED_SCORE:
        return 'blocked'
    if risk_score > FLAGGED_SCORE:
        return 'flagged'
    return 'approved'


class _UserLock:
    """A user's lock plus the number of threads holding or waiting on it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class ProfileStore:
    """
    LRU-bounded map of user id to profile.

    Each user has its own lock: updates for one user are serialised while
    different users proceed concurrently. A lock in use outlives the
    eviction of its profile and is dropped by its last user.
    """

    def __init__(self, max_profiles: int = 10000):
        self.max_profiles = max_profiles
        self._profiles: 'OrderedDict[str, BehavioralProfile]' = OrderedDict()
        self._user_locks: Dict[str, _UserLock] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    def get(self, user_id: str) -> Optional[BehavioralProfile]:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is not None:
                self._profiles.move_to_end(user_id)
            return profile

    @contextmanager
    def user_lock(self, user_id: str) -> Iterator[None]:
        """Hold ``user_id``'s lock for the duration of the block."""
        with self._lock:
            entry = self._user_locks.get(user_id)
            if entry is None:
                entry = self._user_locks[user_id] = _UserLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0 and user_id not in self._profiles:
                    self._user_locks.pop(user_id, None)

    def get_or_create(self, user_id: str) -> BehavioralProfile:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                profile = BehavioralProfile()
                self._profiles[user_id] = profile
                self._evict()
            else:
                self._profiles.move_to_end(user_id)
            return profile

    def _evict(self) -> None:
        while len(self._profiles) > self.max_profiles:
            user_id, _ = self._profiles.popitem(last=False)
            entry = self._user_locks.get(user_id)
            if entry is not None and entry.users == 0:
                del self._user_locks[user_id]
            logger.debug(f"Evicted profile of user {user_id}")


class RuleBasedScorer:
    """Additive rule score (0-100) adjusted by behavioral anomalies."""

    def __init__(self, profiles: Optional[ProfileStore] = None):
        self.profiles = profiles if profiles is not None else ProfileStore()

    def _rule_risk(self, transaction: Mapping[str, Any]):
        risk = 0.0
        factors = []
        amount = get_amount(transaction)
        location = transaction.get('location') or ''

        if amount > 10000:
            risk += 30
        elif amount > 5000:
            risk += 20
        elif amount > 1000:
            risk += 10
        if amount > 5000:
            factors.append('High Amount')

        hour = transaction_hour(transaction)
        if hour is not None:
            if hour < 6 or hour > 22:
                risk += 15
                factors.append('Off Hours')

        if 'High Risk' in location:
            risk += 25
            factors.append('High Risk Location')
        if 'International' in location:
            risk += 20
            factors.append('International Location')

        if (transaction.get('frequency') or 0) > 5:
            risk += 20
            factors.append('High Frequency')

        device = transaction.get('deviceRisk')
        if device == 'high':
            risk += 30
            factors.append('Suspicious Device')
        elif device == 'medium':
            risk += 15

        if (transaction.get('velocity') or 0) > 3:
            risk += 25
            factors.append('High Velocity')

        return risk, factors

    def score(self, transaction: Mapping[str, Any]) -> RuleScore:
        """Score without updating the user's profile."""
        risk, factors = self._rule_risk(transaction)

        user_id = transaction.get('userId')
        profile = self.profiles.get(user_id) if user_id is not None else None
        anomalies = detect_behavioral_anomalies(profile, transaction)
        for anomaly in anomalies:
            risk += anomaly.confidence * SEVERITY_WEIGHTS[anomaly.severity]
            factors.append(f"ML: {anomaly.description}")

        risk = min(risk, 100.0)
        return RuleScore(risk_score=risk, status=risk_status(risk),
                         anomalies=anomalies, risk_factors=factors)

    def observe(self, transaction: Mapping[str, Any]) -> RuleScore:
        """Score a transaction, then fold it into its user's profile."""
        user_id = transaction.get('userId')
        if user_id is None:
            return self.score(transaction)

        with self.profiles.user_lock(user_id):
            result = self.score(transaction)
            self.profiles.get_or_create(user_id).update(transaction, result.risk_score)
        return result
