"""
Combination of sub-model scores and human-readable explanations.
"""

from typing import Dict, List, Mapping, Optional

import numpy as np

from .config import DEFAULT_BLEND_WEIGHTS
from .exceptions import InvalidInput

WEIGHT_TOLERANCE = 1e-6

HIGH_RISK_SCORE = 0.7
MEDIUM_RISK_SCORE = 0.4

WEAK_SIGNALS_REASON = "Multiple weak signals combined"

# (feature, threshold, reason); a reason fires when the feature exceeds the threshold
FEATURE_REASONS = [
    ('amount_zscore', 2.0, "Transaction amount deviates significantly from normal"),
    ('time_risk', 0.5, "Transaction at unusual hour"),
    ('merchant_risk', 0.6, "High-risk merchant category"),
    ('location_risk', 0.6, "High-risk location"),
    ('device_risk', 0.6, "Elevated device risk"),
    ('velocity', 3.0, "High transaction velocity"),
]

SUB_SCORE_REASON_THRESHOLD = 0.7


class WeightedBlendAggregator:
    """
    Fixed-weight linear blend of sub-model scores.

    Weights must sum to 1 so the blend of [0, 1] scores stays in [0, 1].
    """

    def __init__(self, weights: Optional[Mapping[str, float]] = None, threshold: float = 0.5):
        weights = dict(DEFAULT_BLEND_WEIGHTS if weights is None else weights)
        if not weights:
            raise InvalidInput("Blend weights must not be empty")
        if any(w < 0 for w in weights.values()):
            raise InvalidInput("Blend weights must be non-negative")
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise InvalidInput(f"Blend weights must sum to 1, got {total:.6f}")

        self.weights = weights
        self.threshold = threshold

    @property
    def kinds(self) -> List[str]:
        return list(self.weights)

    def combine(self, sub_scores: Mapping[str, float]) -> float:
        missing = [kind for kind in self.weights if kind not in sub_scores]
        if missing:
            raise InvalidInput(f"Missing sub-model scores: {missing}")
        score = sum(self.weights[kind] * sub_scores[kind] for kind in self.weights)
        return float(np.clip(score, 0.0, 1.0))

    def combine_many(self, sub_scores: Mapping[str, np.ndarray]) -> np.ndarray:
        score = sum(self.weights[kind] * np.asarray(sub_scores[kind]) for kind in self.weights)
        return np.clip(score, 0.0, 1.0)

    def to_dict(self) -> Dict[str, object]:
        return {'type': 'blend', 'weights': dict(self.weights), 'threshold': self.threshold}


class SingleModelAggregator:
    """Pass-through of one sub-model's score."""

    def __init__(self, kind: str, threshold: float = 0.5):
        self.kind = kind
        self.threshold = threshold

    @property
    def kinds(self) -> List[str]:
        return [self.kind]

    def combine(self, sub_scores: Mapping[str, float]) -> float:
        if self.kind not in sub_scores:
            raise InvalidInput(f"Missing sub-model score: {self.kind}")
        return float(np.clip(sub_scores[self.kind], 0.0, 1.0))

    def combine_many(self, sub_scores: Mapping[str, np.ndarray]) -> np.ndarray:
        return np.clip(np.asarray(sub_scores[self.kind]), 0.0, 1.0)

    def to_dict(self) -> Dict[str, object]:
        return {'type': 'single', 'kind': self.kind, 'threshold': self.threshold}


def aggregator_from_dict(data: Mapping[str, object]):
    if data['type'] == 'blend':
        return WeightedBlendAggregator(data['weights'], threshold=data['threshold'])
    if data['type'] == 'single':
        return SingleModelAggregator(data['kind'], threshold=data['threshold'])
    raise InvalidInput(f"Unknown aggregator type: {data['type']!r}")


def risk_tier(score: float) -> str:
    if score > HIGH_RISK_SCORE:
        return 'high'
    if score > MEDIUM_RISK_SCORE:
        return 'medium'
    return 'low'


def explain(features: Mapping[str, float], sub_scores: Mapping[str, float],
            flagged: bool) -> List[str]:
    """
    Reasons behind a score.

    Args:
        features: Feature map of the transaction
        sub_scores: Score of each sub-model
        flagged: Whether the transaction was declared fraudulent

    Returns:
        Reason strings; never empty when ``flagged``
    """
    reasons = []

    for name, threshold, reason in FEATURE_REASONS:
        value = features.get(name)
        if value is not None and value > threshold:
            reasons.append(reason)

    for kind, score in sub_scores.items():
        if score > SUB_SCORE_REASON_THRESHOLD:
            reasons.append(f"{kind} score {score:.2f} indicates an anomaly")

    if flagged and not reasons:
        reasons.append(WEAK_SIGNALS_REASON)

    return reasons
