"""
Feature extraction for transaction records.

Turns a raw transaction into a flat ``{name: float}`` map: numeric fields are
passed through unchanged and risk signals are derived from the timestamp,
merchant, location, device and amount. Amount z-scores use statistics
accumulated from a training corpus via ``update_statistics``.
"""

import math
from datetime import datetime
from numbers import Number
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .dataset import AMOUNT_KEYS, LABEL_COLUMN, get_amount
from .exceptions import InvalidInput


MERCHANT_RISK = {
    'amazon': 0.1,
    'walmart': 0.1,
    'target': 0.1,
    'starbucks': 0.05,
    "mcdonald's": 0.05,
    'gas station': 0.3,
    'atm withdrawal': 0.4,
    'online transfer': 0.5,
    'international vendor': 0.7,
    'crypto exchange': 0.8,
    'high risk merchant': 0.9,
}
DEFAULT_MERCHANT_RISK = 0.5

DEVICE_RISK = {
    'high': 0.9,
    'medium': 0.5,
    'low': 0.1,
}
DEFAULT_DEVICE_RISK = 0.5

HIGH_RISK_LOCATION = 0.9
INTERNATIONAL_LOCATION = 0.8
LOW_RISK_LOCATION = 0.1

NIGHT_TIME_RISK = 0.8
DAY_TIME_RISK = 0.1

# Identifier-like fields never become model features
IDENTIFIER_FIELDS = frozenset({'id', 'userId', 'user_id', 'cardLast4', 'ipAddress', 'transactionId'})

# Fields consumed by the derived signals below rather than passed through
TIMESTAMP_FIELD = 'timestamp'
MERCHANT_FIELD = 'merchant'
LOCATION_FIELD = 'location'
DEVICE_RISK_FIELD = 'deviceRisk'


def has_timestamp(value: Any) -> bool:
    """False for None and for the NaN/NaT holes pandas leaves in missing cells."""
    if value is None or value is pd.NaT:
        return False
    if isinstance(value, (str, datetime, np.datetime64, Number)):
        return not pd.isna(value)
    return True


def parse_timestamp(value: Any) -> pd.Timestamp:
    """Parse ISO strings, datetimes and epoch seconds."""
    ts = None
    try:
        if isinstance(value, (datetime, pd.Timestamp, np.datetime64)):
            ts = pd.Timestamp(value)
        elif isinstance(value, Number) and not isinstance(value, bool):
            ts = pd.Timestamp(float(value), unit='s')
        elif isinstance(value, str):
            ts = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError) as e:
        raise InvalidInput(f"Malformed timestamp: {value!r}") from e
    if ts is None or pd.isna(ts):
        raise InvalidInput(f"Malformed timestamp: {value!r}")
    return ts


def merchant_risk(merchant: Any) -> float:
    if not isinstance(merchant, str):
        return DEFAULT_MERCHANT_RISK
    return MERCHANT_RISK.get(merchant.strip().lower(), DEFAULT_MERCHANT_RISK)


def location_risk(location: Any) -> float:
    if not isinstance(location, str):
        return LOW_RISK_LOCATION
    lowered = location.lower()
    if 'high risk' in lowered:
        return HIGH_RISK_LOCATION
    if 'international' in lowered:
        return INTERNATIONAL_LOCATION
    return LOW_RISK_LOCATION


def device_risk(level: Any) -> float:
    if not isinstance(level, str):
        return DEFAULT_DEVICE_RISK
    return DEVICE_RISK.get(level.strip().lower(), DEFAULT_DEVICE_RISK)


def time_risk(hour: int) -> float:
    """Late-night and early-morning activity is elevated."""
    return NIGHT_TIME_RISK if hour < 6 or hour > 22 else DAY_TIME_RISK


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


class FeatureExtractor:
    """
    Deterministic record -> feature map transform.

    ``transform`` is pure; the only state is the amount mean/std used for
    the z-score, refreshed by ``update_statistics`` before every retrain.
    """

    def __init__(self, amount_mean: Optional[float] = None,
                 amount_std: Optional[float] = None):
        self.amount_mean = amount_mean
        self.amount_std = amount_std

    @property
    def has_statistics(self) -> bool:
        return self.amount_mean is not None and self.amount_std is not None

    def update_statistics(self, records: Sequence[Mapping[str, Any]]) -> 'FeatureExtractor':
        """Recompute the running amount mean and standard deviation."""
        if not records:
            raise InvalidInput("Cannot compute statistics of an empty dataset")
        amounts = np.array([get_amount(r) for r in records], dtype=np.float64)
        self.amount_mean = float(np.mean(amounts))
        self.amount_std = float(np.std(amounts))
        return self

    def amount_zscore(self, amount: float) -> float:
        if not self.has_statistics or self.amount_std == 0:
            return 0.0
        return abs(amount - self.amount_mean) / self.amount_std

    def transform(self, record: Mapping[str, Any]) -> Dict[str, float]:
        features: Dict[str, float] = {}

        for key, value in record.items():
            if key in (LABEL_COLUMN, TIMESTAMP_FIELD) or key in IDENTIFIER_FIELDS:
                continue
            if _is_number(value):
                features[key] = float(value)

        if has_timestamp(record.get(TIMESTAMP_FIELD)):
            ts = parse_timestamp(record[TIMESTAMP_FIELD])
            features['hour'] = float(ts.hour)
            features['day_of_week'] = float(ts.dayofweek)
            features['time_risk'] = time_risk(ts.hour)

        if MERCHANT_FIELD in record:
            features['merchant_risk'] = merchant_risk(record[MERCHANT_FIELD])
        if LOCATION_FIELD in record:
            features['location_risk'] = location_risk(record[LOCATION_FIELD])
        if DEVICE_RISK_FIELD in record:
            features['device_risk'] = device_risk(record[DEVICE_RISK_FIELD])

        if any(key in record for key in AMOUNT_KEYS):
            amount = get_amount(record)
            features['amount_zscore'] = self.amount_zscore(amount)

        return features

    def transform_many(self, records: Sequence[Mapping[str, Any]]) -> List[Dict[str, float]]:
        return [self.transform(r) for r in records]

    def to_dict(self) -> Dict[str, Any]:
        return {'amount_mean': self.amount_mean, 'amount_std': self.amount_std}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FeatureExtractor':
        return cls(data.get('amount_mean'), data.get('amount_std'))


def feature_names_of(feature_maps: Sequence[Mapping[str, float]]) -> List[str]:
    """Union of feature names in first-seen order."""
    names: Dict[str, None] = {}
    for fmap in feature_maps:
        for key in fmap:
            names.setdefault(key, None)
    return list(names)


def to_matrix(feature_maps: Sequence[Mapping[str, float]], feature_names: Sequence[str]) -> np.ndarray:
    """
    Stack feature maps into a 2-D array in ``feature_names`` order.

    Absent or non-finite features become NaN, the unknown-feature sentinel
    every detector understands.
    """
    X = np.full((len(feature_maps), len(feature_names)), np.nan, dtype=np.float64)
    for i, fmap in enumerate(feature_maps):
        for j, name in enumerate(feature_names):
            value = fmap.get(name)
            if value is not None and math.isfinite(value):
                X[i, j] = value
    return X
