"""
FraudEnsemble: ensemble anomaly and fraud scoring for card transactions.

Turns a transaction record into a fraud probability with:
- Random-split isolation forests
- Local Outlier Factor density ratios
- A simplified one-class kernel boundary
- A class-weighted, fraud-oversampled decision forest
"""

__version__ = "0.1.0"

# Configuration and errors
from .config import TrainingConfig
from .exceptions import (
    FraudEnsembleError,
    InvalidInput,
    ModelNotTrained,
    ModelNotFound,
    DatasetNotFound,
    TrainingCancelled
)

# Data handling
from .dataset import load_transactions, train_test_split
from .features import FeatureExtractor

# Detectors
from .isolation import IsolationForestDetector, IsolationTree, average_path_length
from .lof import LocalOutlierDetector
from .one_class import OneClassBoundaryDetector
from .forest import WeightedDecisionForest, ClassWeightedDecisionTree, weighted_gini

# Aggregation
from .ensemble import WeightedBlendAggregator, SingleModelAggregator, explain, risk_tier

# Evaluation
from .metrics import (
    EvaluationReport,
    evaluate,
    confusion_counts,
    classification_metrics,
    value_detection_rate,
    net_savings
)

# Train / predict
from .pipeline import FraudModel, Prediction, TrainingResult, train, predict

# Persistence and serving
from .storage import ModelStore
from .registry import ModelRegistry, TrainingJob, JobStatus

# Rule-based variant
from .profiles import BehavioralProfile, RuleBasedScorer, ProfileStore, detect_behavioral_anomalies

__all__ = [
    # Entry points
    'train',
    'predict',
    'TrainingConfig',
    'TrainingResult',
    'FraudModel',
    'Prediction',

    # Errors
    'FraudEnsembleError',
    'InvalidInput',
    'ModelNotTrained',
    'ModelNotFound',
    'DatasetNotFound',
    'TrainingCancelled',

    # Data
    'load_transactions',
    'train_test_split',
    'FeatureExtractor',

    # Detectors
    'IsolationForestDetector',
    'IsolationTree',
    'average_path_length',
    'LocalOutlierDetector',
    'OneClassBoundaryDetector',
    'WeightedDecisionForest',
    'ClassWeightedDecisionTree',
    'weighted_gini',

    # Aggregation
    'WeightedBlendAggregator',
    'SingleModelAggregator',
    'explain',
    'risk_tier',

    # Metrics
    'EvaluationReport',
    'evaluate',
    'confusion_counts',
    'classification_metrics',
    'value_detection_rate',
    'net_savings',

    # Persistence and serving
    'ModelStore',
    'ModelRegistry',
    'TrainingJob',
    'JobStatus',

    # Rule-based variant
    'BehavioralProfile',
    'RuleBasedScorer',
    'ProfileStore',
    'detect_behavioral_anomalies'
]
