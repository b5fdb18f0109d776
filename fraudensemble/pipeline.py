"""
Training and prediction entrypoints.

``train`` turns a dataset and a ``TrainingConfig`` into an immutable
``FraudModel``; ``FraudModel.predict`` turns one transaction into a
``Prediction``. A new training run always produces a new model.
"""

import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from loguru import logger

from ._random import RandomState, check_random_state
from .base import BaseDetector
from .config import (
    TrainingConfig, BLEND, DECISION_FOREST, ISOLATION_FOREST, LOCAL_OUTLIER, ONE_CLASS,
    DEFAULT_THRESHOLDS
)
from .dataset import (
    Dataset, as_records, validate_dataset, train_test_split, extract_labels,
    has_label, get_amount, fraud_rate
)
from .ensemble import (
    WeightedBlendAggregator, SingleModelAggregator, aggregator_from_dict, explain, risk_tier
)
from .exceptions import InvalidInput, ModelNotTrained
from .features import FeatureExtractor, feature_names_of, to_matrix
from .forest import WeightedDecisionForest
from .isolation import IsolationForestDetector
from .lof import LocalOutlierDetector
from .metrics import EvaluationReport, evaluate
from .one_class import OneClassBoundaryDetector

StageCallback = Callable[[str, float], None]

DETECTOR_CLASSES = {
    ISOLATION_FOREST: IsolationForestDetector,
    LOCAL_OUTLIER: LocalOutlierDetector,
    ONE_CLASS: OneClassBoundaryDetector,
    DECISION_FOREST: WeightedDecisionForest,
}

DEFAULT_FOREST_DEPTH = 8

# Percent reported when each stage begins
STAGE_PROGRESS = {
    'validating': 0.0,
    'splitting': 5.0,
    'extracting_features': 10.0,
    'training': 15.0,
    'evaluating': 90.0,
    'completed': 100.0,
}


@dataclass(frozen=True)
class Prediction:
    """Scored transaction."""
    is_fraud: bool
    risk_score: int
    confidence: float
    risk_tier: str
    explanation: List[str]
    sub_scores: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FraudModel:
    """
    Fitted feature extractor, detectors and aggregator.

    Treat instances as immutable: retraining creates a new model.
    """

    def __init__(self,
                 extractor: FeatureExtractor,
                 feature_names: Sequence[str],
                 detectors: Mapping[str, BaseDetector],
                 aggregator: Union[WeightedBlendAggregator, SingleModelAggregator],
                 config: Optional[TrainingConfig] = None):
        self.extractor = extractor
        self.feature_names = list(feature_names)
        self.detectors = dict(detectors)
        self.aggregator = aggregator
        self.config = config or TrainingConfig()

    @property
    def model_kind(self) -> str:
        return self.config.model_kind

    @property
    def threshold(self) -> float:
        return self.aggregator.threshold

    def _matrix(self, records: Sequence[Mapping[str, Any]]):
        feature_maps = self.extractor.transform_many(records)
        return feature_maps, to_matrix(feature_maps, self.feature_names)

    def sub_scores_many(self, records: Sequence[Mapping[str, Any]]) -> Dict[str, np.ndarray]:
        _, X = self._matrix(records)
        return {kind: detector.score_samples(X) for kind, detector in self.detectors.items()}

    def score_many(self, records: Sequence[Mapping[str, Any]]) -> np.ndarray:
        """Combined fraud score in [0, 1] per record."""
        if not records:
            return np.empty(0)
        return self.aggregator.combine_many(self.sub_scores_many(records))

    def predict(self, record: Mapping[str, Any]) -> Prediction:
        return self.predict_many([record])[0]

    def predict_many(self, records: Sequence[Mapping[str, Any]]) -> List[Prediction]:
        if not records:
            return []

        feature_maps, X = self._matrix(records)
        sub_scores = {kind: detector.score_samples(X) for kind, detector in self.detectors.items()}
        scores = self.aggregator.combine_many(sub_scores)

        predictions = []
        for i, fmap in enumerate(feature_maps):
            score = float(scores[i])
            flagged = score > self.threshold
            record_scores = {kind: float(values[i]) for kind, values in sub_scores.items()}
            predictions.append(Prediction(
                is_fraud=flagged,
                risk_score=int(round(score * 100)),
                confidence=score if flagged else 1.0 - score,
                risk_tier=risk_tier(score),
                explanation=explain(fmap, record_scores, flagged),
                sub_scores=record_scores,
            ))
        return predictions

    def score_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """Copy of ``df`` with ``fraud_score``, ``risk_score``, ``is_fraud`` and ``risk_tier`` columns."""
        result = df.copy()
        scores = self.score_many(as_records(df))
        result['fraud_score'] = scores
        result['risk_score'] = np.round(scores * 100).astype(int)
        result['is_fraud'] = scores > self.threshold
        result['risk_tier'] = [risk_tier(s) for s in scores]
        return result

    def evaluate(self, records: Sequence[Mapping[str, Any]]) -> EvaluationReport:
        """
        Evaluate on every record in ``records``.

        A record without a ``Class`` counts as legitimate, so the confusion
        matrix always covers all of ``records``; at least one must be labelled.
        """
        if not any(has_label(r) for r in records):
            raise InvalidInput("Evaluation requires records with a Class label")
        return self._evaluate(records)

    def _evaluate(self, records: Sequence[Mapping[str, Any]]) -> EvaluationReport:
        y_true = extract_labels(records, missing_as_legitimate=True)
        y_pred = (self.score_many(records) > self.threshold).astype(int)
        amounts = np.array([get_amount(r) for r in records])
        return evaluate(y_true, y_pred, amounts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'config': self.config.to_dict(),
            'extractor': self.extractor.to_dict(),
            'feature_names': self.feature_names,
            'detectors': {kind: detector.to_dict() for kind, detector in self.detectors.items()},
            'aggregator': self.aggregator.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FraudModel':
        detectors = {
            kind: DETECTOR_CLASSES[kind].from_dict(detector_data)
            for kind, detector_data in data['detectors'].items()
        }
        return cls(
            extractor=FeatureExtractor.from_dict(data['extractor']),
            feature_names=data['feature_names'],
            detectors=detectors,
            aggregator=aggregator_from_dict(data['aggregator']),
            config=TrainingConfig.from_dict(data['config']),
        )


@dataclass
class TrainingResult:
    """Outcome of one training run."""
    model: FraudModel
    metrics: Optional[EvaluationReport]
    metadata: Dict[str, Any] = field(default_factory=dict)


def _member_kinds(config: TrainingConfig) -> List[str]:
    if config.model_kind == BLEND:
        unknown = [k for k in config.blend_weights if k not in DETECTOR_CLASSES]
        if unknown:
            raise InvalidInput(f"Unknown blend members: {unknown}")
        return list(config.blend_weights)
    return [config.model_kind]


def build_detector(kind: str, config: TrainingConfig, threshold: float,
                   random_state: RandomState = None) -> BaseDetector:
    """Instantiate an unfitted detector of ``kind`` from the config."""
    if kind == ISOLATION_FOREST:
        return IsolationForestDetector(
            n_estimators=config.n_estimators,
            max_samples=config.max_samples,
            max_depth=config.max_depth,
            threshold=threshold,
            n_jobs=config.n_jobs,
            random_state=random_state
        )
    if kind == LOCAL_OUTLIER:
        return LocalOutlierDetector(n_neighbors=config.n_neighbors, threshold=threshold)
    if kind == ONE_CLASS:
        return OneClassBoundaryDetector(nu=config.nu, max_support=config.max_support,
                                        threshold=threshold)
    if kind == DECISION_FOREST:
        return WeightedDecisionForest(
            n_estimators=config.n_estimators,
            max_depth=config.max_depth if config.max_depth is not None else DEFAULT_FOREST_DEPTH,
            class_weight=config.class_weight,
            min_samples_leaf=config.min_samples_leaf,
            threshold=threshold,
            n_jobs=config.n_jobs,
            random_state=random_state
        )
    raise InvalidInput(f"Unknown model kind: {kind!r}")


def train(dataset: Dataset,
          config: Optional[TrainingConfig] = None,
          random_state: RandomState = None,
          progress_callback: Optional[StageCallback] = None) -> TrainingResult:
    """
    Train a fraud model and evaluate it on a held-out split.

    Args:
        dataset: Records or DataFrame; every record needs an Amount, and a
            0/1 Class when a supervised model is trained
        config: Training configuration (defaults to an isolation forest)
        random_state: Seed or Generator for the split and the models
        progress_callback: Called as ``callback(stage, percent)``; raising
            from it aborts training

    Returns:
        TrainingResult with the model, test metrics over the whole test
        split (None when the dataset has no labels or the split is empty)
        and run metadata
    """
    config = (config or TrainingConfig()).validate()
    kinds = _member_kinds(config)

    def report(stage: str, percent: Optional[float] = None) -> None:
        if progress_callback is not None:
            progress_callback(stage, STAGE_PROGRESS[stage] if percent is None else percent)

    started = time.time()
    report('validating')
    records = as_records(dataset)
    supervised = DECISION_FOREST in kinds
    validate_dataset(records, require_label=supervised)

    logger.info(f"Training {config.model_kind} model on {len(records)} transactions")

    report('splitting')
    rng = check_random_state(random_state)
    train_records, test_records = train_test_split(records, config.test_split, random_state=rng)
    if not train_records:
        raise InvalidInput("Training split is empty")

    report('extracting_features')
    extractor = FeatureExtractor().update_statistics(train_records)
    feature_maps = extractor.transform_many(train_records)
    feature_names = feature_names_of(feature_maps)
    X_train = to_matrix(feature_maps, feature_names)
    y_train = extract_labels(train_records) if supervised else None

    report('training')
    if config.model_kind == BLEND:
        aggregator = WeightedBlendAggregator(config.blend_weights, threshold=config.effective_threshold)
    else:
        aggregator = SingleModelAggregator(config.model_kind, threshold=config.effective_threshold)

    start, end = STAGE_PROGRESS['training'], STAGE_PROGRESS['evaluating']
    span = (end - start) / len(kinds)
    detectors = {}
    for i, kind in enumerate(kinds):
        threshold = config.effective_threshold if len(kinds) == 1 else DEFAULT_THRESHOLDS[kind]
        detector = build_detector(kind, config, threshold, random_state=rng)
        offset = start + i * span

        def on_tree(done: int, total: int, offset: float = offset) -> None:
            report('training', offset + span * done / max(total, 1))

        detector.fit(X_train, y_train, progress_callback=on_tree)
        detectors[kind] = detector
        report('training', offset + span)

    model = FraudModel(extractor, feature_names, detectors, aggregator, config)

    report('evaluating')
    # Unlabelled test records count as legitimate, as in FraudModel.evaluate
    labelled = any(has_label(r) for r in records)
    metrics = model._evaluate(test_records) if labelled and test_records else None

    metadata = {
        'model_kind': config.model_kind,
        'config': config.to_dict(),
        'n_train': len(train_records),
        'n_test': len(test_records),
        'n_features': len(feature_names),
        'feature_names': feature_names,
        'fraud_rate': fraud_rate(records),
        'trained_at': datetime.now(timezone.utc).isoformat(),
        'training_seconds': time.time() - started,
    }

    if metrics is not None:
        logger.info(f"Trained {config.model_kind} in {metadata['training_seconds']:.2f}s: "
                    f"accuracy={metrics.accuracy:.4f} precision={metrics.precision:.4f} "
                    f"recall={metrics.recall:.4f} f1={metrics.f1_score:.4f}")
    else:
        logger.info(f"Trained {config.model_kind} in {metadata['training_seconds']:.2f}s "
                    f"(no labelled data or empty test split)")

    report('completed')
    return TrainingResult(model=model, metrics=metrics, metadata=metadata)


def predict(record: Mapping[str, Any], model: Optional[FraudModel]) -> Prediction:
    """Score one transaction; ``ModelNotTrained`` when no model exists yet."""
    if model is None:
        raise ModelNotTrained("No trained model available; train a model first")
    return model.predict(record)
