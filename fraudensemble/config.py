"""
Training configuration.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, Union

from .exceptions import InvalidInput


ISOLATION_FOREST = 'isolation_forest'
LOCAL_OUTLIER = 'lof'
ONE_CLASS = 'one_class'
DECISION_FOREST = 'decision_forest'
BLEND = 'blend'

UNSUPERVISED_KINDS = (ISOLATION_FOREST, LOCAL_OUTLIER, ONE_CLASS)
MODEL_KINDS = UNSUPERVISED_KINDS + (DECISION_FOREST, BLEND)

DEFAULT_THRESHOLDS = {
    ISOLATION_FOREST: 0.6,
    LOCAL_OUTLIER: 0.5,
    ONE_CLASS: 0.5,
    DECISION_FOREST: 0.5,
    BLEND: 0.5,
}

DEFAULT_BLEND_WEIGHTS = {
    ISOLATION_FOREST: 0.4,
    LOCAL_OUTLIER: 0.3,
    ONE_CLASS: 0.3,
}

# camelCase keys accepted from JSON request payloads
_CAMEL_CASE_KEYS = {
    'modelKind': 'model_kind',
    'numTrees': 'n_estimators',
    'maxDepth': 'max_depth',
    'classWeight': 'class_weight',
    'subSampleSize': 'max_samples',
    'subsampleSize': 'max_samples',
    'testSplit': 'test_split',
    'testSplitFraction': 'test_split',
    'minLeafSize': 'min_samples_leaf',
    'neighbors': 'n_neighbors',
    'blendWeights': 'blend_weights',
}


@dataclass
class TrainingConfig:
    """
    Hyperparameters for one training run.

    Fields that do not apply to the selected model kind are ignored.
    A ``threshold`` of None selects the per-kind default.
    """
    model_kind: str = ISOLATION_FOREST
    n_estimators: int = 100
    max_depth: Optional[int] = None
    class_weight: Union[float, str] = 10.0
    threshold: Optional[float] = None
    max_samples: int = 256
    test_split: float = 0.2
    min_samples_leaf: int = 2
    n_neighbors: int = 5
    nu: float = 0.1
    max_support: int = 50
    blend_weights: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_BLEND_WEIGHTS))
    n_jobs: int = 1

    @property
    def effective_threshold(self) -> float:
        if self.threshold is not None:
            return float(self.threshold)
        return DEFAULT_THRESHOLDS[self.model_kind]

    @property
    def is_supervised(self) -> bool:
        return self.model_kind == DECISION_FOREST

    def validate(self) -> 'TrainingConfig':
        """Raise InvalidInput on out-of-range values; returns self."""
        if self.model_kind not in MODEL_KINDS:
            raise InvalidInput(f"Unknown model kind: {self.model_kind!r}")
        if self.n_estimators < 0:
            raise InvalidInput("n_estimators must be non-negative")
        if self.max_depth is not None and self.max_depth < 0:
            raise InvalidInput("max_depth must be non-negative")
        if not 0.0 <= self.test_split < 1.0:
            raise InvalidInput("test_split must be in [0, 1)")
        if self.max_samples < 1:
            raise InvalidInput("max_samples must be at least 1")
        if self.min_samples_leaf < 1:
            raise InvalidInput("min_samples_leaf must be at least 1")
        if self.n_neighbors < 1:
            raise InvalidInput("n_neighbors must be at least 1")
        if not 0.0 <= self.nu <= 1.0:
            raise InvalidInput("nu must be in [0, 1]")
        if self.threshold is not None and not 0.0 <= self.threshold <= 1.0:
            raise InvalidInput("threshold must be in [0, 1]")
        if isinstance(self.class_weight, str):
            if self.class_weight != 'balanced':
                raise InvalidInput(f"Unknown class weight: {self.class_weight!r}")
        elif self.class_weight <= 0:
            raise InvalidInput("class_weight must be positive")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TrainingConfig':
        """Build a config from snake_case or camelCase keys; unknown keys are rejected."""
        if not data:
            return cls()
        known = set(cls.__dataclass_fields__)
        kwargs = {}
        for key, value in data.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise InvalidInput(f"Unknown configuration key: {key!r}")
            if value is not None:
                kwargs[name] = value
        return cls(**kwargs)
