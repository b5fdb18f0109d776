"""
Active-model registry and background training jobs.

Predictions always read a complete model: the registry swaps its reference
under a lock and a training job only publishes after training succeeded.
"""

import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from ._random import RandomState
from .config import TrainingConfig
from .dataset import Dataset
from .exceptions import ModelNotTrained, TrainingCancelled
from .pipeline import FraudModel, Prediction, TrainingResult, train


class ModelRegistry:
    """Holds the active model and a bounded history of superseded ones."""

    def __init__(self, max_history: int = 5):
        self._lock = threading.Lock()
        self._model: Optional[FraudModel] = None
        self._metadata: Dict[str, Any] = {}
        self._history: Deque[Tuple[FraudModel, Dict[str, Any]]] = deque(maxlen=max_history)

    @property
    def has_model(self) -> bool:
        with self._lock:
            return self._model is not None

    def activate(self, model: FraudModel, metadata: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            if self._model is not None:
                self._history.append((self._model, self._metadata))
            self._model = model
            self._metadata = dict(metadata or {})
        logger.info(f"Activated {model.model_kind} model")

    def current(self) -> FraudModel:
        with self._lock:
            model = self._model
        if model is None:
            raise ModelNotTrained("No trained model available; train a model first")
        return model

    def metadata(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._metadata)

    def history(self) -> List[Dict[str, Any]]:
        """Metadata of superseded models, oldest first."""
        with self._lock:
            return [dict(metadata) for _, metadata in self._history]

    def predict(self, record: Mapping[str, Any]) -> Prediction:
        return self.current().predict(record)


@dataclass
class JobStatus:
    """Snapshot of a training job."""
    state: str
    stage: Optional[str]
    percent: float
    metrics: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


PENDING = 'pending'
RUNNING = 'running'
SUCCEEDED = 'succeeded'
FAILED = 'failed'
CANCELLED = 'cancelled'


class TrainingJob:
    """
    Runs ``train`` on a background thread.

    The registry is updated only when training succeeds; a failed or
    cancelled run leaves the previously active model in place.
    """

    def __init__(self,
                 dataset: Dataset,
                 config: Optional[TrainingConfig] = None,
                 registry: Optional[ModelRegistry] = None,
                 random_state: RandomState = None):
        self.dataset = dataset
        self.config = config
        self.registry = registry
        self.random_state = random_state

        self.result: Optional[TrainingResult] = None
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._state = PENDING
        self._stage: Optional[str] = None
        self._percent = 0.0
        self._error: Optional[str] = None
        self._thread = threading.Thread(target=self._run, name='fraudensemble-training', daemon=True)

    def start(self) -> 'TrainingJob':
        with self._lock:
            self._state = RUNNING
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next tree boundary."""
        self._cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job ends; False if ``timeout`` expired first."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def status(self) -> JobStatus:
        with self._lock:
            metrics = None
            if self.result is not None and self.result.metrics is not None:
                metrics = self.result.metrics.to_dict()
            return JobStatus(self._state, self._stage, self._percent, metrics, self._error)

    def _on_progress(self, stage: str, percent: float) -> None:
        if self._cancel_event.is_set():
            raise TrainingCancelled("Training cancelled")
        with self._lock:
            self._stage = stage
            self._percent = percent

    def _run(self) -> None:
        try:
            result = train(self.dataset, self.config, random_state=self.random_state,
                           progress_callback=self._on_progress)
        except TrainingCancelled:
            logger.info("Training job cancelled")
            with self._lock:
                self._state = CANCELLED
            return
        except Exception as e:
            logger.exception(f"Training job failed: {e}")
            with self._lock:
                self._state = FAILED
                self._error = str(e)
            return

        if self.registry is not None:
            self.registry.activate(result.model, result.metadata)
        with self._lock:
            self.result = result
            self._state = SUCCEEDED
