"""
File-backed model and dataset persistence.

Each saved model is one JSON file ``model_<hex>.json`` holding the model's
parameter tree and its metadata. The id of the active model lives in
``active_model.json`` next to them. Datasets are kept the same way as
``dataset_<hex>.json``.
"""

import json
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from .dataset import Dataset, as_records
from .exceptions import DatasetNotFound, InvalidInput, ModelNotFound, ModelNotTrained
from .pipeline import FraudModel

ACTIVE_MODEL_FILE = 'active_model.json'
MODEL_PREFIX = 'model_'
DATASET_PREFIX = 'dataset_'


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ModelStore:
    """Save, load, list and delete models and datasets under a directory."""

    def __init__(self, root: str = 'saved_models'):
        self.root = root
        os.makedirs(root, exist_ok=True)

    def _path(self, item_id: str, prefix: str = MODEL_PREFIX) -> str:
        not_found = DatasetNotFound if prefix == DATASET_PREFIX else ModelNotFound
        if not item_id.startswith(prefix) or os.sep in item_id:
            raise not_found(item_id)
        return os.path.join(self.root, f"{item_id}.json")

    def _write_json(self, path: str, payload: Dict[str, Any]) -> None:
        # Write then rename so readers never see a partial file
        tmp_path = f"{path}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump(payload, f, default=str)
        os.replace(tmp_path, path)

    def _read(self, model_id: str) -> Dict[str, Any]:
        path = self._path(model_id)
        if not os.path.exists(path):
            raise ModelNotFound(model_id)
        with open(path, 'r') as f:
            return json.load(f)

    def _store_payload(self, model: Dict[str, Any], metadata: Dict[str, Any],
                       activate: bool) -> str:
        model_id = f"{MODEL_PREFIX}{uuid.uuid4().hex}"
        payload = {'id': model_id, 'model': model, 'metadata': metadata}
        self._write_json(self._path(model_id), payload)
        if activate:
            self.set_active(model_id)
        return model_id

    def save(self, model: FraudModel, metadata: Optional[Dict[str, Any]] = None,
             activate: bool = True) -> str:
        """
        Persist a model and return its id.

        Args:
            model: Trained model
            metadata: JSON-serialisable run information (metrics, config, ...)
            activate: Also mark the saved model as active

        Returns:
            Model id
        """
        model_id = self._store_payload(model.to_dict(), {**(metadata or {}), 'saved_at': _now()},
                                       activate)
        logger.info(f"Saved model {model_id} to {self.root}")
        return model_id

    def load(self, model_id: str) -> FraudModel:
        model = FraudModel.from_dict(self._read(model_id)['model'])
        logger.info(f"Loaded model {model_id}")
        return model

    def load_metadata(self, model_id: str) -> Dict[str, Any]:
        return self._read(model_id)['metadata']

    def list_models(self) -> List[Dict[str, Any]]:
        """Ids and metadata of every stored model, oldest first."""
        models = []
        for name in os.listdir(self.root):
            if name.startswith(MODEL_PREFIX) and name.endswith('.json'):
                model_id = name[:-len('.json')]
                models.append({'id': model_id, 'metadata': self.load_metadata(model_id)})
        models.sort(key=lambda m: m['metadata'].get('saved_at', ''))
        return models

    def delete(self, model_id: str) -> None:
        path = self._path(model_id)
        if not os.path.exists(path):
            raise ModelNotFound(model_id)
        os.remove(path)
        if self.active_id() == model_id:
            os.remove(os.path.join(self.root, ACTIVE_MODEL_FILE))
        logger.info(f"Deleted model {model_id}")

    def export_model(self, model_id: str, path: str) -> str:
        """Write a stored model with its metadata to ``path`` as indented JSON."""
        payload = self._read(model_id)
        with open(path, 'w') as f:
            json.dump(payload, f, indent=2, default=str)
        logger.info(f"Exported model {model_id} to {path}")
        return path

    def import_model(self, path: str, activate: bool = False) -> str:
        """
        Store a model file written by ``export_model`` under a fresh id.

        The parameter tree is rebuilt before anything is written, so a
        malformed file raises ``InvalidInput`` and leaves the store unchanged.
        """
        try:
            with open(path, 'r') as f:
                payload = json.load(f)
            FraudModel.from_dict(payload['model'])
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidInput(f"Not a model export: {path}") from e

        metadata = {**payload.get('metadata', {}), 'imported_from': payload.get('id'),
                    'saved_at': _now()}
        model_id = self._store_payload(payload['model'], metadata, activate)
        logger.info(f"Imported model {model_id} from {path}")
        return model_id

    def set_active(self, model_id: str) -> None:
        if not os.path.exists(self._path(model_id)):
            raise ModelNotFound(model_id)
        self._write_json(os.path.join(self.root, ACTIVE_MODEL_FILE), {'id': model_id})

    def active_id(self) -> Optional[str]:
        path = os.path.join(self.root, ACTIVE_MODEL_FILE)
        if not os.path.exists(path):
            return None
        with open(path, 'r') as f:
            return json.load(f)['id']

    def get_active(self) -> FraudModel:
        model_id = self.active_id()
        if model_id is None:
            raise ModelNotTrained("No active model set")
        return self.load(model_id)

    def save_dataset(self, dataset: Dataset, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Persist records (or a DataFrame) and return the dataset id."""
        records = as_records(dataset)
        dataset_id = f"{DATASET_PREFIX}{uuid.uuid4().hex}"
        payload = {
            'id': dataset_id,
            'records': records,
            'metadata': {**(metadata or {}), 'n_records': len(records), 'saved_at': _now()},
        }
        self._write_json(self._path(dataset_id, DATASET_PREFIX), payload)
        logger.info(f"Saved dataset {dataset_id} ({len(records)} records)")
        return dataset_id

    def _read_dataset(self, dataset_id: str) -> Dict[str, Any]:
        path = self._path(dataset_id, DATASET_PREFIX)
        if not os.path.exists(path):
            raise DatasetNotFound(dataset_id)
        with open(path, 'r') as f:
            return json.load(f)

    def load_dataset(self, dataset_id: str) -> List[Dict[str, Any]]:
        return self._read_dataset(dataset_id)['records']

    def load_dataset_metadata(self, dataset_id: str) -> Dict[str, Any]:
        return self._read_dataset(dataset_id)['metadata']
