"""
Test file-backed model persistence.
"""

import json

import numpy as np
import pandas as pd
import pytest

import sys
sys.path.append('../')

from fraudensemble.config import TrainingConfig
from fraudensemble.exceptions import DatasetNotFound, InvalidInput, ModelNotFound, ModelNotTrained
from fraudensemble.pipeline import train
from fraudensemble.storage import ModelStore


@pytest.fixture
def records():
    np.random.seed(7)
    data = [{'Amount': float(a), 'V1': float(v), 'Class': 0}
            for a, v in zip(np.random.normal(80, 10, 120), np.random.normal(0, 1, 120))]
    data += [{'Amount': 3000.0 + i, 'V1': -5.0, 'Class': 1} for i in range(6)]
    return data


@pytest.fixture
def trained(records):
    return train(records, TrainingConfig(model_kind='decision_forest', n_estimators=5), random_state=0)


class TestModelStore:

    def test_save_and_load(self, tmp_path, trained, records):
        store = ModelStore(str(tmp_path))
        model_id = store.save(trained.model, trained.metadata)

        assert model_id.startswith('model_')
        loaded = store.load(model_id)

        np.testing.assert_allclose(loaded.score_many(records), trained.model.score_many(records))
        assert loaded.predict(records[-1]) == trained.model.predict(records[-1])

    def test_metadata(self, tmp_path, trained):
        store = ModelStore(str(tmp_path))
        model_id = store.save(trained.model, {'accuracy': 0.99})

        metadata = store.load_metadata(model_id)
        assert metadata['accuracy'] == 0.99
        assert 'saved_at' in metadata

    def test_list_and_delete(self, tmp_path, trained):
        store = ModelStore(str(tmp_path))
        first = store.save(trained.model)
        second = store.save(trained.model)

        assert {m['id'] for m in store.list_models()} == {first, second}

        store.delete(first)
        assert [m['id'] for m in store.list_models()] == [second]

        with pytest.raises(ModelNotFound):
            store.load(first)
        with pytest.raises(ModelNotFound):
            store.delete(first)

    def test_active_model(self, tmp_path, trained):
        store = ModelStore(str(tmp_path))

        with pytest.raises(ModelNotTrained):
            store.get_active()

        first = store.save(trained.model)
        assert store.active_id() == first

        second = store.save(trained.model, activate=False)
        assert store.active_id() == first

        store.set_active(second)
        assert store.active_id() == second

        store.delete(second)
        assert store.active_id() is None

    def test_unknown_ids(self, tmp_path):
        store = ModelStore(str(tmp_path))

        with pytest.raises(ModelNotFound):
            store.load('model_doesnotexist')
        with pytest.raises(ModelNotFound):
            store.set_active('model_doesnotexist')
        with pytest.raises(ModelNotFound):
            store.load('../escape')

    def test_export_and_import(self, tmp_path, trained, records):
        source = ModelStore(str(tmp_path / 'source'))
        model_id = source.save(trained.model, {'accuracy': 0.95})
        path = str(tmp_path / 'fraud_model.json')

        source.export_model(model_id, path)
        with open(path) as f:
            assert json.load(f)['id'] == model_id

        target = ModelStore(str(tmp_path / 'target'))
        imported = target.import_model(path)

        assert imported != model_id
        assert target.active_id() is None
        metadata = target.load_metadata(imported)
        assert metadata['accuracy'] == 0.95
        assert metadata['imported_from'] == model_id
        np.testing.assert_allclose(target.load(imported).score_many(records),
                                   trained.model.score_many(records))

    def test_import_rejects_malformed_file(self, tmp_path):
        store = ModelStore(str(tmp_path / 'store'))
        path = tmp_path / 'broken.json'
        path.write_text('{"id": "model_x", "metadata": {}}')

        with pytest.raises(InvalidInput):
            store.import_model(str(path))
        assert store.list_models() == []

        with pytest.raises(ModelNotFound):
            store.export_model('model_doesnotexist', str(tmp_path / 'out.json'))


class TestDatasetStore:

    def test_save_and_load_records(self, tmp_path, records):
        store = ModelStore(str(tmp_path))
        dataset_id = store.save_dataset(records, {'source': 'synthetic'})

        assert dataset_id.startswith('dataset_')
        assert store.load_dataset(dataset_id) == records

        metadata = store.load_dataset_metadata(dataset_id)
        assert metadata['n_records'] == len(records)
        assert metadata['source'] == 'synthetic'

        # Datasets are not listed as models
        assert store.list_models() == []

    def test_save_dataframe(self, tmp_path):
        store = ModelStore(str(tmp_path))
        df = pd.DataFrame({'Amount': [10.0, 25.5], 'Class': [0, 1]})

        loaded = store.load_dataset(store.save_dataset(df))
        assert loaded == [{'Amount': 10.0, 'Class': 0}, {'Amount': 25.5, 'Class': 1}]

    def test_unknown_dataset(self, tmp_path):
        store = ModelStore(str(tmp_path))

        with pytest.raises(DatasetNotFound):
            store.load_dataset('dataset_doesnotexist')
        with pytest.raises(DatasetNotFound):
            store.load_dataset('model_abc')
