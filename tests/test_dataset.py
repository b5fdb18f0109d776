"""
Test dataset ingestion, validation and splitting.
"""

import numpy as np
import pandas as pd
import pytest

import sys
sys.path.append('../')

from fraudensemble.dataset import (
    load_transactions,
    parse_label,
    validate_dataset,
    train_test_split,
    extract_labels,
    fraud_rate,
    as_records
)
from fraudensemble.exceptions import InvalidInput


class TestLabels:

    def test_numeric_and_string_labels(self):
        assert parse_label(0) == 0
        assert parse_label(1) == 1
        assert parse_label('1') == 1
        assert parse_label(' 0 ') == 0
        assert parse_label(1.0) == 1

    def test_invalid_labels(self):
        for value in (2, '2', 'yes', True, None):
            with pytest.raises(InvalidInput):
                parse_label(value)

    def test_extract_labels(self):
        records = [{'Class': '1'}, {'Class': 0}, {'Class': 1}]
        np.testing.assert_array_equal(extract_labels(records), [1, 0, 1])

    def test_extract_labels_missing_as_legitimate(self):
        records = [{'Class': '1'}, {'Amount': 5.0}, {'Class': float('nan')}]
        np.testing.assert_array_equal(extract_labels(records, missing_as_legitimate=True), [1, 0, 0])


class TestValidation:

    def test_empty_dataset(self):
        with pytest.raises(InvalidInput):
            validate_dataset([])

    def test_missing_amount(self):
        with pytest.raises(InvalidInput):
            validate_dataset([{'Amount': 10.0}, {'Time': 5}])

    def test_malformed_amount(self):
        with pytest.raises(InvalidInput):
            validate_dataset([{'Amount': 'ten'}])

    def test_label_required_for_supervised(self):
        validate_dataset([{'Amount': 10.0}])

        with pytest.raises(InvalidInput):
            validate_dataset([{'Amount': 10.0}], require_label=True)
        with pytest.raises(InvalidInput):
            validate_dataset([{'Amount': 10.0, 'Class': 'x'}], require_label=True)

    def test_present_labels_checked_without_requirement(self):
        validate_dataset([{'Amount': 10.0, 'Class': 1}, {'Amount': 12.0}])

        with pytest.raises(InvalidInput):
            validate_dataset([{'Amount': 10.0, 'Class': 0}, {'Amount': 12.0, 'Class': 'abc'}])

    def test_lowercase_amount_accepted(self):
        validate_dataset([{'amount': 10.0, 'Class': '0'}], require_label=True)


class TestSplit:

    def test_split_sizes(self):
        records = [{'Amount': float(i)} for i in range(103)]
        train, test = train_test_split(records, 0.2, random_state=0)

        assert len(test) == 20
        assert len(train) == 83

        amounts = sorted(r['Amount'] for r in train + test)
        assert amounts == [float(i) for i in range(103)]

    def test_seeded_split_is_reproducible(self):
        records = [{'Amount': float(i)} for i in range(50)]

        assert train_test_split(records, 0.3, random_state=5) == train_test_split(records, 0.3, random_state=5)

    def test_zero_test_fraction(self):
        records = [{'Amount': 1.0}] * 4
        train, test = train_test_split(records, 0.0, random_state=0)

        assert len(train) == 4
        assert test == []

    def test_invalid_fraction(self):
        with pytest.raises(InvalidInput):
            train_test_split([{'Amount': 1.0}], 1.5)


class TestLoading:

    def test_load_csv(self, tmp_path):
        path = tmp_path / 'transactions.csv'
        pd.DataFrame({
            'Time': [0, 1, 2, 3],
            'V1': [-1.3, 1.1, -0.2, 0.4],
            'Amount': [149.62, 2.69, 378.66, 123.50],
            'Class': [0, 0, 1, 0],
        }).to_csv(path, index=False)

        records = load_transactions(str(path))

        assert len(records) == 4
        assert fraud_rate(records) == 0.25

    def test_load_csv_without_label(self, tmp_path):
        path = tmp_path / 'unlabelled.csv'
        pd.DataFrame({'Amount': [1.0, 2.0]}).to_csv(path, index=False)

        with pytest.raises(InvalidInput):
            load_transactions(str(path))
        assert len(load_transactions(str(path), require_label=False)) == 2

    def test_empty_csv(self, tmp_path):
        path = tmp_path / 'empty.csv'
        path.write_text('')

        with pytest.raises(InvalidInput):
            load_transactions(str(path))

    def test_dataframe_records(self):
        records = as_records(pd.DataFrame({'Amount': [1.0, 2.0], 'Class': [0, 1]}))
        assert records == [{'Amount': 1.0, 'Class': 0}, {'Amount': 2.0, 'Class': 1}]
