"""
Dataset ingestion, validation and train/test splitting.

Records are plain mappings. CSV exports of the usual card-fraud layout
(``Time, V1..V28, Amount, Class``) load directly, as do lists of live
transaction dicts (``amount, timestamp, merchant, location, ...``).
"""

import math
from numbers import Number
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from loguru import logger

from ._random import RandomState, check_random_state
from .exceptions import InvalidInput

LABEL_COLUMN = 'Class'
AMOUNT_KEYS = ('Amount', 'amount')

Record = Mapping[str, Any]
Dataset = Union[Sequence[Record], pd.DataFrame]


def load_transactions(path: str, require_label: bool = True) -> List[Dict[str, Any]]:
    """
    Read a CSV file of transactions and validate it.

    Args:
        path: CSV file path
        require_label: Whether a ``Class`` column is mandatory

    Returns:
        List of record dicts
    """
    try:
        df = pd.read_csv(path)
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise InvalidInput(f"Failed to parse CSV file {path}: {e}") from e

    records = as_records(df)
    validate_dataset(records, require_label=require_label)

    if LABEL_COLUMN in df.columns:
        n_fraud = sum(parse_label(r[LABEL_COLUMN]) for r in records)
        logger.info(f"Loaded {len(records)} transactions from {path} "
                    f"({n_fraud} fraud, {n_fraud / len(records):.2%})")
    else:
        logger.info(f"Loaded {len(records)} unlabelled transactions from {path}")

    return records


def as_records(dataset: Dataset) -> List[Dict[str, Any]]:
    """Normalise a DataFrame or a sequence of mappings into a list of dicts."""
    if isinstance(dataset, pd.DataFrame):
        return dataset.to_dict('records')
    if dataset is None:
        raise InvalidInput("Dataset is missing")
    return [dict(record) for record in dataset]


def parse_label(value: Any) -> int:
    """Accept 0/1 labels as numbers or numeric strings."""
    if isinstance(value, str):
        value = value.strip()
        if value in ('0', '1'):
            return int(value)
        raise InvalidInput(f"Class must be 0 or 1, got {value!r}")
    if isinstance(value, Number) and not isinstance(value, bool) and value in (0, 1):
        return int(value)
    raise InvalidInput(f"Class must be 0 or 1, got {value!r}")


def has_label(record: Record) -> bool:
    value = record.get(LABEL_COLUMN)
    if value is None:
        return False
    return not (isinstance(value, float) and math.isnan(value))


def get_amount(record: Record) -> float:
    """Return the transaction amount, raising InvalidInput when absent or malformed."""
    for key in AMOUNT_KEYS:
        if key in record:
            return to_float(record[key], key)
    raise InvalidInput("Transaction is missing the Amount field")


def to_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise InvalidInput(f"Field {name!r} must be numeric, got {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Field {name!r} must be numeric, got {value!r}") from e
    if math.isnan(result):
        raise InvalidInput(f"Field {name!r} is missing a value")
    return result


def validate_dataset(records: Sequence[Record], require_label: bool = False) -> None:
    """
    Check that a dataset is usable for training.

    Every record needs an amount and any ``Class`` present must be 0/1; when
    ``require_label`` is set every record also needs a ``Class``.
    """
    if not records:
        raise InvalidInput("Invalid or empty dataset")

    for i, record in enumerate(records):
        try:
            get_amount(record)
            if has_label(record):
                parse_label(record[LABEL_COLUMN])
            elif require_label:
                raise InvalidInput("Dataset must contain a Class column for supervised training")
        except InvalidInput as e:
            raise InvalidInput(f"Record {i}: {e}") from e


def extract_labels(records: Sequence[Record], missing_as_legitimate: bool = False) -> np.ndarray:
    """0/1 label array; unlabelled records raise unless counted as legitimate."""
    if missing_as_legitimate:
        return np.array([parse_label(r[LABEL_COLUMN]) if has_label(r) else 0 for r in records],
                        dtype=np.int32)
    return np.array([parse_label(r[LABEL_COLUMN]) for r in records], dtype=np.int32)


def train_test_split(records: Sequence[Record], test_split: float = 0.2,
                     random_state: RandomState = None) -> Tuple[List[Record], List[Record]]:
    """
    Shuffle once and hold out ``floor(n * test_split)`` records for testing.

    Each call draws a fresh permutation, independent of earlier splits.
    """
    if not 0.0 <= test_split < 1.0:
        raise InvalidInput("test_split must be in [0, 1)")

    rng = check_random_state(random_state)
    n = len(records)
    order = rng.permutation(n)
    n_test = int(math.floor(n * test_split))

    test = [records[i] for i in order[:n_test]]
    train = [records[i] for i in order[n_test:]]
    return train, test


def fraud_rate(records: Sequence[Record]) -> Optional[float]:
    labelled = [r for r in records if has_label(r)]
    if not labelled:
        return None
    return float(np.mean(extract_labels(labelled)))
