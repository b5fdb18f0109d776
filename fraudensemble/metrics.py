"""
Evaluation of binary fraud decisions.

Counts-based metrics (accuracy, precision, recall, F1) come with the
value-weighted view: catching a $10K fraud matters more than a $10 one.
"""

import warnings
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

import numpy as np
from sklearn.metrics import confusion_matrix


@dataclass
class EvaluationReport:
    """Confusion matrix and derived metrics on a test set."""
    true_positives: int
    false_positives: int
    true_negatives: int
    false_negatives: int
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    value_detection_rate: Optional[float] = None
    net_savings: Optional[float] = None

    @property
    def n_samples(self) -> int:
        return self.true_positives + self.false_positives + self.true_negatives + self.false_negatives

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _safe_ratio(numerator: float, denominator: float) -> float:
    return float(numerator) / denominator if denominator > 0 else 0.0


def confusion_counts(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, int]:
    """TP/FP/TN/FN counts; they always sum to the number of samples."""
    y_true = np.asarray(y_true, dtype=int)
    y_pred = np.asarray(y_pred, dtype=int)

    if len(y_true) != len(y_pred):
        raise ValueError("y_true and y_pred must have same length")
    if len(y_true) == 0:
        return {'true_positives': 0, 'false_positives': 0,
                'true_negatives': 0, 'false_negatives': 0}

    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return {
        'true_positives': int(tp),
        'false_positives': int(fp),
        'true_negatives': int(tn),
        'false_negatives': int(fn),
    }


def classification_metrics(tp: int, fp: int, tn: int, fn: int) -> Dict[str, float]:
    """Accuracy, precision, recall and F1; each is 0 when its denominator is 0."""
    precision = _safe_ratio(tp, tp + fp)
    recall = _safe_ratio(tp, tp + fn)
    return {
        'accuracy': _safe_ratio(tp + tn, tp + fp + tn + fn),
        'precision': precision,
        'recall': recall,
        'f1_score': _safe_ratio(2 * precision * recall, precision + recall),
    }


def value_detection_rate(y_true: np.ndarray, y_pred: np.ndarray,
                         amounts: np.ndarray) -> float:
    """
    Value Detection Rate (VDR): share of fraud value detected.

    VDR = (Sum of detected fraud amounts) / (Sum of all fraud amounts)
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    amounts = np.asarray(amounts, dtype=np.float64)

    fraud_mask = (y_true == 1)
    total_fraud_value = np.sum(amounts[fraud_mask])

    if total_fraud_value == 0:
        return 0.0

    detected_fraud_value = np.sum(amounts[fraud_mask & (y_pred == 1)])
    return float(detected_fraud_value / total_fraud_value)


def net_savings(y_true: np.ndarray, y_pred: np.ndarray, amounts: np.ndarray,
                fp_cost: float = 100.0) -> float:
    """
    Net savings = (value of detected fraud) - (false positives x fp_cost).

    Negative when review costs exceed the fraud caught.
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    amounts = np.asarray(amounts, dtype=np.float64)

    fraud_caught_value = np.sum(amounts[(y_true == 1) & (y_pred == 1)])
    investigation_cost = np.sum((y_true == 0) & (y_pred == 1)) * fp_cost

    return float(fraud_caught_value - investigation_cost)


def evaluate(y_true: np.ndarray, y_pred: np.ndarray,
             amounts: Optional[np.ndarray] = None,
             fp_cost: float = 100.0) -> EvaluationReport:
    """
    Compare predicted labels with ground truth.

    Args:
        y_true: True binary labels (0=legit, 1=fraud)
        y_pred: Predicted binary labels
        amounts: Transaction amounts, enabling the value metrics
        fp_cost: Cost per false positive for net savings

    Returns:
        EvaluationReport
    """
    y_true = np.asarray(y_true, dtype=int)
    y_pred = np.asarray(y_pred, dtype=int)

    if len(y_true) > 0 and not np.any(y_true == 1):
        warnings.warn("No fraud cases in y_true")

    counts = confusion_counts(y_true, y_pred)
    metrics = classification_metrics(counts['true_positives'], counts['false_positives'],
                                     counts['true_negatives'], counts['false_negatives'])

    report = EvaluationReport(**counts, **metrics)

    if amounts is not None and len(y_true) > 0:
        report.value_detection_rate = value_detection_rate(y_true, y_pred, amounts)
        report.net_savings = net_savings(y_true, y_pred, amounts, fp_cost)

    return report
