"""
Basic usage example for FraudEnsemble library.

This example demonstrates:
1. Creating synthetic card transactions
2. Training an unsupervised blend and a supervised decision forest
3. Scoring single transactions with explanations
4. Saving, loading and serving the active model
5. Rule-based behavioral scoring
"""

import tempfile

import numpy as np
import pandas as pd

from fraudensemble import (
    TrainingConfig,
    ModelStore,
    ModelRegistry,
    TrainingJob,
    RuleBasedScorer,
    train,
    predict
)


def create_synthetic_transactions(n_samples=3000, fraud_rate=0.01, random_state=42):
    """Create a card-fraud style dataset (Time, V1..V4, Amount, Class)."""
    rng = np.random.default_rng(random_state)
    n_fraud = int(n_samples * fraud_rate)
    n_legit = n_samples - n_fraud

    legit = pd.DataFrame(rng.normal(0, 1, (n_legit, 4)), columns=['V1', 'V2', 'V3', 'V4'])
    legit['Amount'] = rng.lognormal(4, 1, n_legit)
    legit['Class'] = 0

    fraud = pd.DataFrame(rng.normal(-3, 1.5, (n_fraud, 4)), columns=['V1', 'V2', 'V3', 'V4'])
    fraud['Amount'] = rng.lognormal(4, 1, n_fraud) * rng.uniform(3, 8, n_fraud)
    fraud['Class'] = 1

    df = pd.concat([legit, fraud], ignore_index=True)
    df['Time'] = rng.uniform(0, 172800, len(df))
    return df.sample(frac=1.0, random_state=random_state).reset_index(drop=True)


def print_metrics(name, result):
    metrics = result.metrics
    print(f"\n   {name}:")
    print(f"     Accuracy:  {metrics.accuracy:.4f}")
    print(f"     Precision: {metrics.precision:.4f}")
    print(f"     Recall:    {metrics.recall:.4f}")
    print(f"     F1-Score:  {metrics.f1_score:.4f}")
    print(f"     Value Detection Rate: {metrics.value_detection_rate:.4f}")
    print(f"     Net Savings: ${metrics.net_savings:,.2f}")


def demonstrate_training(df):
    print("=" * 60)
    print("FRAUDENSEMBLE TRAINING EXAMPLE")
    print("=" * 60)

    print(f"1. Dataset: {len(df)} transactions, fraud rate {df['Class'].mean():.2%}")

    print("\n2. Training models...")
    blend = train(df, TrainingConfig(model_kind='blend', n_estimators=100), random_state=42)
    forest = train(
        df,
        TrainingConfig(model_kind='decision_forest', n_estimators=50, max_depth=6, n_jobs=-1),
        random_state=42,
        progress_callback=lambda stage, percent: print(f"     [{percent:5.1f}%] {stage}")
    )

    print_metrics("Unsupervised blend", blend)
    print_metrics("Weighted decision forest", forest)

    importances = forest.model.detectors['decision_forest'].feature_importances_
    print("\n3. Decision forest feature importances:")
    for idx in np.argsort(importances)[::-1]:
        print(f"     {forest.model.feature_names[idx]}: {importances[idx]:.4f}")

    return forest


def demonstrate_prediction(model):
    print("\n" + "=" * 60)
    print("SCORING TRANSACTIONS")
    print("=" * 60)

    transactions = [
        {'Time': 5000.0, 'V1': 0.1, 'V2': -0.3, 'V3': 0.5, 'V4': 0.2, 'Amount': 42.0},
        {'Time': 9000.0, 'V1': -3.5, 'V2': -2.8, 'V3': -3.1, 'V4': -4.0, 'Amount': 880.0},
    ]
    for transaction in transactions:
        prediction = predict(transaction, model)
        print(f"\n   Amount ${transaction['Amount']:,.2f}:")
        print(f"     Fraud: {prediction.is_fraud}  risk {prediction.risk_score}/100 "
              f"({prediction.risk_tier}), confidence {prediction.confidence:.2f}")
        for reason in prediction.explanation:
            print(f"     - {reason}")


def demonstrate_serving(df, result):
    print("\n" + "=" * 60)
    print("PERSISTENCE AND BACKGROUND RETRAINING")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as root:
        store = ModelStore(root)
        model_id = store.save(result.model, result.metadata)
        print(f"   Saved {model_id}; stored models: {len(store.list_models())}")

        registry = ModelRegistry()
        registry.activate(store.get_active())

        job = TrainingJob(df, TrainingConfig(n_estimators=100), registry, random_state=7).start()
        job.wait()
        status = job.status()
        print(f"   Retraining {status.state}; active model is now {registry.current().model_kind}")


def demonstrate_rules():
    print("\n" + "=" * 60)
    print("RULE-BASED BEHAVIORAL SCORING")
    print("=" * 60)

    scorer = RuleBasedScorer()
    for hour in (10, 12, 14, 16):
        scorer.observe({'userId': 'user_42', 'amount': 60.0, 'merchant': 'Starbucks',
                        'location': 'Seattle, WA', 'timestamp': f'2024-05-01T{hour}:00:00Z'})

    result = scorer.observe({'userId': 'user_42', 'amount': 4200.0, 'merchant': 'Crypto Exchange',
                             'location': 'International - Lagos', 'deviceRisk': 'high',
                             'timestamp': '2024-05-02T03:15:00Z', 'velocity': 5})
    print(f"   Risk {result.risk_score:.1f} -> {result.status}")
    for factor in result.risk_factors:
        print(f"     - {factor}")


if __name__ == "__main__":
    df = create_synthetic_transactions()
    forest = demonstrate_training(df)
    demonstrate_prediction(forest.model)
    demonstrate_serving(df, forest)
    demonstrate_rules()
