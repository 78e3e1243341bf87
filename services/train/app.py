"""
train service - stratified k-fold random forest per feature set

for each feature set (norm = raw percent change diffs, std = z-scored diffs):
- one fold id per symbol, stratified by direction, same assignment for both sets
- per fold: fit a random forest on the other folds, predict P(up) for the held out fold
- rows with a missing feature are left out of training and get no prediction

config from config/experiment_config.json, falls back to the defaults below
"""

import os
import json
import numpy as np
import pandas as pd
from pathlib import Path

from sklearn.ensemble import RandomForestClassifier
from sklearn.model_selection import StratifiedKFold

from libs.schemas import fold_result_schema
from services.ingest.app import MIN_YEAR
from services.features.app import DATA_FEATURES, QUARTER_MONTHS, load_feature_sets

#config
EXPERIMENT_CONFIG = Path(os.getenv("EXPERIMENT_CONFIG", "config/experiment_config.json"))
OUTPUT_DIR = Path("data/cv_results")

N_FOLDS = 15
N_TREES = 100
SEED = 42

LABEL_COLUMN = 'direction'
POSITIVE_LABEL = 'up'
THRESHOLD = 0.5

#smallest training set a forest is fit on
MIN_TRAIN_ROWS = 2

DEFAULT_CONFIG = {
    'min_year': MIN_YEAR,
    'months': list(QUARTER_MONTHS),
    'n_folds': N_FOLDS,
    'n_trees': N_TREES,
    'seed': SEED,
    'n_jobs': 1,
}


class FoldTrainingError(RuntimeError):
    """Raised when a fold has too little usable training data"""
    pass


def load_experiment_config(path=EXPERIMENT_CONFIG):
    """load experiment config json over the built in defaults"""
    config = dict(DEFAULT_CONFIG)
    path = Path(path)

    if not path.exists():
        print(f"no experiment config at {path}, using defaults")
        return config

    with open(path) as f:
        overrides = json.load(f)

    unknown = set(overrides) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValueError(f"unknown experiment config keys {sorted(unknown)} in {path}")

    config.update(overrides)
    config['months'] = [int(m) for m in config['months']]

    print(f"loaded experiment config from {path}")
    print(f"min_year {config['min_year']} months {config['months']} "
          f"folds {config['n_folds']} trees {config['n_trees']} seed {config['seed']}")

    return config


def split_features(table):
    """feature matrix and label vector from a labeled feature table"""
    X = table.drop(columns=[LABEL_COLUMN]).to_numpy(dtype=float)
    y = table[LABEL_COLUMN].to_numpy()
    return X, y


def complete_rows(X):
    """mask of rows with every feature present and finite"""
    return np.isfinite(X).all(axis=1)


def assign_folds(labels, n_folds=N_FOLDS, seed=SEED):
    """
    stratified fold id (1..n_folds) for each label

    deterministic for a given seed and label order
    """
    labels = np.asarray(labels)
    folds = np.zeros(len(labels), dtype=int)

    skf = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed)
    for fold, (_, test_idx) in enumerate(skf.split(np.zeros(len(labels)), labels), start=1):
        folds[test_idx] = fold

    return folds


def fit_fold_model(X, y, n_trees=N_TREES, seed=SEED, n_jobs=1):
    """fit a random forest on the complete rows of X"""
    usable = complete_rows(X)
    X_fit, y_fit = X[usable], y[usable]

    if len(y_fit) < MIN_TRAIN_ROWS:
        raise FoldTrainingError(
            f"only {len(y_fit)} complete training rows (of {len(y)}), need {MIN_TRAIN_ROWS}"
        )
    if len(np.unique(y_fit)) < 2:
        raise FoldTrainingError(f"training rows have a single class {np.unique(y_fit).tolist()}")

    model = RandomForestClassifier(n_estimators=n_trees, random_state=seed, n_jobs=n_jobs)
    model.fit(X_fit, y_fit)
    return model


def predict_up_probability(model, X):
    """P(up) per row, nan where a feature is missing"""
    probs = np.full(len(X), np.nan)
    usable = complete_rows(X)

    if usable.any():
        up_idx = list(model.classes_).index(POSITIVE_LABEL)
        probs[usable] = model.predict_proba(X[usable])[:, up_idx]

    return probs


def cross_validate(table, folds, n_trees=N_TREES, seed=SEED, n_jobs=1):
    """
    k-fold predictions for one feature set

    returns one row per symbol: id, symbol, observed, fold, prob_up, predicted
    ordered by fold then symbol, id is 1..n in that order
    """
    X, y = split_features(table)
    symbols = table.index.to_numpy()
    folds = np.asarray(folds)

    frames = []
    for fold in np.unique(folds):
        held_out = folds == fold

        try:
            model = fit_fold_model(X[~held_out], y[~held_out], n_trees, seed + int(fold), n_jobs)
        except FoldTrainingError as e:
            raise FoldTrainingError(f"fold {fold}: {e}") from e

        frames.append(pd.DataFrame({
            'symbol': symbols[held_out],
            'observed': y[held_out],
            'fold': int(fold),
            'prob_up': predict_up_probability(model, X[held_out]),
        }))

    results = pd.concat(frames, ignore_index=True)

    #ties go to up, missing probability stays missing
    results['predicted'] = np.where(
        results['prob_up'].isna(),
        None,
        np.where(results['prob_up'] >= THRESHOLD, 'up', 'down'),
    )
    results.insert(0, 'id', np.arange(1, len(results) + 1))

    return fold_result_schema.validate(results)


def run_experiment(feature_sets, n_folds=N_FOLDS, n_trees=N_TREES, seed=SEED, n_jobs=1):
    """cross validate norm and std on one shared fold assignment"""
    labels = feature_sets['norm'][LABEL_COLUMN]
    folds = assign_folds(labels.to_numpy(), n_folds, seed)

    print(f"\n{n_folds} folds over {len(labels)} symbols "
          f"({(labels == 'up').sum()} up, {(labels == 'down').sum()} down)")

    results = {}
    for variant in ('norm', 'std'):
        table = feature_sets[variant].reindex(labels.index)

        print(f"\n{'-'*60}")
        print(f"cross validating {variant}")
        print(f"{'-'*60}")

        res = cross_validate(table, folds, n_trees, seed, n_jobs)

        scored = res.dropna(subset=['prob_up'])
        accuracy = (scored['predicted'] == scored['observed']).mean() if len(scored) else float('nan')
        print(f"predicted {len(scored)} of {len(res)} symbols, accuracy {accuracy:.4f}")

        results[variant] = res

    return results


def save_results(results, output_dir=OUTPUT_DIR):
    """save one parquet of fold results per feature set"""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    paths = {}
    for variant, res in results.items():
        outpath = output_path / f"cv_results_{variant}.parquet"
        res.to_parquet(outpath, index=False)
        paths[variant] = outpath
        print(f"saved {outpath}")

    return paths


def main():
    """main training pipeline"""
    print("\n" + "="*60)
    print("direction forecast cross validation")
    print("="*60)

    config = load_experiment_config(EXPERIMENT_CONFIG)
    feature_sets = load_feature_sets(DATA_FEATURES)

    results = run_experiment(
        feature_sets,
        n_folds=config['n_folds'],
        n_trees=config['n_trees'],
        seed=config['seed'],
        n_jobs=config['n_jobs'],
    )
    save_results(results, OUTPUT_DIR)

    print("\n" + "="*60)
    print("cross validation complete")
    print("="*60)


if __name__ == "__main__":
    main()
