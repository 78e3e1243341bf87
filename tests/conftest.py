"""
shared test fixtures for reusable test data

fixtures let you define data once and reuse it in tests
just add fixture name to test function params and pytest passes it in automatically

example: def test_something(sample_market_data):
"""

import json

import pytest
import pandas as pd
import numpy as np


RAW_COLUMNS = ['date', 'symbol', 'open', 'close', 'low', 'high', 'volume']


def make_prices(symbol, dates, closes):
    """
    raw price rows for one symbol with the given closes

    open/low/high are derived from close so every numeric column is float
    """
    closes = np.asarray(closes, dtype=float)
    return pd.DataFrame({
        'date': pd.to_datetime(dates),
        'symbol': symbol,
        'open': closes * 0.99,
        'close': closes,
        'low': closes * 0.98,
        'high': closes * 1.01,
        'volume': np.full(len(closes), 1_000_000.0),
    })[RAW_COLUMNS]


@pytest.fixture
def sample_market_data():
    """
    40 symbols of fake daily prices, June to September 2016
    plus a few December 2015 rows that the year filter should drop

    what it has:
    random walk closes around 50 to 150
    business days only so every symbol shares the same dates
    the close on the first July day is forced 1% up for even symbols
    and 1% down for odd ones, so quarter labels are exactly 20 up / 20 down

    use when testing build_enriched, build_feature_sets, run_experiment
    or the full report
    """
    np.random.seed(42)
    dates = pd.bdate_range('2015-12-28', '2016-09-30')
    first_july = dates.get_loc(pd.bdate_range('2016-07-01', periods=1)[0])

    frames = []
    for i in range(40):
        base = 50 + i * 2.5
        steps = np.random.randn(len(dates)) * 0.01
        closes = base * np.exp(np.cumsum(steps))
        closes[first_july] = closes[first_july - 1] * (1.01 if i % 2 == 0 else 0.99)
        # keep the walk continuous after the forced move
        closes[first_july + 1:] = closes[first_july] * np.exp(np.cumsum(steps[first_july + 1:]))
        frames.append(make_prices(f"S{i:02d}", dates, closes))

    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def prices_csv(tmp_path, sample_market_data):
    """sample_market_data written as a csv with the raw header and iso dates"""
    path = tmp_path / 'prices.csv'
    df = sample_market_data.copy()
    df['date'] = df['date'].dt.strftime('%Y-%m-%d')
    df.to_csv(path, index=False)
    return path


@pytest.fixture
def small_config_file(tmp_path):
    """
    experiment config small enough for tests

    3 folds and 10 trees keep the forests fast
    """
    path = tmp_path / 'experiment_config.json'
    path.write_text(json.dumps({
        'min_year': 2016,
        'months': [7, 8, 9],
        'n_folds': 3,
        'n_trees': 10,
        'seed': 7,
    }))
    return path


@pytest.fixture
def separable_feature_table():
    """
    labeled feature table where the first feature decides the label

    up rows have diff_20160705 around +2, down rows around -2
    other columns are pure noise
    a forest should rank these perfectly, AUROC close to 1
    """
    rng = np.random.RandomState(0)
    n = 30
    labels = np.array(['up', 'down'] * (n // 2))
    signal = np.where(labels == 'up', 2.0, -2.0) + rng.randn(n) * 0.2

    table = pd.DataFrame({
        'diff_20160705': signal,
        'diff_20160706': rng.randn(n),
        'diff_20160707': rng.randn(n),
        'direction': labels,
    }, index=pd.Index([f"S{i:02d}" for i in range(n)], name='symbol'))
    return table


@pytest.fixture
def price_rows():
    """
    factory for small hand written price frames

    usage: price_rows('AAA', ['2016-07-01', '2016-07-05'], [10, 11])
    """
    return make_prices
