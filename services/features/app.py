"""
Feature Engineering Service

Turns the enriched daily prices into two labeled feature tables, one row per symbol:
- norm: first differences of the raw percent change across the quarter's dates
- std:  first differences of the per-symbol z-scored percent change

Label is the symbol's direction on its first trading day of the quarter.
"""

import pandas as pd
import numpy as np
from pathlib import Path

from libs.schemas import enriched_market_schema
from services.features.validate_features import (
    FeatureValidationError,
    validate_feature_sets,
    validate_feature_table,
)

DATA_ENRICHED = Path("data/enriched/prices_enriched.csv")
DATA_FEATURES = Path("data/features")

# third quarter
QUARTER_MONTHS = (7, 8, 9)

# feature set name -> column pivoted into the wide matrix
VARIANT_COLUMNS = {
    'norm': 'percent_change',
    'std': 'z_change',
}


class FeatureBuildError(ValueError):
    """Raised when the enriched data cannot be reshaped into features"""
    pass


def load_enriched(path=DATA_ENRICHED):
    """Load the enriched prices written by the ingest service"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(
            f"enriched prices not found at {path}. "
            f"run ingest service first: python -m services.ingest.app"
        )

    df = pd.read_csv(path, parse_dates=['date'])
    df = df.sort_values(['symbol', 'date'], kind='mergesort').reset_index(drop=True)

    print(f"Loaded {len(df)} rows, {df['symbol'].nunique()} symbols")
    return enriched_market_schema.validate(df)


def restrict_months(df, months=QUARTER_MONTHS):
    """Keep only rows whose month is in months"""
    return df[df['month'].isin(list(months))].reset_index(drop=True)


def standardize_changes(df):
    """
    Per-symbol z-score of percent_change inside the restricted window.

    Uses the sample sd (ddof=1). A symbol with one observation has a nan sd,
    a symbol with a constant change has sd 0; both end up with nan z_change
    and are left that way.
    """
    out = df.copy()
    grouped = out.groupby('symbol')['percent_change']

    out['mean_change'] = grouped.transform('mean')
    out['sd_change'] = grouped.transform('std')
    out['z_change'] = (out['percent_change'] - out['mean_change']) / out['sd_change']

    return out


def pivot_wide(df, value_col):
    """Symbol x date matrix of value_col, missing cells stay nan"""
    dupes = df.duplicated(['symbol', 'date'])
    if dupes.any():
        sample = df.loc[dupes, ['symbol', 'date']].head(3).to_dict('records')
        raise FeatureBuildError(f"Found {dupes.sum()} duplicate (symbol, date) rows, e.g. {sample}")

    wide = df.pivot(index='symbol', columns='date', values=value_col)
    return wide.sort_index(axis=0).sort_index(axis=1)


def diff_matrix(wide):
    """
    First differences across consecutive date columns.

    Column j of the result is wide[j+1] - wide[j], labelled by the later date.
    The first date column is dropped so the result has one column less.
    """
    if wide.shape[1] < 2:
        raise FeatureBuildError(f"Need at least 2 date columns to difference, got {wide.shape[1]}")

    diffs = wide.diff(axis=1).iloc[:, 1:]
    diffs.columns = [f"diff_{pd.Timestamp(c):%Y%m%d}" for c in diffs.columns]
    diffs.columns.name = None

    return diffs


def quarter_direction(df):
    """Direction of each symbol's first record in the window"""
    ordered = df.sort_values(['symbol', 'date'], kind='mergesort')
    return ordered.groupby('symbol')['direction'].first()


def label_features(diffs, labels):
    """Join diff rows with the direction label on the symbol key"""
    left = diffs.rename_axis('symbol').reset_index()
    right = labels.rename('direction').rename_axis('symbol').reset_index()

    table = left.merge(right, on='symbol', how='inner', validate='one_to_one')
    return table.set_index('symbol').sort_index()


def build_feature_sets(enriched, months=QUARTER_MONTHS):
    """Build the norm and std labeled feature tables"""
    quarter = restrict_months(enriched, months)
    if quarter.empty:
        raise FeatureBuildError(f"No rows left for months {list(months)}")

    print(f"  - Window: {len(quarter)} rows, {quarter['symbol'].nunique()} symbols, "
          f"{quarter['date'].nunique()} dates")

    print("  - Standardizing percent change per symbol...")
    quarter = standardize_changes(quarter)
    undefined = quarter.loc[quarter['z_change'].isna(), 'symbol'].nunique()
    if undefined:
        print(f"  - {undefined} symbols have undefined z_change (single or constant observation)")

    labels = quarter_direction(quarter)
    n_dates = quarter['date'].nunique()

    feature_sets = {}
    for variant, value_col in VARIANT_COLUMNS.items():
        print(f"  - Pivoting {value_col} and differencing ({variant})...")
        wide = pivot_wide(quarter, value_col)
        table = label_features(diff_matrix(wide), labels)
        validate_feature_table(table, n_dates=n_dates, variant=variant)
        feature_sets[variant] = table

    is_valid, errors = validate_feature_sets(feature_sets)
    if not is_valid:
        raise FeatureValidationError("\n".join(errors))

    return feature_sets


def write_feature_sets(feature_sets, output_dir=DATA_FEATURES):
    """Write one parquet per feature set, symbol kept as the index"""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    paths = {}
    for variant, table in feature_sets.items():
        outfile = output_path / f"features_{variant}.parquet"
        table.to_parquet(outfile)
        paths[variant] = outfile

    print(f"Wrote {len(paths)} feature sets to {output_path}")
    return paths


def load_feature_sets(input_dir=DATA_FEATURES):
    """Read back the tables written by write_feature_sets"""
    input_path = Path(input_dir)
    feature_sets = {}
    for variant in VARIANT_COLUMNS:
        infile = input_path / f"features_{variant}.parquet"
        if not infile.exists():
            raise FileNotFoundError(
                f"feature set not found at {infile}. "
                f"run features service first: python -m services.features.app"
            )
        feature_sets[variant] = pd.read_parquet(infile)
    return feature_sets


def main():
    print("=" * 60)
    print("Feature Engineering Service")
    print("=" * 60)

    enriched = load_enriched(DATA_ENRICHED)

    print("\nComputing features...")
    feature_sets = build_feature_sets(enriched, QUARTER_MONTHS)

    for variant, table in feature_sets.items():
        n_complete = int(np.isfinite(table.drop(columns='direction').to_numpy(dtype=float)).all(axis=1).sum())
        print(f"  - {variant}: {len(table)} symbols, {table.shape[1] - 1} features, {n_complete} complete rows")

    write_feature_sets(feature_sets, DATA_FEATURES)

    print("\n" + "=" * 60)
    print("Feature engineering complete")
    print("=" * 60)


if __name__ == "__main__":
    main()
