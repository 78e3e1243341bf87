"""
Minimal feature validation - just check the essentials.
"""
import pandas as pd


LABEL_COLUMN = 'direction'
FEATURE_PREFIX = 'diff_'
LABELS = {'up', 'down'}


class FeatureValidationError(Exception):
    """Raised when feature validation fails"""
    pass


def validate_feature_table(df: pd.DataFrame, n_dates: int = None, variant: str = None) -> None:
    """
    Basic validation for one labeled feature table.

    Checks:
    1. Has a 'direction' label column with only up/down values
    2. No 'symbol' column (symbol lives in the index, never a feature)
    3. One row per symbol
    4. Every other column is a diff_ column
    5. n_dates - 1 feature columns when n_dates is given

    Raises FeatureValidationError if validation fails.
    """
    errors = []

    # Check 1: label column
    if LABEL_COLUMN not in df.columns:
        errors.append(f"Missing label column '{LABEL_COLUMN}'")
    else:
        bad_labels = set(df[LABEL_COLUMN].dropna().unique()) - LABELS
        if bad_labels:
            errors.append(f"Unexpected labels: {sorted(bad_labels)}")
        if df[LABEL_COLUMN].isna().any():
            errors.append("Label column has missing values")

    # Check 2: symbol must not leak in as a feature
    if 'symbol' in df.columns:
        errors.append("Contains 'symbol' column - symbol must be the index, not a feature!")

    # Check 3: one row per symbol
    if not df.index.is_unique:
        errors.append(f"Found {df.index.duplicated().sum()} duplicate symbols in index")

    # Check 4: only diff columns besides the label
    feature_cols = [c for c in df.columns if c != LABEL_COLUMN]
    stray = [c for c in feature_cols if not str(c).startswith(FEATURE_PREFIX)]
    if stray:
        errors.append(f"Unexpected non-feature columns: {stray}")

    # Check 5: first differences drop exactly one date column
    if n_dates is not None and len(feature_cols) != n_dates - 1:
        errors.append(f"Expected {n_dates - 1} feature columns, got {len(feature_cols)}")

    if errors:
        error_msg = f"❌ Feature validation failed for {variant or 'table'}:\n"
        error_msg += "\n".join(f"     - {err}" for err in errors)
        raise FeatureValidationError(error_msg)


def validate_feature_sets(feature_sets: dict) -> tuple:
    """
    Validate the norm/std tables together.

    Both variants must describe the same symbols with the same labels,
    otherwise their cross validation results cannot be compared row by row.

    Returns (is_valid, errors).
    """
    errors = []

    missing = {'norm', 'std'} - set(feature_sets)
    if missing:
        errors.append(f"Missing feature sets: {sorted(missing)}")
        return False, errors

    for variant, df in feature_sets.items():
        try:
            validate_feature_table(df, variant=variant)
        except FeatureValidationError as e:
            errors.append(str(e))

    norm, std = feature_sets['norm'], feature_sets['std']

    if set(norm.index) != set(std.index):
        only_norm = sorted(set(norm.index) - set(std.index))
        only_std = sorted(set(std.index) - set(norm.index))
        errors.append(f"Symbol mismatch: only in norm {only_norm}, only in std {only_std}")
    elif LABEL_COLUMN in norm.columns and LABEL_COLUMN in std.columns:
        aligned = std[LABEL_COLUMN].reindex(norm.index)
        if not norm[LABEL_COLUMN].equals(aligned):
            errors.append("Labels differ between norm and std feature sets")

    is_valid = len(errors) == 0
    return is_valid, errors
