"""
Comparison of the norm and std cross validation results

- symbols are matched by key, never by row position
- a symbol missing a prediction in either set is dropped from both
- per-fold misclassification error, OLS of error on feature set
- pooled ROC curve and mean per-fold AUROC for each set
"""

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from sklearn.metrics import roc_auc_score, roc_curve


VARIANTS = ('norm', 'std')
BASELINE_VARIANT = 'norm'
POSITIVE_LABEL = 'up'


def merge_variants(norm_results, std_results):
    """
    Join the two result tables on symbol and drop incomplete rows.

    Raises ValueError when the two tables do not hold the same symbols or
    disagree on a symbol's fold or observed label.
    """
    merged = norm_results.merge(
        std_results,
        on='symbol',
        how='inner',
        suffixes=('_norm', '_std'),
        validate='one_to_one',
    )

    if len(merged) != len(norm_results) or len(merged) != len(std_results):
        raise ValueError(
            f"result tables hold different symbols: norm {len(norm_results)}, "
            f"std {len(std_results)}, shared {len(merged)}"
        )

    fold_mismatch = merged['fold_norm'] != merged['fold_std']
    if fold_mismatch.any():
        raise ValueError(f"{fold_mismatch.sum()} symbols sit in different folds across feature sets")

    label_mismatch = merged['observed_norm'] != merged['observed_std']
    if label_mismatch.any():
        raise ValueError(f"{label_mismatch.sum()} symbols have different observed labels across feature sets")

    merged = merged.rename(columns={'fold_norm': 'fold', 'observed_norm': 'observed'})
    merged = merged.drop(columns=['fold_std', 'observed_std'])

    prediction_cols = [f'{col}_{v}' for v in VARIANTS for col in ('prob_up', 'predicted')]
    complete = merged.dropna(subset=prediction_cols).reset_index(drop=True)

    dropped = len(merged) - len(complete)
    if dropped:
        print(f"dropped {dropped} of {len(merged)} symbols with a missing prediction")

    return complete


def fold_error_rates(merged):
    """Long table of fold, variant, error (mean misclassification rate)"""
    rows = []
    for variant in VARIANTS:
        wrong = merged[f'predicted_{variant}'] != merged['observed']
        per_fold = wrong.groupby(merged['fold']).mean()
        for fold, error in per_fold.items():
            rows.append({'fold': int(fold), 'variant': variant, 'error': float(error)})

    return pd.DataFrame(rows, columns=['fold', 'variant', 'error'])


def error_significance(errors):
    """
    OLS of per-fold error on feature set, norm as the baseline.

    Returns (coefficients, p_value) where coefficients has estimate,
    std_error, t_value, p_value per term and p_value is the one of the
    std term.
    """
    model = smf.ols(
        f"error ~ C(variant, Treatment(reference='{BASELINE_VARIANT}'))",
        data=errors,
    ).fit()

    coefficients = pd.DataFrame({
        'estimate': model.params,
        'std_error': model.bse,
        't_value': model.tvalues,
        'p_value': model.pvalues,
    })
    coefficients.index = [
        'variant[T.std]' if term.endswith('[T.std]') else term
        for term in coefficients.index
    ]

    return coefficients, float(coefficients.loc['variant[T.std]', 'p_value'])


def _binary_labels(observed):
    return (observed == POSITIVE_LABEL).astype(int)


def roc_points(merged, variant):
    """ROC curve over all folds pooled"""
    fpr, tpr, thresholds = roc_curve(_binary_labels(merged['observed']), merged[f'prob_up_{variant}'])
    return pd.DataFrame({'fpr': fpr, 'tpr': tpr, 'threshold': thresholds})


def fold_aurocs(merged, variant):
    """AUROC per fold, folds with a single observed class are skipped"""
    aucs = {}
    for fold, group in merged.groupby('fold'):
        y_true = _binary_labels(group['observed'])
        if y_true.nunique() < 2:
            continue
        aucs[int(fold)] = roc_auc_score(y_true, group[f'prob_up_{variant}'])

    return pd.Series(aucs, name=f'auroc_{variant}', dtype=float)


def mean_auroc(merged, variant):
    """Mean of the per-fold AUROCs (not the pooled AUROC)"""
    aucs = fold_aurocs(merged, variant)
    return float(aucs.mean()) if len(aucs) else float('nan')


def compare_variants(results):
    """Run the full comparison on {'norm': results, 'std': results}"""
    merged = merge_variants(results['norm'], results['std'])
    if merged.empty:
        raise ValueError("no symbol has a prediction in both feature sets")

    errors = fold_error_rates(merged)
    coefficients, p_value = error_significance(errors)

    summary = {
        'merged': merged,
        'errors': errors,
        'coefficients': coefficients,
        'p_value': p_value,
        'mean_error': errors.groupby('variant')['error'].mean().to_dict(),
        'roc': {v: roc_points(merged, v) for v in VARIANTS},
        'auroc': {v: mean_auroc(merged, v) for v in VARIANTS},
    }

    return summary


def format_coefficient_table(coefficients):
    """Coefficient table as printable text"""
    return coefficients.to_string(float_format=lambda v: f"{v:.6g}")
