"""
Direction report - runs every stage end to end

1. load and enrich prices (ingest)
2. exploratory plots
3. norm / std feature tables for the configured quarter (features)
4. k-fold random forest per feature set (train)
5. error comparison, OLS significance, ROC / AUROC (compare)
6. artifacts under REPORT_DIR and one experiment record per run
"""

import os
from pathlib import Path

from services.ingest.app import PRICES_CSV, load_prices, build_enriched, write_enriched
from services.features.app import build_feature_sets
from services.train.app import EXPERIMENT_CONFIG, load_experiment_config, run_experiment, save_results
from services.train.experiment_tracker import experiment_run
from services.compare.app import VARIANTS, compare_variants, format_coefficient_table
from services.compare import plots

REPORT_DIR = Path(os.getenv("REPORT_DIR", "reports"))
EXPERIMENT_NAME = "direction_report"

# symbols drawn in the closing price plot
N_PLOT_SYMBOLS = 5


def write_exploratory_plots(enriched, figures_dir):
    """closing prices, change histogram, direction counts"""
    symbols = sorted(enriched['symbol'].unique())[:N_PLOT_SYMBOLS]
    return [
        plots.plot_close_prices(enriched, symbols, figures_dir / "close_prices.png"),
        plots.plot_change_distribution(enriched, figures_dir / "percent_change_hist.png"),
        plots.plot_direction_counts(enriched, figures_dir / "direction_by_month.png"),
    ]


def write_comparison(summary, report_dir):
    """roc plots plus error and coefficient tables"""
    figures_dir = report_dir / "figures"
    paths = []

    for variant in VARIANTS:
        paths.append(plots.plot_roc(
            summary['roc'][variant],
            summary['auroc'][variant],
            variant,
            figures_dir / f"roc_{variant}.png",
        ))

    errors_path = report_dir / "fold_errors.csv"
    summary['errors'].to_csv(errors_path, index=False)
    paths.append(errors_path)

    coef_path = report_dir / "error_coefficients.csv"
    summary['coefficients'].to_csv(coef_path, index_label='term')
    paths.append(coef_path)

    return paths


def main(prices_csv=PRICES_CSV, report_dir=REPORT_DIR, config_path=EXPERIMENT_CONFIG):
    print("=" * 60)
    print("Direction Report")
    print("=" * 60)

    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)

    config = load_experiment_config(config_path)

    print(f"\nLoading prices from {prices_csv}...")
    raw = load_prices(prices_csv)
    print(f"Loaded {len(raw)} rows, {raw['symbol'].nunique()} symbols")

    print(f"Building enriched prices (year >= {config['min_year']})...")
    enriched = build_enriched(raw, config['min_year'])
    enriched_path = write_enriched(enriched, report_dir / "prices_enriched.csv")
    print(f"Wrote {len(enriched)} rows to {enriched_path}")

    print("\nWriting exploratory plots...")
    artifacts = write_exploratory_plots(enriched, report_dir / "figures")

    print("\nComputing features...")
    feature_sets = build_feature_sets(enriched, config['months'])

    results = run_experiment(
        feature_sets,
        n_folds=config['n_folds'],
        n_trees=config['n_trees'],
        seed=config['seed'],
        n_jobs=config['n_jobs'],
    )
    result_paths = save_results(results, report_dir / "cv_results")

    print("\nComparing feature sets...")
    summary = compare_variants(results)
    artifacts += write_comparison(summary, report_dir)

    print("\nerror ~ variant")
    print(format_coefficient_table(summary['coefficients']))
    for variant in VARIANTS:
        print(f"{variant}: mean error {summary['mean_error'][variant]:.4f} "
              f"mean AUROC {summary['auroc'][variant]:.3f}")

    with experiment_run(EXPERIMENT_NAME, run_name="norm-vs-std",
                        base_dir=str(report_dir / "experiments")) as tracker:
        tracker.log_params(config)
        tracker.log_params({
            'n_rows_enriched': len(enriched),
            'n_symbols': len(feature_sets['norm']),
            'n_features': feature_sets['norm'].shape[1] - 1,
            'n_compared': len(summary['merged']),
        })
        tracker.log_metrics({
            'mean_auroc_norm': summary['auroc']['norm'],
            'mean_auroc_std': summary['auroc']['std'],
            'mean_error_norm': summary['mean_error']['norm'],
            'mean_error_std': summary['mean_error']['std'],
            'error_p_value': summary['p_value'],
        })
        tracker.log_artifact(enriched_path, "Enriched prices")
        for variant, path in result_paths.items():
            tracker.log_artifact(path, f"Fold results ({variant})")
        for path in artifacts:
            tracker.log_artifact(path)

    print("=" * 60)
    print("✅ Report complete")
    print("=" * 60)

    return summary


if __name__ == "__main__":
    main()
