"""
Report figures. Every function writes one png and returns its path.
"""

from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt


def _save(fig, outpath):
    outpath = Path(outpath)
    outpath.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(outpath, dpi=120)
    plt.close(fig)
    return outpath


def plot_close_prices(enriched, symbols, outpath):
    """Closing price over time for a few symbols"""
    fig, ax = plt.subplots(figsize=(10, 5))
    for symbol in symbols:
        series = enriched[enriched['symbol'] == symbol]
        ax.plot(series['date'], series['close'], label=symbol, linewidth=1)
    ax.set_xlabel("Date")
    ax.set_ylabel("Close")
    ax.set_title("Closing prices")
    ax.legend()
    return _save(fig, outpath)


def plot_change_distribution(enriched, outpath, bins=100):
    """Histogram of daily percent change"""
    changes = enriched['percent_change'].replace([float('inf'), float('-inf')], float('nan')).dropna()
    fig, ax = plt.subplots(figsize=(8, 5))
    ax.hist(changes, bins=bins)
    ax.set_xlabel("Percent change")
    ax.set_ylabel("Count")
    ax.set_title("Daily percent change")
    return _save(fig, outpath)


def plot_direction_counts(enriched, outpath):
    """Up/down record counts per month"""
    counts = enriched.groupby(['month', 'direction']).size().unstack(fill_value=0)
    fig, ax = plt.subplots(figsize=(8, 5))
    counts.plot(kind='bar', ax=ax)
    ax.set_xlabel("Month")
    ax.set_ylabel("Records")
    ax.set_title("Direction by month")
    return _save(fig, outpath)


def plot_roc(points, auc, variant, outpath):
    """ROC curve of one feature set, legend shows the mean per-fold AUC"""
    fig, ax = plt.subplots(figsize=(6, 6))
    ax.plot(points['fpr'], points['tpr'], label=f"{variant} (mean AUC = {auc:.3f})")
    ax.plot([0, 1], [0, 1], "--", color="grey")
    ax.set_xlabel("False Positive Rate")
    ax.set_ylabel("True Positive Rate")
    ax.set_title(f"ROC curve ({variant})")
    ax.legend(loc="lower right")
    return _save(fig, outpath)
