#!/usr/bin/env python3
"""
QC violin plots using seaborn, with the filter thresholds drawn in
"""

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from scrna.figures import finish_figure
from scrna.parameters import CELL_FILTERS

METRICS = [
    ("n_genes_by_counts", "Genes per cell"),
    ("total_counts", "Total counts per cell"),
    ("percent_mt", "Mitochondrial %"),
]


def create_qc_violin_plots(adata, save_dir=None, thresholds=CELL_FILTERS):
    """Create violin plots for QC metrics with threshold lines

    Args:
        adata: AnnData object with QC metrics
        save_dir: Directory to save plots (optional)
        thresholds: Dict with min_genes, max_genes and max_mt_pct

    Returns:
        Matplotlib figure
    """
    print("Creating QC violin plots...")

    # Extract QC data to DataFrame
    qc_data = pd.DataFrame({metric: adata.obs[metric] for metric, _ in METRICS})

    fig, axes = plt.subplots(1, len(METRICS))

    for (metric, title), ax in zip(METRICS, axes):
        sns.violinplot(data=qc_data, y=metric, ax=ax, color="skyblue", inner="box")

        ax.set_ylabel(title)
        ax.set_xlabel("")
        ax.set_title(title)

        if metric == "percent_mt":
            ax.axhline(
                y=thresholds["max_mt_pct"],
                color="red",
                linestyle="--",
                alpha=0.5,
                label=f"{thresholds['max_mt_pct']}% threshold",
            )
        elif metric == "n_genes_by_counts":
            ax.axhline(
                y=thresholds["min_genes"], color="red", linestyle="--", alpha=0.5, label="Min threshold"
            )
            ax.axhline(
                y=thresholds["max_genes"], color="red", linestyle="--", alpha=0.5, label="Max threshold"
            )

    plt.tight_layout()
    finish_figure(fig, save_dir, "qc_threshold_violins.png", size="qc_true_violin")

    return fig
