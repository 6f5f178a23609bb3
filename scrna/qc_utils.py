#!/usr/bin/env python3
"""
Quality control utilities for single-cell RNA-seq analysis
Handles QC metrics calculation, plotting and threshold filtering
"""

import matplotlib.pyplot as plt
import scanpy as sc

from scrna.figures import finish_figure
from scrna.parameters import CELL_FILTERS, GENE_FILTERS, GENE_PATTERNS

QC_COLUMNS = ["n_genes_by_counts", "total_counts", "percent_mt"]


def prefilter_genes(
    adata,
    min_cells=GENE_FILTERS["min_cells"],
    min_genes_per_cell=GENE_FILTERS["min_genes_per_cell"],
):
    """Drop rarely detected genes and near-empty barcodes

    Args:
        adata: AnnData object with raw counts
        min_cells: Minimum cells expressing a gene
        min_genes_per_cell: Minimum genes detected in a cell

    Returns:
        Filtered AnnData object
    """
    print("Removing rarely detected genes and empty barcodes...")
    print(f"Starting with {adata.n_obs:,} cells and {adata.n_vars:,} genes")

    sc.pp.filter_genes(adata, min_cells=min_cells)
    sc.pp.filter_cells(adata, min_genes=min_genes_per_cell)

    print(f"Kept {adata.n_obs:,} cells and {adata.n_vars:,} genes")
    return adata


def calculate_qc_metrics(adata, mt_pattern=GENE_PATTERNS["mt_pattern"]):
    """Calculate QC metrics

    Args:
        adata: AnnData object
        mt_pattern: Prefix of mitochondrial gene symbols

    Returns:
        AnnData object with n_genes_by_counts, total_counts and percent_mt in .obs
    """
    print("Calculating QC metrics...")

    # Mitochondrial genes
    adata.var["mt"] = adata.var_names.str.startswith(mt_pattern)
    print(f"  {int(adata.var['mt'].sum())} mitochondrial genes ({mt_pattern}*)")

    sc.pp.calculate_qc_metrics(
        adata, qc_vars=["mt"], percent_top=None, log1p=False, inplace=True
    )
    adata.obs["percent_mt"] = adata.obs["pct_counts_mt"]

    return adata


def plot_qc_metrics(adata, save_dir=None):
    """Plot QC metrics

    Args:
        adata: AnnData object with QC metrics
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting QC metrics...")

    # First figure: violin plots
    sc.pl.violin(adata, QC_COLUMNS, jitter=0.4, multi_panel=True, show=False)
    finish_figure(plt.gcf(), save_dir, "qc_violin_plots.png", size="qc_violin")

    # Second figure: scatter plots
    fig, axes = plt.subplots(1, 2)

    sc.pl.scatter(adata, x="total_counts", y="percent_mt", ax=axes[0], show=False)
    sc.pl.scatter(
        adata, x="total_counts", y="n_genes_by_counts", ax=axes[1], show=False
    )

    plt.tight_layout()
    finish_figure(fig, save_dir, "qc_scatter_plots.png", size="qc_scatter")


def filter_cells(
    adata,
    min_genes=CELL_FILTERS["min_genes"],
    max_genes=CELL_FILTERS["max_genes"],
    max_mt_pct=CELL_FILTERS["max_mt_pct"],
):
    """Apply QC thresholds

    A cell is kept iff min_genes < n_genes_by_counts < max_genes and
    percent_mt < max_mt_pct.

    Args:
        adata: AnnData object with QC metrics
        min_genes: Exclusive lower bound on genes per cell
        max_genes: Exclusive upper bound on genes per cell
        max_mt_pct: Exclusive upper bound on mitochondrial percentage

    Returns:
        Filtered AnnData object
    """
    missing = [col for col in QC_COLUMNS if col not in adata.obs]
    if missing:
        raise KeyError(
            f"QC metrics {missing} not found in adata.obs - run calculate_qc_metrics first"
        )

    print("Applying QC filters...")
    print(f"Starting with {adata.n_obs:,} cells and {adata.n_vars:,} genes")

    n_genes = adata.obs["n_genes_by_counts"]
    keep = (
        (n_genes > min_genes)
        & (n_genes < max_genes)
        & (adata.obs["percent_mt"] < max_mt_pct)
    )

    print(f"  Too few genes (<= {min_genes}): {int((n_genes <= min_genes).sum()):,}")
    print(f"  Too many genes (>= {max_genes}): {int((n_genes >= max_genes).sum()):,}")
    print(
        f"  High mitochondrial (>= {max_mt_pct}%): "
        f"{int((~(adata.obs['percent_mt'] < max_mt_pct)).sum()):,}"
    )

    adata = adata[keep.values].copy()

    print(f"After filtering: {adata.n_obs:,} cells and {adata.n_vars:,} genes")

    return adata
