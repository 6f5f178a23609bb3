#!/usr/bin/env python3
"""
Marker gene discovery for single-cell RNA-seq clusters
Handles one-vs-rest differential expression, top-marker tables and marker plots
"""

from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
import scanpy as sc

from scrna.data_loader import write_table
from scrna.figures import finish_figure
from scrna.parameters import CLUSTERING_PARAMS, MARKER_PARAMS

MARKER_COLUMNS = [
    "cluster",
    "gene",
    "scores",
    "logfoldchanges",
    "pvals",
    "pvals_adj",
    "pct_nz_group",
    "pct_nz_reference",
]


def _expression_var_names(adata):
    return adata.raw.var_names if adata.raw is not None else adata.var_names


def _available_genes(adata, genes):
    var_names = set(_expression_var_names(adata))
    available = [g for g in genes if g in var_names]
    missing = [g for g in genes if g not in var_names]
    if missing:
        print(f"  Skipping genes not in data: {', '.join(missing)}")
    return available


def find_cluster_markers(
    adata,
    groupby=CLUSTERING_PARAMS["key"],
    method=MARKER_PARAMS["method"],
    n_top=MARKER_PARAMS["n_top"],
    min_pct=MARKER_PARAMS["min_pct"],
    logfc_threshold=MARKER_PARAMS["logfc_threshold"],
    only_positive=MARKER_PARAMS["only_positive"],
    save_dir=None,
):
    """Find top marker genes per cluster using differential expression.

    Every gene is tested for each cluster against all remaining cells.
    Genes are kept when detected in at least `min_pct` of the cells of
    either group and, if `only_positive`, when up-regulated by more than
    `logfc_threshold` (log2). At most `n_top` genes per cluster are kept,
    ranked by log fold change.

    Args:
        adata: AnnData object with clustering results; .raw holds the full
            log-normalized matrix when available.
        groupby: Column in adata.obs to group by.
        method: DE method passed to scanpy (e.g., "wilcoxon", "t-test").
        n_top: Maximum number of markers per cluster.
        min_pct: Minimum detection fraction in either group.
        logfc_threshold: Minimum log2 fold change.
        only_positive: Keep only up-regulated genes.
        save_dir: Optional directory for the CSV table.

    Returns:
        Pandas DataFrame with columns MARKER_COLUMNS.
    """
    if groupby not in adata.obs:
        raise KeyError(f"Groupby key '{groupby}' not found in adata.obs")

    use_raw = adata.raw is not None
    n_genes = len(_expression_var_names(adata))

    # One-vs-rest statistics need two cells in the group and a non-empty rest
    sizes = adata.obs[groupby].astype(str).value_counts()
    testable = [c for c in sizes.index if sizes[c] >= 2]
    skipped = sorted(set(sizes.index) - set(testable), key=lambda c: (len(c), c))
    if skipped:
        print(f"  Skipping single-cell clusters: {', '.join(skipped)}")
    if not testable or len(sizes) < 2:
        print("  Not enough clusters to compare; no markers found")
        markers_df = pd.DataFrame(columns=MARKER_COLUMNS)
        if save_dir is not None:
            write_table(markers_df, Path(save_dir) / "top_markers_by_cluster.csv")
        return markers_df

    print(f"Finding markers for {len(testable)} clusters ({method})...")
    sc.tl.rank_genes_groups(
        adata,
        groupby=groupby,
        groups=testable,
        method=method,
        use_raw=use_raw,
        n_genes=n_genes,
        pts=True,
    )

    markers_df = sc.get.rank_genes_groups_df(adata, None)

    detected = markers_df[["pct_nz_group", "pct_nz_reference"]].max(axis=1) >= min_pct
    if only_positive:
        effect = markers_df["logfoldchanges"] > logfc_threshold
    else:
        effect = markers_df["logfoldchanges"].abs() > logfc_threshold
    markers_df = markers_df[detected & effect]

    markers_df = (
        markers_df.sort_values(["group", "logfoldchanges"], ascending=[True, False])
        .groupby("group", observed=True, sort=False)
        .head(int(n_top))
        .rename(columns={"group": "cluster", "names": "gene"})
        .reset_index(drop=True)
    )
    markers_df["cluster"] = markers_df["cluster"].astype(str)
    markers_df = markers_df[MARKER_COLUMNS]

    print(f"  Kept {len(markers_df):,} markers (max {int(n_top)} per cluster)")
    top_two = markers_df.groupby("cluster").head(2)
    for cluster, genes in top_two.groupby("cluster")["gene"]:
        print(f"  Cluster {cluster}: {', '.join(genes)}")

    if save_dir is not None:
        write_table(markers_df, Path(save_dir) / "top_markers_by_cluster.csv")

    return markers_df


def plot_marker_heatmap(
    adata,
    markers_df,
    groupby=CLUSTERING_PARAMS["key"],
    n_genes=10,
    save_dir=None,
):
    """Plot expression heatmap of the top markers of each cluster

    Args:
        adata: AnnData object with clustering results
        markers_df: Table from find_cluster_markers
        groupby: Cluster column
        n_genes: Markers per cluster to show
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    top = markers_df.groupby("cluster").head(int(n_genes))

    # Dedupe while preserving order
    seen = set()
    genes = [g for g in top["gene"] if not (g in seen or seen.add(g))]
    if not genes:
        print("  No markers to plot")
        return

    print(f"Plotting marker heatmap ({len(genes)} genes)...")
    sc.pl.heatmap(
        adata,
        genes,
        groupby=groupby,
        use_raw=adata.raw is not None,
        standard_scale="var",
        swap_axes=True,
        show=False,
    )
    finish_figure(plt.gcf(), save_dir, "top_markers_heatmap.png", size="heatmap")


def plot_feature_genes(adata, genes, save_dir=None, filename="feature_plots.png"):
    """Plot expression of genes on the UMAP embedding

    Args:
        adata: AnnData object with UMAP coordinates
        genes: Gene symbols to plot
        save_dir: Directory to save plots (optional)
        filename: Output file name
    """
    print("Plotting feature plots...")
    available = _available_genes(adata, genes)
    if not available:
        return

    sc.pl.umap(
        adata,
        color=available,
        use_raw=adata.raw is not None,
        ncols=3,
        show=False,
    )
    finish_figure(plt.gcf(), save_dir, filename, size="feature")


def plot_marker_violins(
    adata,
    genes,
    groupby=CLUSTERING_PARAMS["key"],
    save_dir=None,
    filename="marker_violins.png",
):
    """Plot per-cluster violins for a gene list"""
    print("Plotting marker violins...")
    available = _available_genes(adata, genes)
    if not available:
        return

    sc.pl.violin(
        adata,
        available,
        groupby=groupby,
        use_raw=adata.raw is not None,
        stripplot=False,
        show=False,
    )
    finish_figure(plt.gcf(), save_dir, filename, size="violin")
