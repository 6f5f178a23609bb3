#!/usr/bin/env python3
"""
Processing utilities for single-cell RNA-seq analysis
Handles normalization, scaling, PCA, UMAP, and clustering
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import scanpy as sc
from sklearn.metrics import silhouette_score

from scrna.data_loader import write_table
from scrna.figures import finish_figure
from scrna.parameters import CLUSTERING_PARAMS, NORMALIZATION_PARAMS, REDUCTION_PARAMS


def normalize_and_scale(
    adata,
    target_sum=NORMALIZATION_PARAMS["target_sum"],
    n_top_genes=NORMALIZATION_PARAMS["n_top_genes"],
    flavor=NORMALIZATION_PARAMS["hvg_flavor"],
    max_value=NORMALIZATION_PARAMS["max_scale_value"],
    save_dir=None,
):
    """Normalize, select highly variable genes and scale

    Args:
        adata: AnnData object with raw counts in .X
        target_sum: Counts per cell after normalization
        n_top_genes: Number of highly variable genes to keep
        flavor: scanpy HVG flavor
        max_value: Clip scaled values at this magnitude
        save_dir: Directory to save the HVG plot (optional)

    Returns:
        AnnData restricted to the HVGs with scaled .X; the full
        log-normalized matrix is kept in .raw
    """
    print("Normalizing and scaling data...")

    adata.X = adata.X.astype(np.float32)

    # Normalize to target_sum reads per cell
    sc.pp.normalize_total(adata, target_sum=target_sum)

    # Log transform
    sc.pp.log1p(adata)

    # Find highly variable genes
    n_top = min(int(n_top_genes), adata.n_vars)
    sc.pp.highly_variable_genes(adata, n_top_genes=n_top, flavor=flavor)
    adata.var["variability_rank"] = (
        adata.var["dispersions_norm"]
        .rank(ascending=False, method="first", na_option="bottom")
        .astype(int)
    )
    # Ties at the dispersion cut-off would grow the set past n_top
    adata.var["highly_variable"] = adata.var["variability_rank"] <= n_top

    # Full log-normalized matrix for DE and feature plots; raw.var keeps the
    # variability ranking of every gene
    adata.raw = adata
    print(f"  Selected {int(adata.var['highly_variable'].sum()):,} highly variable genes")

    if save_dir:
        sc.pl.highly_variable_genes(adata, show=False)
        finish_figure(plt.gcf(), save_dir, "highly_variable_genes.png", size="hvg")

    # Keep only highly variable genes for downstream analysis
    adata = adata[:, adata.var["highly_variable"]].copy()

    # Scale data
    sc.pp.scale(adata, max_value=max_value)

    return adata


def run_pca(adata, n_comps=REDUCTION_PARAMS["n_comps"], save_dir=None):
    """Run PCA and plot the elbow and loadings

    Args:
        adata: Scaled AnnData object
        n_comps: Number of principal components (clamped to the data size)
        save_dir: Directory to save plots (optional)

    Returns:
        AnnData object with X_pca
    """
    n_comps = min(int(n_comps), adata.n_obs - 1, adata.n_vars - 1)
    print(f"Running PCA ({n_comps} components)...")
    sc.tl.pca(adata, svd_solver="arpack", n_comps=n_comps)

    if save_dir:
        sc.pl.pca_variance_ratio(adata, n_pcs=n_comps, show=False)
        finish_figure(plt.gcf(), save_dir, "pca_elbow_plot.png", size="elbow")

        sc.pl.pca_loadings(adata, components="1,2", show=False)
        finish_figure(plt.gcf(), save_dir, "pca_loadings.png", size="pca_loadings")

        sc.pl.pca(adata, show=False)
        finish_figure(plt.gcf(), save_dir, "pca_scatter.png", size="pca")

    return adata


def run_neighbors_umap(
    adata,
    n_neighbors=REDUCTION_PARAMS["n_neighbors"],
    n_pcs=REDUCTION_PARAMS["n_pcs"],
    random_state=REDUCTION_PARAMS["random_state"],
):
    """Build the kNN graph on the leading PCs and embed with UMAP"""
    n_pcs = min(int(n_pcs), adata.obsm["X_pca"].shape[1])

    print(f"Computing neighborhood graph ({n_pcs} PCs, {n_neighbors} neighbors)...")
    sc.pp.neighbors(
        adata, n_neighbors=n_neighbors, n_pcs=n_pcs, random_state=random_state
    )

    print("Running UMAP...")
    sc.tl.umap(adata, random_state=random_state)

    return adata


def run_clustering(
    adata,
    resolution=CLUSTERING_PARAMS["resolution"],
    key=CLUSTERING_PARAMS["key"],
    random_state=CLUSTERING_PARAMS["random_state"],
):
    """Partition the neighborhood graph with Leiden

    Labels are "0".."k-1", ordered by decreasing cluster size.

    Args:
        adata: AnnData object with a neighbors graph
        resolution: Leiden resolution
        key: obs column to write labels to
        random_state: Seed for the partitioning

    Returns:
        AnnData object with cluster labels in .obs[key]
    """
    print(f"Clustering (Leiden, resolution={resolution})...")
    sc.tl.leiden(
        adata,
        resolution=float(resolution),
        key_added=key,
        random_state=random_state,
        flavor="igraph",
        n_iterations=2,
        directed=False,
    )

    labels = adata.obs[key].astype(str)
    order = labels.value_counts().index
    relabel = {old: str(new) for new, old in enumerate(order)}
    adata.obs[key] = pd.Categorical(
        labels.map(relabel), categories=[str(i) for i in range(len(order))]
    )

    check_cluster_assignment(adata, key)

    print(f"  Found {len(order)} clusters")
    print(adata.obs[key].value_counts().sort_index().to_string())

    return adata


def check_cluster_assignment(adata, key=CLUSTERING_PARAMS["key"]):
    """Verify that every cell carries exactly one cluster label"""
    if key not in adata.obs:
        raise KeyError(f"Cluster key '{key}' not found in adata.obs")

    n_missing = int(adata.obs[key].isna().sum())
    if n_missing:
        raise ValueError(f"{n_missing} cells have no '{key}' cluster label")

    return True


def plot_embeddings(adata, key=CLUSTERING_PARAMS["key"], save_dir=None):
    """Plot UMAP embedding coloured by cluster

    Args:
        adata: AnnData object with UMAP coordinates
        key: Cluster column to colour by
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting embeddings...")

    fig, ax = plt.subplots()
    sc.pl.umap(
        adata,
        color=key,
        legend_loc="on data",
        title="Leiden clustering",
        ax=ax,
        show=False,
    )
    finish_figure(fig, save_dir, "umap_clusters.png", size="umap")


def choose_leiden_resolution(
    adata,
    resolution_grid=None,
    min_cluster_size=20,
    save_dir=None,
    table_dir=None,
):
    """Pick a Leiden resolution for the PBMC graph by silhouette.

    Each resolution of the grid is clustered on the current neighbors graph
    and scored by its silhouette in PCA space. Resolutions within 0.02 of the
    best silhouette are tie-broken by the share of cells in clusters smaller
    than `min_cluster_size`, then by cluster count, then by resolution.

    Args:
        adata: AnnData object with X_pca and a neighbors graph
        resolution_grid: Resolutions to try (default 0.2 to 1.4 by 0.1)
        min_cluster_size: Clusters below this size count as small
        save_dir: Directory for the diagnostic plot (optional)
        table_dir: Directory for the sweep and per-cell label tables
            (defaults to save_dir)

    Returns:
        Chosen resolution (float). One `leiden_{res:.2f}` column per tested
        resolution is left in adata.obs.
    """
    if resolution_grid is None:
        resolution_grid = np.round(np.arange(0.2, 1.45, 0.1), 2)

    pcs = adata.obsm["X_pca"]
    small = max(2, int(min_cluster_size))

    rows = []
    for res in resolution_grid:
        col = f"leiden_{res:.2f}"
        run_clustering(adata, resolution=res, key=col)
        labels = adata.obs[col]
        sizes = labels.value_counts()

        row = {
            "resolution": float(res),
            "n_clusters": len(sizes),
            "silhouette": np.nan,
            "small_cluster_fraction": 0.0,
        }
        # Silhouette needs 2 <= n_clusters <= n_cells - 1
        if 1 < len(sizes) < adata.n_obs:
            row["silhouette"] = float(silhouette_score(pcs, labels.astype(str)))
            row["small_cluster_fraction"] = float(sizes[sizes < small].sum() / adata.n_obs)
        rows.append(row)

    sweep = pd.DataFrame(rows)
    label_cols = [f"leiden_{res:.2f}" for res in sweep["resolution"]]

    scored = sweep.dropna(subset=["silhouette"])
    if scored.empty:
        # Nothing split the graph
        chosen_res = float(sweep["resolution"].min())
    else:
        best = scored["silhouette"].max()
        candidates = scored[scored["silhouette"] >= best - 0.02]
        ranked = candidates.sort_values(
            ["small_cluster_fraction", "n_clusters", "resolution"]
        )
        chosen_res = float(ranked["resolution"].iloc[0])
    print(f"Chosen Leiden resolution: {chosen_res}")

    table_dir = table_dir or save_dir
    if table_dir:
        table_dir = Path(table_dir)
        write_table(sweep, table_dir / "leiden_resolution_sweep.csv")
        # One column per resolution, readable by clustree
        per_cell = adata.obs[label_cols].rename_axis("cell").reset_index()
        write_table(per_cell, table_dir / "clustree_leiden_labels.csv")

    if save_dir:
        _plot_resolution_sweep(sweep, chosen_res, save_dir)

    return chosen_res


def _plot_resolution_sweep(sweep, chosen_res, save_dir):
    fig, sil_ax = plt.subplots()
    count_ax = sil_ax.twinx()

    sil_ax.plot(sweep["resolution"], sweep["silhouette"], marker="o", color="tab:blue")
    count_ax.plot(sweep["resolution"], sweep["n_clusters"], marker="s", color="tab:orange")
    sil_ax.axvline(chosen_res, color="gray", linestyle=":")

    sil_ax.set_xlabel("Resolution")
    sil_ax.set_ylabel("Mean silhouette", color="tab:blue")
    count_ax.set_ylabel("Clusters", color="tab:orange")
    sil_ax.set_title(f"Leiden sweep (chosen {chosen_res:g})")
    fig.tight_layout()

    finish_figure(fig, save_dir, "leiden_sweep_diagnostics.png", size="resolution_sweep")
