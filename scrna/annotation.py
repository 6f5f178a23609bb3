#!/usr/bin/env python3
"""
Cell type annotation utilities for single-cell RNA-seq analysis
Handles the hand-curated cluster -> cell type table and marker panel scoring
"""

import json
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import scanpy as sc

from scrna.data_loader import write_table
from scrna.figures import finish_figure
from scrna.parameters import CLUSTERING_PARAMS

# Module-level constants: single sources of truth
CLUSTER_LABELS = {
    "0": "Naive CD4 T",
    "1": "CD14+ Mono",
    "2": "Memory CD4 T",
    "3": "B",
    "4": "CD8 T",
    "5": "FCGR3A+ Mono",
    "6": "NK",
    "7": "DC",
    "8": "Platelet",
}

CANONICAL_MARKERS = {
    "Naive CD4 T": ["IL7R", "CCR7"],
    "Memory CD4 T": ["IL7R", "S100A4"],
    "CD14+ Mono": ["CD14", "LYZ"],
    "B": ["MS4A1"],
    "CD8 T": ["CD8A"],
    "FCGR3A+ Mono": ["FCGR3A", "MS4A7"],
    "NK": ["GNLY", "NKG7"],
    "DC": ["FCER1A", "CST3"],
    "Platelet": ["PPBP"],
}

FEATURE_GENES = ["MS4A1", "GNLY", "CD3E", "CD14", "FCER1A", "FCGR3A", "LYZ", "PPBP", "CD8A"]


def load_cluster_labels(path):
    """Load a cluster -> cell type table

    Args:
        path: JSON file ({"0": "B", ...}) or CSV with columns cluster,cell_type

    Returns:
        Dict mapping cluster id (str) to label
    """
    path = Path(path)
    if path.suffix == ".json":
        with open(path) as f:
            labels = json.load(f)
    elif path.suffix == ".csv":
        table = pd.read_csv(path, dtype=str)
        if not {"cluster", "cell_type"} <= set(table.columns):
            raise ValueError(f"{path} must have 'cluster' and 'cell_type' columns")
        labels = dict(zip(table["cluster"], table["cell_type"]))
    else:
        raise ValueError(f"Unsupported label table format: {path.suffix}")

    return {str(k).strip(): str(v).strip() for k, v in labels.items()}


def annotate_clusters(
    adata,
    labels=CLUSTER_LABELS,
    cluster_key=CLUSTERING_PARAMS["key"],
    label_key="cell_type",
    unassigned_label=None,
):
    """Assign a cell type label to every cell from its cluster id

    Several clusters may share a label. The table must cover every observed
    cluster unless `unassigned_label` is given, in which case uncovered
    clusters receive that label.

    Args:
        adata: AnnData object with clustering results
        labels: Dict mapping cluster id to label
        cluster_key: Cluster column in adata.obs
        label_key: Column to write labels to
        unassigned_label: Fallback label for clusters missing from the table

    Returns:
        Dict of the cluster -> label mapping actually applied
    """
    if cluster_key not in adata.obs:
        raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")

    clusters = adata.obs[cluster_key].astype(str)
    observed = sorted(clusters.unique(), key=lambda c: (len(c), c))
    missing = [c for c in observed if c not in labels]

    if missing and unassigned_label is None:
        raise ValueError(
            f"No cell type label for clusters: {', '.join(missing)}"
        )

    applied = {c: labels.get(c, unassigned_label) for c in observed}
    unused = sorted(set(labels) - set(observed))
    if unused:
        print(f"  Labels for absent clusters ignored: {', '.join(unused)}")

    categories = list(dict.fromkeys(applied[c] for c in observed))
    adata.obs[label_key] = pd.Categorical(clusters.map(applied), categories=categories)

    print("Cluster annotation:")
    for cluster_id in observed:
        n_cells = int((clusters == cluster_id).sum())
        print(f"  {cluster_id}: {applied[cluster_id]} ({n_cells:,} cells)")

    return applied


def suggest_cluster_labels(
    adata,
    panels=CANONICAL_MARKERS,
    cluster_key=CLUSTERING_PARAMS["key"],
    agg="median",
    save_dir=None,
):
    """Score marker panels per cluster to guide manual annotation.

    Each cell gets the mean log expression of each panel's genes; scores are
    aggregated per cluster and the best panel is reported with its margin
    over the runner-up. Nothing is written to adata.obs.

    Args:
        adata: AnnData object with clustering results
        panels: Dict mapping label -> marker genes
        cluster_key: Cluster column in adata.obs
        agg: 'median' or 'mean' aggregation over cells
        save_dir: Optional directory for the CSV table

    Returns:
        DataFrame indexed by cluster with one score column per panel plus
        'suggested_label' and 'margin'
    """
    if cluster_key not in adata.obs:
        raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")

    expr = adata.raw.to_adata() if adata.raw is not None else adata
    var_names = set(expr.var_names)

    cell_scores = {}
    for label, genes in panels.items():
        genes = [g for g in genes if g in var_names]
        if not genes:
            continue
        values = expr[:, genes].X
        values = values.toarray() if hasattr(values, "toarray") else np.asarray(values)
        cell_scores[label] = values.mean(axis=1)

    if not cell_scores:
        print("  No panel genes found in data")
        return pd.DataFrame()

    scores = pd.DataFrame(cell_scores, index=adata.obs_names)
    scores[cluster_key] = adata.obs[cluster_key].astype(str).values
    grouped = scores.groupby(cluster_key)
    grouped = grouped.median() if agg == "median" else grouped.mean()

    values = grouped.to_numpy()
    top_idx = np.argmax(values, axis=1)
    if values.shape[1] > 1:
        # second best via partial sort
        second_best = np.partition(values, -2, axis=1)[:, -2]
    else:
        second_best = np.zeros(values.shape[0])
    best = values[np.arange(values.shape[0]), top_idx]

    grouped["suggested_label"] = np.array(grouped.columns)[top_idx]
    grouped["margin"] = best - second_best
    grouped.index.name = "cluster"

    print("Suggested labels from marker panels:")
    for cluster_id, row in grouped.iterrows():
        print(f"  {cluster_id}: {row['suggested_label']} (margin {row['margin']:.2f})")

    if save_dir is not None:
        write_table(grouped, Path(save_dir) / "suggested_cluster_labels.csv", index=True)

    return grouped


def plot_annotated_umap(adata, label_key="cell_type", save_dir=None):
    """Plot UMAP coloured by assigned cell type"""
    fig, ax = plt.subplots()
    sc.pl.umap(
        adata,
        color=label_key,
        legend_loc="on data",
        legend_fontsize=8,
        title="Cell types",
        ax=ax,
        show=False,
    )
    finish_figure(fig, save_dir, "umap_cell_types.png", size="umap")


def plot_cell_type_summary(adata, label_key="cell_type", save_dir=None):
    """Plot number of cells per cell type

    Args:
        adata: AnnData object with cell type annotations
        label_key: Cell type column
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    counts = adata.obs[label_key].value_counts()

    fig, ax = plt.subplots()
    counts.plot(kind="bar", ax=ax, color="steelblue")
    ax.set_title("Cells per cell type")
    ax.set_xlabel("")
    ax.set_ylabel("Number of cells")
    plt.xticks(rotation=45, ha="right")
    plt.tight_layout()
    finish_figure(fig, save_dir, "celltype_distribution.png", size="celltype_summary")

    # Print summary table
    print("\nCell type summary:")
    print(counts.to_string())
