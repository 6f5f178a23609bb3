#!/usr/bin/env python3
"""
Trajectory inference for single-cell RNA-seq analysis
Learns a cluster-level graph (PAGA) and orders cells by diffusion pseudotime
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import scanpy as sc

from scrna.data_loader import write_table
from scrna.figures import finish_figure
from scrna.parameters import CLUSTERING_PARAMS, REDUCTION_PARAMS, TRAJECTORY_PARAMS


def select_root_cell(adata, root_cluster, cluster_key=CLUSTERING_PARAMS["key"]):
    """Return the index of the root-cluster cell nearest its PCA centroid"""
    clusters = adata.obs[cluster_key].astype(str)
    members = np.flatnonzero(clusters.values == str(root_cluster))
    if members.size == 0:
        raise ValueError(
            f"Root cluster '{root_cluster}' not found; observed clusters: "
            f"{', '.join(sorted(clusters.unique()))}"
        )

    coords = adata.obsm["X_pca"][members]
    centroid = coords.mean(axis=0)
    nearest = np.argmin(((coords - centroid) ** 2).sum(axis=1))
    return int(members[nearest])


def trajectory_tree_edges(tdata, cluster_key=CLUSTERING_PARAMS["key"]):
    """Tabulate the PAGA spanning tree as cluster pairs

    Empty when PAGA was skipped because there was a single cluster.
    """
    columns = ["source", "target", "connectivity"]
    if "paga" not in tdata.uns:
        return pd.DataFrame(columns=columns)

    tree = tdata.uns["paga"]["connectivities_tree"].tocoo()
    names = list(tdata.obs[cluster_key].cat.categories)
    connectivities = tdata.uns["paga"]["connectivities"].tocsr()

    rows = []
    for i, j in zip(tree.row, tree.col):
        a, b = sorted((int(i), int(j)))
        rows.append(
            {
                "source": names[a],
                "target": names[b],
                "connectivity": float(connectivities[a, b]),
            }
        )

    edges = pd.DataFrame(rows, columns=columns)
    return edges.drop_duplicates(subset=["source", "target"]).reset_index(drop=True)


def run_trajectory(
    adata,
    root_cluster=TRAJECTORY_PARAMS["root_cluster"],
    cluster_key=CLUSTERING_PARAMS["key"],
    max_cells=TRAJECTORY_PARAMS["max_cells"],
    n_neighbors=TRAJECTORY_PARAMS["n_neighbors"],
    n_pcs=REDUCTION_PARAMS["n_pcs"],
    n_dcs=TRAJECTORY_PARAMS["n_dcs"],
    random_state=TRAJECTORY_PARAMS["random_state"],
    save_dir=None,
    table_dir=None,
):
    """Infer a tree-structured trajectory and pseudotime ordering

    Works on a separate copy of the data, subsampled to `max_cells` to bound
    the memory of the graph computations. The root cell (the `root_cluster`
    cell nearest its PCA centroid) is chosen on the full data and always
    kept. The neighborhood graph is rebuilt on the PCA embedding, PAGA
    learns the cluster graph and its spanning tree (skipped when only one
    cluster is left), and diffusion pseudotime orders cells from the root. Pseudotime is copied back to `adata.obs["dpt_pseudotime"]`
    (NaN for cells left out by subsampling or unreachable from the root).

    Args:
        adata: AnnData object with X_pca and cluster labels
        root_cluster: Cluster id the trajectory starts from
        cluster_key: Cluster column in adata.obs
        max_cells: Subsample above this many cells (None = never)
        n_neighbors: Neighbors for the rebuilt graph
        n_pcs: Leading PCs for the rebuilt graph
        n_dcs: Diffusion components used for pseudotime
        random_state: Seed for subsampling and graph construction
        save_dir: Directory to save plots (optional)
        table_dir: Directory to save CSV tables (optional, defaults to save_dir)

    Returns:
        The trajectory AnnData copy with PAGA and pseudotime results
    """
    if cluster_key not in adata.obs:
        raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")
    # Chosen on the full object and always kept, so subsampling cannot lose it
    root_cell = adata.obs_names[select_root_cell(adata, root_cluster, cluster_key)]

    print("Running trajectory inference...")

    if max_cells is not None and adata.n_obs > max_cells:
        print(f"  Subsampling {adata.n_obs:,} cells to {max_cells:,} (root cell kept)")
        rng = np.random.default_rng(random_state)
        others = np.flatnonzero(adata.obs_names != root_cell)
        picked = rng.choice(others, size=int(max_cells) - 1, replace=False)
        keep = np.sort(np.append(picked, adata.obs_names.get_loc(root_cell)))
        tdata = adata[keep].copy()
    else:
        tdata = adata.copy()

    # Clusters dropped by subsampling must not appear in the graph
    tdata.obs[cluster_key] = (
        tdata.obs[cluster_key].astype(str).astype("category")
    )
    tdata.obs[cluster_key] = tdata.obs[cluster_key].cat.reorder_categories(
        sorted(tdata.obs[cluster_key].cat.categories, key=lambda c: (len(c), c))
    )
    n_clusters = len(tdata.obs[cluster_key].cat.categories)

    n_pcs = min(int(n_pcs), tdata.obsm["X_pca"].shape[1])
    n_neighbors = min(int(n_neighbors), tdata.n_obs - 1)
    print(f"  Rebuilding graph ({n_pcs} PCs, {n_neighbors} neighbors)...")
    sc.pp.neighbors(
        tdata,
        n_neighbors=n_neighbors,
        n_pcs=n_pcs,
        use_rep="X_pca",
        random_state=random_state,
    )

    if n_clusters > 1:
        print("  Learning cluster graph (PAGA)...")
        sc.tl.paga(tdata, groups=cluster_key)
    else:
        print("  Single cluster: no cluster graph to learn, skipping PAGA")

    print("  Computing diffusion pseudotime...")
    n_comps = min(max(int(n_dcs), 15), tdata.n_obs - 2)
    sc.tl.diffmap(tdata, n_comps=n_comps)
    tdata.uns["iroot"] = tdata.obs_names.get_loc(root_cell)
    sc.tl.dpt(tdata, n_dcs=min(int(n_dcs), n_comps))

    pseudotime = tdata.obs["dpt_pseudotime"].replace([np.inf, -np.inf], np.nan)
    tdata.obs["dpt_pseudotime"] = pseudotime
    adata.obs["dpt_pseudotime"] = pseudotime.reindex(adata.obs_names)

    n_ordered = int(pseudotime.notna().sum())
    print(f"  Ordered {n_ordered:,} of {tdata.n_obs:,} cells from cluster {root_cluster}")

    edges = trajectory_tree_edges(tdata, cluster_key)

    table_dir = table_dir or save_dir
    if table_dir:
        table_dir = Path(table_dir)
        write_table(edges, table_dir / "trajectory_tree_edges.csv")
        pseudotime_df = pd.DataFrame(
            {
                "cell": tdata.obs_names,
                "cluster": tdata.obs[cluster_key].astype(str).values,
                "pseudotime": pseudotime.values,
            }
        )
        write_table(pseudotime_df, table_dir / "pseudotime.csv")

    if save_dir:
        plot_trajectory(tdata, cluster_key, save_dir=save_dir)

    return tdata


def plot_trajectory(tdata, cluster_key=CLUSTERING_PARAMS["key"], save_dir=None):
    """Plot the PAGA graph and pseudotime on the UMAP embedding

    Args:
        tdata: Trajectory AnnData returned by run_trajectory
        cluster_key: Cluster column
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting trajectory...")

    if "paga" in tdata.uns:
        fig, ax = plt.subplots()
        sc.pl.paga(tdata, color=cluster_key, ax=ax, show=False)
        finish_figure(fig, save_dir, "trajectory_paga.png", size="paga")

    if "X_umap" not in tdata.obsm:
        return

    fig, axes = plt.subplots(1, 2)
    sc.pl.umap(
        tdata,
        color="dpt_pseudotime",
        color_map="viridis",
        title="Pseudotime",
        ax=axes[0],
        show=False,
    )
    sc.pl.umap(
        tdata,
        color=cluster_key,
        edges=True,
        legend_loc="on data",
        title="Trajectory graph",
        ax=axes[1],
        show=False,
    )
    plt.tight_layout()
    finish_figure(fig, save_dir, "trajectory_pseudotime_umap.png", size="pseudotime")
