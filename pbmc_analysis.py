#!/usr/bin/env python3
"""
PBMC single-cell RNA-seq analysis: QC, clustering, markers, annotation and trajectory

This script performs:
1. 10x count matrix loading
2. Quality control and threshold filtering
3. Normalization, highly variable gene selection and scaling
4. PCA, neighborhood graph, UMAP and Leiden clustering
5. Marker gene discovery per cluster
6. Manual cell type annotation from a cluster -> label table
7. Trajectory inference (PAGA + diffusion pseudotime)

uv run python pbmc_analysis.py --data-dir data/filtered_gene_bc_matrices
"""

import warnings
import argparse
import matplotlib
import scanpy as sc
from pathlib import Path

from scrna.data_loader import load_10x_mtx, write_results
from scrna.qc_utils import (
    prefilter_genes,
    calculate_qc_metrics,
    plot_qc_metrics,
    filter_cells,
)
from scrna.qc_violin_plots import create_qc_violin_plots
from scrna.processing import (
    normalize_and_scale,
    run_pca,
    run_neighbors_umap,
    run_clustering,
    choose_leiden_resolution,
    plot_embeddings,
)
from scrna.markers import (
    find_cluster_markers,
    plot_marker_heatmap,
    plot_feature_genes,
    plot_marker_violins,
)
from scrna.annotation import (
    CLUSTER_LABELS,
    FEATURE_GENES,
    load_cluster_labels,
    annotate_clusters,
    suggest_cluster_labels,
    plot_annotated_umap,
    plot_cell_type_summary,
)
from scrna.trajectory import run_trajectory
from scrna.parameters import (
    CLUSTERING_PARAMS,
    MARKER_PARAMS,
    NORMALIZATION_PARAMS,
    REDUCTION_PARAMS,
    TRAJECTORY_PARAMS,
    get_parameter_summary,
)


def configure_scanpy(verbosity=1):
    """Configure scanpy output for save-only runs"""
    sc.settings.verbosity = verbosity
    sc.settings.set_figure_params(dpi=80, facecolor="white")

    # Set matplotlib backend to non-interactive for save-only mode
    matplotlib.use("Agg")


def main(
    data_dir,
    output_dir="results",
    resolution=CLUSTERING_PARAMS["resolution"],
    auto_resolution=False,
    n_pcs=REDUCTION_PARAMS["n_pcs"],
    n_top_genes=NORMALIZATION_PARAMS["n_top_genes"],
    n_top_markers=MARKER_PARAMS["n_top"],
    labels_path=None,
    unassigned_label=None,
    root_cluster=TRAJECTORY_PARAMS["root_cluster"],
    trajectory_max_cells=TRAJECTORY_PARAMS["max_cells"],
    skip_trajectory=False,
):
    """Main analysis pipeline

    Args:
        data_dir: Directory holding the 10x matrix, barcodes and features files.
        output_dir: Directory for figures/, tables/ and the annotated .h5ad.
        resolution: Leiden resolution (ignored when auto_resolution is set).
        auto_resolution: Choose the resolution by silhouette sweep.
        n_pcs: Leading PCs used for the graph and UMAP.
        n_top_genes: Number of highly variable genes.
        n_top_markers: Markers kept per cluster.
        labels_path: Optional JSON/CSV cluster -> cell type table; defaults to CLUSTER_LABELS.
        unassigned_label: Label for clusters missing from the table (default: fail).
        root_cluster: Cluster the trajectory starts from.
        trajectory_max_cells: Subsample above this many cells for trajectory inference.
        skip_trajectory: Skip trajectory inference.

    Returns:
        Annotated AnnData object
    """
    print("Starting PBMC single-cell analysis pipeline...")

    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    tables_dir = output_dir / "tables"
    figures_dir.mkdir(parents=True, exist_ok=True)
    tables_dir.mkdir(parents=True, exist_ok=True)
    print(f"Outputs will be saved to: {output_dir.absolute()}")

    print("\n" + get_parameter_summary() + "\n")

    cluster_labels = (
        load_cluster_labels(labels_path) if labels_path else CLUSTER_LABELS
    )

    # Step 1: Load data
    adata = load_10x_mtx(data_dir)

    # Step 2: QC metrics
    adata = prefilter_genes(adata)
    adata = calculate_qc_metrics(adata)
    plot_qc_metrics(adata, save_dir=figures_dir)
    create_qc_violin_plots(adata, save_dir=figures_dir)

    # Step 3: Filter cells
    adata = filter_cells(adata)

    # Counts for every gene; the annotated object keeps HVG columns only
    write_results(adata, output_dir / "pbmc_filtered_counts.h5ad")

    # Step 4: Normalize, select HVGs and scale
    adata = normalize_and_scale(adata, n_top_genes=n_top_genes, save_dir=figures_dir)

    # Step 5: PCA, neighbors, UMAP
    adata = run_pca(adata, save_dir=figures_dir)
    adata = run_neighbors_umap(adata, n_pcs=n_pcs)

    # Step 6: Clustering
    if auto_resolution:
        resolution = choose_leiden_resolution(
            adata, save_dir=figures_dir, table_dir=tables_dir
        )
    adata = run_clustering(adata, resolution=resolution)
    plot_embeddings(adata, save_dir=figures_dir)

    # Step 7: Marker genes
    markers_df = find_cluster_markers(adata, n_top=n_top_markers, save_dir=tables_dir)
    plot_marker_heatmap(adata, markers_df, save_dir=figures_dir)
    plot_feature_genes(adata, FEATURE_GENES, save_dir=figures_dir)
    plot_marker_violins(adata, FEATURE_GENES, save_dir=figures_dir)

    # Step 8: Annotation
    suggest_cluster_labels(adata, save_dir=tables_dir)
    annotate_clusters(adata, cluster_labels, unassigned_label=unassigned_label)
    plot_annotated_umap(adata, save_dir=figures_dir)
    plot_cell_type_summary(adata, save_dir=figures_dir)

    # Step 9: Trajectory
    if skip_trajectory:
        print("Skipping trajectory inference")
    else:
        run_trajectory(
            adata,
            root_cluster=root_cluster,
            max_cells=trajectory_max_cells,
            n_pcs=n_pcs,
            save_dir=figures_dir,
            table_dir=tables_dir,
        )

    # Save results
    write_results(adata, output_dir / "pbmc_annotated.h5ad")

    print("Analysis complete!")
    return adata


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="PBMC scRNA-seq QC, clustering, annotation and trajectory"
    )
    parser.add_argument(
        "--data-dir",
        required=True,
        help="Directory with matrix.mtx.gz, barcodes.tsv.gz and features.tsv.gz",
    )
    parser.add_argument(
        "--output-dir",
        default="results",
        help="Directory to write figures, tables and the .h5ad to (default: 'results')",
    )
    parser.add_argument(
        "--resolution",
        type=float,
        default=CLUSTERING_PARAMS["resolution"],
        help=f"Leiden resolution (default: {CLUSTERING_PARAMS['resolution']})",
    )
    parser.add_argument(
        "--auto-resolution",
        action="store_true",
        help="Choose the Leiden resolution by silhouette sweep",
    )
    parser.add_argument(
        "--n-pcs",
        type=int,
        default=REDUCTION_PARAMS["n_pcs"],
        help=f"Principal components used for the graph (default: {REDUCTION_PARAMS['n_pcs']})",
    )
    parser.add_argument(
        "--n-top-genes",
        type=int,
        default=NORMALIZATION_PARAMS["n_top_genes"],
        help=f"Highly variable genes to keep (default: {NORMALIZATION_PARAMS['n_top_genes']})",
    )
    parser.add_argument(
        "--n-top-markers",
        type=int,
        default=MARKER_PARAMS["n_top"],
        help=f"Markers kept per cluster (default: {MARKER_PARAMS['n_top']})",
    )
    parser.add_argument(
        "--labels",
        default=None,
        help="JSON or CSV table mapping cluster ids to cell types",
    )
    parser.add_argument(
        "--unassigned-label",
        default=None,
        help="Label for clusters missing from the table (default: stop with an error)",
    )
    parser.add_argument(
        "--root-cluster",
        default=TRAJECTORY_PARAMS["root_cluster"],
        help=f"Cluster the trajectory starts from (default: {TRAJECTORY_PARAMS['root_cluster']})",
    )
    parser.add_argument(
        "--trajectory-max-cells",
        type=int,
        default=TRAJECTORY_PARAMS["max_cells"],
        help="Subsample above this many cells for trajectory inference",
    )
    parser.add_argument(
        "--skip-trajectory",
        action="store_true",
        help="Skip trajectory inference",
    )
    args = parser.parse_args()

    configure_scanpy()

    # Suppress warnings
    warnings.filterwarnings("ignore")

    adata = main(
        data_dir=args.data_dir,
        output_dir=args.output_dir,
        resolution=args.resolution,
        auto_resolution=args.auto_resolution,
        n_pcs=args.n_pcs,
        n_top_genes=args.n_top_genes,
        n_top_markers=args.n_top_markers,
        labels_path=args.labels,
        unassigned_label=args.unassigned_label,
        root_cluster=args.root_cluster,
        trajectory_max_cells=args.trajectory_max_cells,
        skip_trajectory=args.skip_trajectory,
    )
