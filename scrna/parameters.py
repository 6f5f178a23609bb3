#!/usr/bin/env python3
"""
Analysis parameters for the PBMC single-cell RNA-seq workflow

This file centralizes all thresholds and constants used in the pipeline.
Modify these values to adjust filtering stringency, clustering granularity
and figure output.
"""

# Cell-level filters (strict bounds: min_genes < n_genes < max_genes)
CELL_FILTERS = {
    "min_genes": 200,  # Cells must detect more than this many genes
    "max_genes": 2500,  # ...and fewer than this many (doublet/multiplet guard)
    "max_mt_pct": 5,  # Maximum mitochondrial read percentage
}

# Object-creation floors applied before QC metrics are computed
GENE_FILTERS = {
    "min_cells": 3,  # Minimum cells expressing a gene
    "min_genes_per_cell": 200,  # Minimum genes detected in a cell
}

# Mitochondrial gene pattern
GENE_PATTERNS = {
    "mt_pattern": "MT-",  # Human mitochondrial genes (use "mt-" for mouse)
}

NORMALIZATION_PARAMS = {
    "target_sum": 1e4,  # Counts per cell after library-size normalization
    "n_top_genes": 2000,  # Size of the highly variable gene set
    "hvg_flavor": "seurat",
    "max_scale_value": 10,  # Clip scaled values
}

REDUCTION_PARAMS = {
    "n_comps": 50,  # Principal components computed
    "n_pcs": 10,  # Leading components used for the graph and UMAP (elbow)
    "n_neighbors": 10,
    "random_state": 0,
}

CLUSTERING_PARAMS = {
    "resolution": 0.5,
    "key": "leiden",
    "random_state": 0,
}

MARKER_PARAMS = {
    "method": "wilcoxon",
    "n_top": 10,  # Rows kept per cluster in the marker table
    "min_pct": 0.25,  # Detected in at least 25% of cells of either group
    "logfc_threshold": 0.25,
    "only_positive": True,
}

TRAJECTORY_PARAMS = {
    "root_cluster": "0",
    "max_cells": 20000,  # Subsample above this to bound graph memory
    "n_neighbors": 15,
    "n_dcs": 10,  # Diffusion components used for pseudotime
    "random_state": 0,
}

# Figures are saved at fixed size (inches) and resolution
PLOT_PARAMS = {
    "dpi": 300,
    "sizes": {
        "qc_violin": (12, 5),
        "qc_scatter": (12, 5),
        "qc_true_violin": (12, 5),
        "hvg": (10, 5),
        "elbow": (6, 4),
        "pca_loadings": (10, 4),
        "pca": (6, 5),
        "umap": (7, 6),
        "heatmap": (12, 10),
        "feature": (12, 10),
        "violin": (12, 10),
        "resolution_sweep": (7, 4),
        "celltype_summary": (8, 5),
        "paga": (7, 6),
        "pseudotime": (12, 5),
    },
}


def get_parameter_summary():
    """Return a formatted summary of current parameter settings"""
    summary = [
        "=== Analysis Settings ===",
        "\nCell-level filters:",
        f"  - Genes per cell: > {CELL_FILTERS['min_genes']} and < {CELL_FILTERS['max_genes']}",
        f"  - Max mitochondrial %: < {CELL_FILTERS['max_mt_pct']}%",
        "\nGene-level filters:",
        f"  - Min cells expressing: {GENE_FILTERS['min_cells']}",
        "\nNormalization:",
        f"  - Target sum: {NORMALIZATION_PARAMS['target_sum']:g}",
        f"  - Highly variable genes: {NORMALIZATION_PARAMS['n_top_genes']}",
        "\nReduction and clustering:",
        f"  - PCs used: {REDUCTION_PARAMS['n_pcs']} of {REDUCTION_PARAMS['n_comps']}",
        f"  - Leiden resolution: {CLUSTERING_PARAMS['resolution']}",
        "\nMarkers:",
        f"  - Method: {MARKER_PARAMS['method']}, top {MARKER_PARAMS['n_top']} per cluster",
        "\nTrajectory:",
        f"  - Root cluster: {TRAJECTORY_PARAMS['root_cluster']}",
        f"  - Max cells: {TRAJECTORY_PARAMS['max_cells']:,}",
    ]

    return "\n".join(summary)


# Validation function
def validate_parameters():
    """Validate that parameters make sense"""
    errors = []

    # Check min/max relationships
    if CELL_FILTERS["min_genes"] >= CELL_FILTERS["max_genes"]:
        errors.append("min_genes must be less than max_genes")

    # Check percentage bounds
    if not 0 <= CELL_FILTERS["max_mt_pct"] <= 100:
        errors.append("max_mt_pct must be between 0 and 100")

    if GENE_FILTERS["min_cells"] < 0:
        errors.append("min_cells must be non-negative")

    if NORMALIZATION_PARAMS["n_top_genes"] <= 0:
        errors.append("n_top_genes must be positive")

    if REDUCTION_PARAMS["n_pcs"] > REDUCTION_PARAMS["n_comps"]:
        errors.append("n_pcs must not exceed n_comps")

    if CLUSTERING_PARAMS["resolution"] <= 0:
        errors.append("resolution must be positive")

    if MARKER_PARAMS["n_top"] <= 0:
        errors.append("n_top must be positive")

    if not 0 <= MARKER_PARAMS["min_pct"] <= 1:
        errors.append("min_pct must be between 0 and 1")

    if TRAJECTORY_PARAMS["max_cells"] is not None and TRAJECTORY_PARAMS["max_cells"] < 2:
        errors.append("max_cells must be at least 2")

    if errors:
        raise ValueError("Parameter validation failed:\n" + "\n".join(errors))

    return True


# Run validation on import
validate_parameters()
