"""
Shared fixtures for the PBMC analysis tests.
"""

import logging

import matplotlib

matplotlib.use("Agg")

import pytest

from scrna.processing import (
    normalize_and_scale,
    run_clustering,
    run_neighbors_umap,
    run_pca,
)
from scrna.qc_utils import calculate_qc_metrics, filter_cells, prefilter_genes
from tests.synthetic_data import make_pbmc_counts, write_10x

# Suppress library chatter during testing
logging.getLogger("scanpy").setLevel(logging.ERROR)
logging.getLogger("anndata").setLevel(logging.ERROR)
logging.getLogger("matplotlib").setLevel(logging.ERROR)


@pytest.fixture
def pbmc_counts():
    """Raw synthetic counts with no low-quality cells"""
    adata = make_pbmc_counts()
    adata.layers["counts"] = adata.X.copy()
    return adata


@pytest.fixture
def tenx_dir(tmp_path):
    """10x triplet on disk including low-quality barcodes"""
    adata = make_pbmc_counts(n_high_mt=8, n_sparse=8)
    return write_10x(adata, tmp_path / "filtered_feature_bc_matrix")


@pytest.fixture(scope="session")
def _clustered():
    adata = make_pbmc_counts(n_high_mt=5)
    adata.layers["counts"] = adata.X.copy()
    adata = prefilter_genes(adata)
    adata = calculate_qc_metrics(adata)
    adata = filter_cells(adata)
    adata = normalize_and_scale(adata, n_top_genes=300)
    adata = run_pca(adata, n_comps=20)
    adata = run_neighbors_umap(adata, n_pcs=10)
    adata = run_clustering(adata, resolution=0.5)
    return adata


@pytest.fixture
def clustered_adata(_clustered):
    """Normalized, embedded and clustered synthetic data (fresh copy per test)"""
    return _clustered.copy()
