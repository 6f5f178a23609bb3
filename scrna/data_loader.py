#!/usr/bin/env python3
"""
Data loading utilities for single-cell RNA-seq analysis
Handles 10x Matrix Market triplet loading and result export
"""

import gzip
from pathlib import Path

import anndata
import pandas as pd
from scipy import io, sparse

MATRIX_NAMES = ("matrix.mtx.gz", "matrix.mtx")
BARCODE_NAMES = ("barcodes.tsv.gz", "barcodes.tsv")
FEATURE_NAMES = ("features.tsv.gz", "features.tsv", "genes.tsv.gz", "genes.tsv")


def _find_file(data_dir, candidates):
    for name in candidates:
        path = data_dir / name
        if path.exists():
            return path
    raise FileNotFoundError(
        f"None of {', '.join(candidates)} found in {data_dir}"
    )


def _open(path):
    if path.suffix == ".gz":
        return gzip.open(path, "rb")
    return open(path, "rb")


def _read_tsv(path):
    # keep_default_na=False: gene symbols such as "NA" are identifiers
    return pd.read_csv(
        path, sep="\t", header=None, dtype=str, keep_default_na=False
    )


def load_10x_mtx(data_dir):
    """Load a 10x count matrix from its three companion files

    Args:
        data_dir: Directory holding matrix.mtx.gz, barcodes.tsv.gz and
            features.tsv.gz (or genes.tsv.gz)

    Returns:
        AnnData object (cells x genes) with integer counts in .X and an
        untouched copy in .layers["counts"]
    """
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")

    matrix_path = _find_file(data_dir, MATRIX_NAMES)
    barcodes_path = _find_file(data_dir, BARCODE_NAMES)
    features_path = _find_file(data_dir, FEATURE_NAMES)
    print(f"Loading {matrix_path}")

    with _open(matrix_path) as fh:
        # Stored as genes x cells
        X = sparse.csr_matrix(io.mmread(fh))

    barcodes = _read_tsv(barcodes_path)[0].tolist()
    features = _read_tsv(features_path)

    n_genes, n_cells = X.shape
    if n_genes != len(features) or n_cells != len(barcodes):
        raise ValueError(
            f"Matrix shape {X.shape} does not match {len(features)} features "
            f"x {len(barcodes)} barcodes"
        )

    # Transpose to cells x genes
    adata = anndata.AnnData(X.T.tocsr())
    adata.obs_names = barcodes

    # Legacy genes.tsv has no symbol column; fall back to ids
    symbol_col = 1 if features.shape[1] > 1 else 0
    adata.var_names = features[symbol_col].tolist()
    adata.var["gene_ids"] = features[0].tolist()
    if features.shape[1] > 2:
        adata.var["feature_types"] = features[2].tolist()

    # Make gene names unique
    adata.var_names_make_unique()

    # Immutable count matrix for the rest of the run
    adata.layers["counts"] = adata.X.copy()

    print(f"Loaded {adata.n_obs:,} cells x {adata.n_vars:,} genes")
    return adata


def write_table(df, path, index=False):
    """Write a result table as CSV

    Args:
        df: DataFrame to write
        path: Output CSV path
        index: Whether to include the index

    Returns:
        Path of the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)
    print(f"  Saved: {path}")
    return path


def write_results(adata, path):
    """Persist the analysed AnnData object as .h5ad"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    adata.write(path)
    print(f"Saved analysed data to {path}")
    return path
