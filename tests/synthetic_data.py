"""
Synthetic PBMC-like count matrices for the tests.

Three cell groups each carry their own block of strongly expressed marker
genes, next to a handful of mitochondrial genes and background genes.
Optional low-quality barcodes (high mitochondrial fraction, near-empty) are
appended for QC to remove.
"""

import gzip

import anndata as ad
import numpy as np
import pandas as pd
from scipy import sparse

GROUP_MARKERS = {
    "B": ["MS4A1", "CD79A"],
    "NK": ["GNLY", "NKG7"],
    "Mono": ["CD14", "LYZ"],
}
N_MT = 10
N_MARKERS = 30


def make_pbmc_counts(
    n_per_group=60,
    n_genes=500,
    n_high_mt=0,
    n_sparse=0,
    seed=0,
):
    """Build a synthetic cells x genes count AnnData

    Columns: N_MT mitochondrial genes, then one block of N_MARKERS marker
    genes per group (the first named after GROUP_MARKERS), then background
    genes. obs["group"] holds the true group ("low_quality" for extra cells).
    """
    rng = np.random.default_rng(seed)
    groups = list(GROUP_MARKERS)

    gene_names = [f"MT-GENE{i}" for i in range(N_MT)]
    for group in groups:
        named = GROUP_MARKERS[group]
        gene_names += named + [f"{group}_MARKER{i}" for i in range(N_MARKERS - len(named))]
    gene_names += [f"GENE{i}" for i in range(n_genes - len(gene_names))]

    n_cells = n_per_group * len(groups)
    lam = np.full((n_cells, n_genes), 1.0)
    lam[:, :N_MT] = 0.3
    labels = []
    for g_idx, group in enumerate(groups):
        rows = slice(g_idx * n_per_group, (g_idx + 1) * n_per_group)
        start = N_MT + g_idx * N_MARKERS
        lam[rows, start : start + N_MARKERS] = 10.0
        labels += [group] * n_per_group

    extra = []
    if n_high_mt:
        high_mt = np.full((n_high_mt, n_genes), 1.0)
        high_mt[:, :N_MT] = 40.0
        extra.append(high_mt)
        labels += ["low_quality"] * n_high_mt
    if n_sparse:
        extra.append(np.full((n_sparse, n_genes), 0.1))
        labels += ["low_quality"] * n_sparse
    if extra:
        lam = np.vstack([lam] + extra)

    counts = rng.poisson(lam)

    adata = ad.AnnData(sparse.csr_matrix(counts))
    adata.obs_names = [f"CELL{i:04d}-1" for i in range(counts.shape[0])]
    adata.var_names = gene_names
    adata.var["gene_ids"] = [f"ENSG{i:011d}" for i in range(n_genes)]
    adata.obs["group"] = pd.Categorical(labels)
    return adata


def write_10x(adata, out_dir, legacy=False):
    """Write an AnnData as a 10x triplet (genes x cells Matrix Market)"""
    out_dir.mkdir(parents=True, exist_ok=True)
    matrix = sparse.coo_matrix(adata.X.T)

    with gzip.open(out_dir / "matrix.mtx.gz", "wt") as f:
        f.write("%%MatrixMarket matrix coordinate integer general\n")
        f.write(f"{matrix.shape[0]} {matrix.shape[1]} {matrix.nnz}\n")
        for row, col, value in zip(matrix.row, matrix.col, matrix.data):
            f.write(f"{row + 1} {col + 1} {int(value)}\n")

    with gzip.open(out_dir / "barcodes.tsv.gz", "wt") as f:
        f.write("\n".join(adata.obs_names) + "\n")

    if legacy:
        with open(out_dir / "genes.tsv", "w") as f:
            for gene_id, symbol in zip(adata.var["gene_ids"], adata.var_names):
                f.write(f"{gene_id}\t{symbol}\n")
    else:
        with gzip.open(out_dir / "features.tsv.gz", "wt") as f:
            for gene_id, symbol in zip(adata.var["gene_ids"], adata.var_names):
                f.write(f"{gene_id}\t{symbol}\tGene Expression\n")

    return out_dir

