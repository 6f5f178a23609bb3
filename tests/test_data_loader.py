"""Tests for 10x triplet loading and result export."""

import gzip

import numpy as np
import pandas as pd
import pytest

from scrna.data_loader import load_10x_mtx, write_results, write_table
from tests.synthetic_data import make_pbmc_counts, write_10x


@pytest.mark.unit
class TestLoad10xMtx:
    def test_loads_cells_by_genes(self, tenx_dir):
        expected = make_pbmc_counts(n_high_mt=8, n_sparse=8)

        adata = load_10x_mtx(tenx_dir)

        assert adata.shape == expected.shape
        assert list(adata.obs_names) == list(expected.obs_names)
        assert list(adata.var_names) == list(expected.var_names)
        assert list(adata.var["gene_ids"]) == list(expected.var["gene_ids"])
        assert set(adata.var["feature_types"]) == {"Gene Expression"}
        np.testing.assert_array_equal(adata.X.toarray(), expected.X.toarray())

    def test_keeps_untouched_counts_layer(self, tenx_dir):
        adata = load_10x_mtx(tenx_dir)

        assert "counts" in adata.layers
        assert np.issubdtype(adata.layers["counts"].dtype, np.integer)
        assert (adata.layers["counts"] != adata.X).nnz == 0
        assert adata.layers["counts"] is not adata.X

    def test_legacy_genes_file(self, tmp_path):
        expected = make_pbmc_counts(n_per_group=5)
        data_dir = write_10x(expected, tmp_path / "legacy", legacy=True)

        adata = load_10x_mtx(data_dir)

        assert list(adata.var_names) == list(expected.var_names)
        assert "feature_types" not in adata.var

    def test_duplicate_symbols_made_unique(self, tmp_path):
        expected = make_pbmc_counts(n_per_group=5)
        names = list(expected.var_names)
        names[-1] = names[-2]
        expected.var_names = names
        data_dir = write_10x(expected, tmp_path / "dups")

        adata = load_10x_mtx(data_dir)

        assert adata.var_names.is_unique
        assert adata.var_names[-1] == f"{names[-2]}-1"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_10x_mtx(tmp_path / "does_not_exist")

    def test_missing_barcodes(self, tenx_dir):
        (tenx_dir / "barcodes.tsv.gz").unlink()

        with pytest.raises(FileNotFoundError, match="barcodes"):
            load_10x_mtx(tenx_dir)

    def test_shape_mismatch(self, tenx_dir):
        with gzip.open(tenx_dir / "barcodes.tsv.gz", "rt") as f:
            barcodes = f.read().splitlines()
        with gzip.open(tenx_dir / "barcodes.tsv.gz", "wt") as f:
            f.write("\n".join(barcodes[:-1]) + "\n")

        with pytest.raises(ValueError, match="does not match"):
            load_10x_mtx(tenx_dir)


@pytest.mark.unit
class TestWriters:
    def test_write_table(self, tmp_path):
        df = pd.DataFrame({"cluster": ["0", "1"], "gene": ["MS4A1", "LYZ"]})

        path = write_table(df, tmp_path / "tables" / "markers.csv")

        assert path.exists()
        pd.testing.assert_frame_equal(pd.read_csv(path, dtype=str), df)

    def test_write_results(self, tmp_path, pbmc_counts):
        import anndata as ad

        path = write_results(pbmc_counts, tmp_path / "out" / "pbmc.h5ad")

        reloaded = ad.read_h5ad(path)
        assert reloaded.shape == pbmc_counts.shape
