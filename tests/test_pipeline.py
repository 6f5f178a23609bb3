"""End-to-end run of the PBMC pipeline on a synthetic 10x directory."""

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from pbmc_analysis import main
from scrna.parameters import CELL_FILTERS
from tests.synthetic_data import make_pbmc_counts, write_10x

EXPECTED_FIGURES = [
    "qc_violin_plots.png",
    "qc_scatter_plots.png",
    "qc_threshold_violins.png",
    "highly_variable_genes.png",
    "pca_elbow_plot.png",
    "umap_clusters.png",
    "top_markers_heatmap.png",
    "feature_plots.png",
    "umap_cell_types.png",
    "celltype_distribution.png",
    "trajectory_paga.png",
    "trajectory_pseudotime_umap.png",
]

EXPECTED_TABLES = [
    "top_markers_by_cluster.csv",
    "suggested_cluster_labels.csv",
    "trajectory_tree_edges.csv",
    "pseudotime.csv",
]


@pytest.fixture
def raw_dir(tmp_path):
    adata = make_pbmc_counts(n_high_mt=6, n_sparse=6)
    return write_10x(adata, tmp_path / "filtered_gene_bc_matrices")


@pytest.mark.integration
class TestPipeline:
    def test_full_run(self, raw_dir, tmp_path):
        out = tmp_path / "results"

        adata = main(
            raw_dir,
            output_dir=out,
            n_top_genes=300,
            unassigned_label="Unassigned",
            trajectory_max_cells=100,
        )

        for name in EXPECTED_FIGURES:
            assert (out / "figures" / name).exists(), name
        for name in EXPECTED_TABLES:
            assert (out / "tables" / name).exists(), name

        # Only the 180 good-quality barcodes survive QC
        assert adata.n_obs == 180
        obs = adata.obs
        assert (obs["n_genes_by_counts"] > CELL_FILTERS["min_genes"]).all()
        assert (obs["n_genes_by_counts"] < CELL_FILTERS["max_genes"]).all()
        assert (obs["percent_mt"] < CELL_FILTERS["max_mt_pct"]).all()

        assert obs["leiden"].notna().all()
        assert obs["cell_type"].notna().all()
        assert "dpt_pseudotime" in obs

        markers = pd.read_csv(
            out / "tables" / "top_markers_by_cluster.csv", dtype={"cluster": str}
        )
        assert (markers.groupby("cluster").size() <= 10).all()

        saved = ad.read_h5ad(out / "pbmc_annotated.h5ad")
        assert saved.n_obs == adata.n_obs
        assert "cell_type" in saved.obs
        assert "X_umap" in saved.obsm
        assert saved.layers["counts"].shape == saved.shape

        # Full count matrix over every gene, not just the HVGs
        counts = ad.read_h5ad(out / "pbmc_filtered_counts.h5ad")
        assert counts.n_obs == adata.n_obs
        assert counts.n_vars == adata.raw.n_vars
        assert counts.n_vars > saved.n_vars
        assert list(counts.obs_names) == list(adata.obs_names)
        np.testing.assert_array_equal(
            counts[:, adata.var_names].X.toarray(), adata.layers["counts"].toarray()
        )

    def test_custom_labels_and_resolution_sweep(self, raw_dir, tmp_path):
        labels = tmp_path / "labels.csv"
        pd.DataFrame(
            {"cluster": [str(i) for i in range(30)], "cell_type": ["PBMC"] * 30}
        ).to_csv(labels, index=False)
        out = tmp_path / "results"

        adata = main(
            raw_dir,
            output_dir=out,
            n_top_genes=300,
            auto_resolution=True,
            labels_path=labels,
            skip_trajectory=True,
        )

        assert set(adata.obs["cell_type"]) == {"PBMC"}
        assert (out / "tables" / "leiden_resolution_sweep.csv").exists()
        assert not (out / "tables" / "pseudotime.csv").exists()

    def test_incomplete_label_table_fails(self, raw_dir, tmp_path):
        labels = tmp_path / "labels.json"
        labels.write_text('{"0": "B"}')

        with pytest.raises(ValueError, match="No cell type label"):
            main(
                raw_dir,
                output_dir=tmp_path / "results",
                n_top_genes=300,
                labels_path=labels,
                skip_trajectory=True,
            )
