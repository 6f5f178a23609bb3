"""Tests for the parameter module and figure output."""

import matplotlib.pyplot as plt
import pytest

from scrna import parameters
from scrna.figures import finish_figure


@pytest.mark.unit
class TestParameters:
    def test_defaults_are_valid(self):
        assert parameters.validate_parameters()

    def test_reference_thresholds(self):
        assert parameters.CELL_FILTERS == {
            "min_genes": 200,
            "max_genes": 2500,
            "max_mt_pct": 5,
        }
        assert parameters.MARKER_PARAMS["n_top"] == 10

    def test_inverted_gene_bounds(self, monkeypatch):
        monkeypatch.setitem(parameters.CELL_FILTERS, "min_genes", 3000)

        with pytest.raises(ValueError, match="min_genes must be less than max_genes"):
            parameters.validate_parameters()

    def test_reports_every_violation(self, monkeypatch):
        monkeypatch.setitem(parameters.CELL_FILTERS, "max_mt_pct", 150)
        monkeypatch.setitem(parameters.REDUCTION_PARAMS, "n_pcs", 80)

        with pytest.raises(ValueError) as excinfo:
            parameters.validate_parameters()

        assert "max_mt_pct" in str(excinfo.value)
        assert "n_pcs" in str(excinfo.value)

    def test_summary_lists_thresholds(self):
        summary = parameters.get_parameter_summary()

        assert "> 200 and < 2500" in summary
        assert "Leiden resolution: 0.5" in summary


@pytest.mark.unit
class TestFinishFigure:
    def test_saves_at_fixed_size(self, tmp_path):
        fig, ax = plt.subplots()
        ax.plot([0, 1], [0, 1])

        path = finish_figure(fig, tmp_path / "figs", "line.png", size="umap")

        assert path == tmp_path / "figs" / "line.png"
        assert path.exists()
        assert tuple(fig.get_size_inches()) == parameters.PLOT_PARAMS["sizes"]["umap"]

    def test_explicit_size(self, tmp_path):
        fig, _ = plt.subplots()

        finish_figure(fig, tmp_path, "blank.png", size=(3, 2))

        assert tuple(fig.get_size_inches()) == (3, 2)

    def test_shows_without_save_dir(self, monkeypatch):
        shown = []
        monkeypatch.setattr(plt, "show", lambda: shown.append(True))
        fig, _ = plt.subplots()

        assert finish_figure(fig) is None
        assert shown == [True]
