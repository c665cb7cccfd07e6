"""Unit tests for workshop figures."""

import pandas as pd
import pytest

from scrna_workshop.core.clustering import ClusteringEngine, ClusteringConfig
from scrna_workshop.core.preprocessing import CellQC, NormalizationConfig, Normalizer
from scrna_workshop.viz import (
    dotplot_table,
    get_color_palette,
    plot_elbow,
    plot_features,
    plot_marker_heatmap,
    plot_pca,
    plot_pca_loadings,
    plot_qc_scatter,
    plot_qc_violin,
    plot_resolution_sweep,
    plot_split_dotplot,
    plot_umap,
    plot_variable_genes,
)
from scrna_workshop.viz.style import UNASSIGNED_COLOR
from tests.fixtures import PLANTED_MARKERS


def _is_png(path):
    return path.exists() and path.read_bytes()[:4] == b"\x89PNG"


class TestStyle:
    """Tests for palette helpers."""

    def test_unassigned_labels_gray(self):
        """Test Unknown-style labels get the gray color."""
        colors = get_color_palette(["T cells", "Unknown", "B cells", "pruned"])

        assert colors["Unknown"] == UNASSIGNED_COLOR
        assert colors["pruned"] == UNASSIGNED_COLOR
        assert colors["T cells"] != colors["B cells"]

    def test_many_labels(self):
        """Test large label sets still get distinct colors."""
        labels = [f"type{i}" for i in range(25)]
        assert len(set(get_color_palette(labels).values())) == 25


class TestDotplotTable:
    """Tests for dotplot_table."""

    def test_split_by_condition(self, processed_adata):
        """Test one row per group, condition and gene."""
        table = dotplot_table(processed_adata, ["CD3E", "LYZ"], "cell_type", split_by="group_id")

        assert list(table.columns) == ["group", "condition", "gene", "mean", "pct"]
        assert len(table) == 4 * 2 * 2
        t_cells = table[(table["group"] == "T cells") & (table["gene"] == "CD3E")]
        b_cells = table[(table["group"] == "B cells") & (table["gene"] == "CD3E")]
        assert (t_cells["pct"] == 1.0).all()
        assert t_cells["mean"].min() > b_cells["mean"].max()

    def test_unsplit(self, processed_adata):
        """Test the condition column is empty without split_by."""
        table = dotplot_table(processed_adata, ["CD3E"], "leiden")
        assert set(table["condition"]) == {""}
        assert len(table) == 4

    def test_missing_column(self, processed_adata):
        """Test a missing groupby column raises KeyError."""
        with pytest.raises(KeyError):
            dotplot_table(processed_adata, ["CD3E"], "seurat_clusters")


class TestPlots:
    """Tests that figures are written as PNG files."""

    def test_qc_plots(self, mock_counts, tmp_path):
        """Test QC violin and scatter plots."""
        CellQC().compute_metrics(mock_counts)
        assert _is_png(plot_qc_violin(mock_counts, tmp_path / "qc" / "violin.png"))
        assert _is_png(plot_qc_scatter(mock_counts, tmp_path / "qc" / "scatter.png"))

    def test_qc_plots_need_metrics(self, mock_counts, tmp_path):
        """Test missing QC metrics raise KeyError."""
        with pytest.raises(KeyError):
            plot_qc_violin(mock_counts, tmp_path / "violin.png")

    def test_normalization_and_pca_plots(self, mock_counts, tmp_path):
        """Test variable gene, loading, PCA and elbow plots."""
        Normalizer(NormalizationConfig(flavor="seurat", n_top_genes=20)).run(mock_counts)
        engine = ClusteringEngine(ClusteringConfig(n_comps=5))
        engine.run_pca(mock_counts)

        assert _is_png(plot_variable_genes(mock_counts, tmp_path / "hvg.png"))
        assert _is_png(plot_pca_loadings(mock_counts, tmp_path / "loadings.png"))
        assert _is_png(plot_pca(mock_counts, tmp_path / "pca.png", color="population"))
        assert _is_png(plot_elbow(engine.elbow_table(mock_counts), tmp_path / "elbow.png"))

    def test_cluster_plots(self, processed_adata, tmp_path):
        """Test UMAP and marker heatmap plots."""
        genes = [g for group in PLANTED_MARKERS.values() for g in group]
        assert _is_png(plot_umap(processed_adata, tmp_path / "umap.png", color="leiden"))
        assert _is_png(
            plot_marker_heatmap(processed_adata, genes, "leiden", tmp_path / "heatmap.png")
        )

    def test_condition_plots(self, processed_adata, tmp_path):
        """Test split dot plot and split feature plots."""
        path = plot_split_dotplot(
            processed_adata, ["CD3E", "LYZ", "ISG15"], "cell_type", "group_id",
            tmp_path / "dotplot.png",
        )
        assert _is_png(path)
        path = plot_features(
            processed_adata, ["LYZ", "ISG15"], tmp_path / "features.png", split_by="group_id"
        )
        assert _is_png(path)

    def test_features_missing_basis(self, processed_adata, tmp_path):
        """Test a missing embedding raises KeyError."""
        with pytest.raises(KeyError):
            plot_features(processed_adata, ["LYZ"], tmp_path / "f.png", basis="X_tsne")

    def test_sweep_plot(self, tmp_path):
        """Test resolution and dims sweeps are plotted."""
        sweep = pd.DataFrame({"resolution": [0.1, 0.5, 1.0], "n_clusters": [3, 5, 8]})
        dims = pd.DataFrame({"n_pcs": [5, 10], "n_clusters": [4, 6]})
        assert _is_png(plot_resolution_sweep(sweep, tmp_path / "sweep.png"))
        assert _is_png(plot_resolution_sweep(dims, tmp_path / "dims.png"))
