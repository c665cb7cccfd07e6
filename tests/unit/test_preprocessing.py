"""Unit tests for preprocessing module."""

import tarfile

import numpy as np
import pytest
import yaml
from scipy import io as spio
from scipy import sparse

from scrna_workshop.core.preprocessing import (
    PBMC3K_URL,
    REASON_COLUMNS,
    CellQC,
    DataLoader,
    LoaderConfig,
    NormalizationConfig,
    Normalizer,
    PreprocessingConfig,
    QCConfig,
)
from tests.fixtures import MITO_GENES


def _write_10x(adata, directory):
    """Write a legacy (CellRanger 2) 10x matrix directory."""
    directory.mkdir(parents=True)
    spio.mmwrite(str(directory / "matrix.mtx"), sparse.coo_matrix(adata.X.T.astype(np.int64)))
    with open(directory / "genes.tsv", "w") as f:
        for i, gene in enumerate(adata.var_names):
            f.write(f"ENSG{i:08d}\t{gene}\n")
    with open(directory / "barcodes.tsv", "w") as f:
        for barcode in adata.obs_names:
            f.write(f"{barcode}\n")


class TestPreprocessingConfig:
    """Tests for preprocessing configuration dataclasses."""

    def test_default_values(self):
        """Test the standard PBMC 3k thresholds."""
        config = PreprocessingConfig.default()
        assert config.loader.url == PBMC3K_URL
        assert config.loader.min_cells == 3
        assert config.qc.min_genes == 200
        assert config.qc.max_genes == 2500
        assert config.qc.max_pct_mt == 5.0
        assert config.normalization.target_sum == 1e4
        assert config.normalization.n_top_genes == 2000

    def test_from_yaml_nested_section(self, tmp_path):
        """Test loading from a file with a preprocessing section."""
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "preprocessing": {"qc": {"max_pct_mt": 10.0}, "normalization": {"flavor": "seurat"}}
        }))
        config = PreprocessingConfig.from_yaml(path)

        assert config.qc.max_pct_mt == 10.0
        assert config.qc.min_genes == 200
        assert config.normalization.flavor == "seurat"

    def test_to_dict(self):
        """Test dictionary conversion."""
        data = PreprocessingConfig().to_dict()
        assert data["qc"]["mito_prefix"] == "MT-"
        assert set(data) == {"loader", "qc", "normalization"}


class TestDataLoader:
    """Tests for DataLoader."""

    def test_read_10x_directory(self, mock_counts, tmp_path):
        """Test reading a matrix directory and the creation filters."""
        matrix_dir = tmp_path / "hg19"
        _write_10x(mock_counts, matrix_dir)

        result = DataLoader(LoaderConfig(min_cells=1, min_genes=5)).read(matrix_dir)

        assert result.n_cells == mock_counts.n_obs
        assert result.n_genes == mock_counts.n_vars
        assert "counts" in result.adata.layers
        assert result.to_dict()["source"] == str(matrix_dir)

    def test_read_missing_directory(self, tmp_path):
        """Test a missing matrix directory raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            DataLoader().read(tmp_path / "absent")

    def test_download_skipped_when_present(self, tmp_path, monkeypatch):
        """Test an extracted matrix directory is reused."""
        config = LoaderConfig(data_dir=str(tmp_path))
        matrix_dir = tmp_path / config.matrix_subdir
        matrix_dir.mkdir(parents=True)
        (matrix_dir / "matrix.mtx").write_text("")

        def fail(*args, **kwargs):
            raise AssertionError("download_file should not be called")

        monkeypatch.setattr("scrna_workshop.core.preprocessing.loader.download_file", fail)
        assert DataLoader(config).download() == matrix_dir

    @staticmethod
    def _archive(mock_counts, tmp_path, subdir):
        """Tarball holding a 10x matrix directory under ``subdir``."""
        staging = tmp_path / "staging"
        _write_10x(mock_counts, staging / subdir)
        archive = tmp_path / "pbmc.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(staging / subdir.split("/")[0], arcname=subdir.split("/")[0])
        return archive

    def test_download_extracts_archive(self, mock_counts, tmp_path, monkeypatch):
        """Test the downloaded tarball is extracted and its matrix read."""
        config = LoaderConfig(data_dir=str(tmp_path / "data"), min_cells=1, min_genes=5)
        archive = self._archive(mock_counts, tmp_path, config.matrix_subdir)
        requested = []

        def fake_download(url, destination):
            requested.append(url)
            return archive

        monkeypatch.setattr(
            "scrna_workshop.core.preprocessing.loader.download_file", fake_download
        )
        loader = DataLoader(config)
        matrix_dir = loader.download()

        assert requested == [config.url]
        assert matrix_dir == tmp_path / "data" / config.matrix_subdir
        assert (matrix_dir / "matrix.mtx").exists()
        assert loader.read(matrix_dir).n_cells == mock_counts.n_obs

    def test_archive_without_matrix_subdir(self, mock_counts, tmp_path, monkeypatch):
        """Test an archive lacking the expected directory raises FileNotFoundError."""
        archive = self._archive(mock_counts, tmp_path, "other_matrices/GRCh38")
        monkeypatch.setattr(
            "scrna_workshop.core.preprocessing.loader.download_file",
            lambda url, destination: archive,
        )

        with pytest.raises(FileNotFoundError, match="filtered_gene_bc_matrices"):
            DataLoader(LoaderConfig(data_dir=str(tmp_path / "data"))).download()


class TestCellQC:
    """Tests for CellQC."""

    def test_compute_metrics(self, mock_counts):
        """Test metric columns and mitochondrial gene flags."""
        CellQC().compute_metrics(mock_counts)

        assert {"n_genes_by_counts", "total_counts", "pct_counts_mt"} <= set(mock_counts.obs)
        assert mock_counts.var["mt"].sum() == len(MITO_GENES)
        assert (mock_counts.obs["pct_counts_mt"] > 0).mean() > 0.9

    def test_filter_keeps_everything_with_loose_thresholds(self, mock_counts):
        """Test no cell is removed when all thresholds are loose."""
        result = CellQC(QCConfig(min_genes=1, max_genes=10_000, max_pct_mt=100.0)).filter(
            mock_counts
        )

        assert result.cells_removed == 0
        assert result.adata.n_obs == mock_counts.n_obs
        assert result.removal_fraction == 0.0

    def test_filter_by_mito_fraction(self, mock_counts):
        """Test cells at or above max_pct_mt are removed."""
        qc = CellQC(QCConfig(min_genes=1, max_genes=10_000))
        qc.compute_metrics(mock_counts)
        cutoff = float(np.median(mock_counts.obs["pct_counts_mt"]))
        qc.config.max_pct_mt = cutoff

        result = qc.filter(mock_counts)
        expected = int((mock_counts.obs["pct_counts_mt"] >= cutoff).sum())

        assert result.cells_removed == expected
        assert result.reason_counts["high_mito"] == expected
        assert (result.adata.obs["pct_counts_mt"] < cutoff).all()

    def test_bounds_are_exclusive(self, mock_counts):
        """Test cells exactly at min_genes are removed."""
        qc = CellQC(QCConfig(max_genes=10_000, max_pct_mt=100.0))
        qc.compute_metrics(mock_counts)
        lowest = int(mock_counts.obs["n_genes_by_counts"].min())
        qc.config.min_genes = lowest

        result = qc.filter(mock_counts)
        assert result.reason_counts["low_genes"] == int(
            (mock_counts.obs["n_genes_by_counts"] == lowest).sum()
        )

    def test_all_cells_removed(self, mock_counts):
        """Test an error is raised when nothing passes QC."""
        with pytest.raises(ValueError, match="No cells passed QC"):
            CellQC(QCConfig(min_genes=1, max_genes=2)).filter(mock_counts)

    def test_report(self, mock_counts):
        """Test the report dictionary has one entry per removal reason."""
        report = CellQC(QCConfig(min_genes=1, max_genes=10_000, max_pct_mt=100.0)).filter(
            mock_counts
        ).to_dict()
        for reason in REASON_COLUMNS:
            assert report[f"removed_{reason}"] == 0
        assert report["cells_total"] == mock_counts.n_obs


class TestNormalizer:
    """Tests for Normalizer."""

    def test_layers_and_raw(self, mock_counts):
        """Test counts, lognorm and scaled layers are written."""
        counts = mock_counts.X.copy()
        Normalizer(NormalizationConfig(flavor="seurat", n_top_genes=20)).run(mock_counts)

        np.testing.assert_allclose(mock_counts.layers["counts"], counts)
        lognorm = mock_counts.layers["lognorm"]
        np.testing.assert_allclose(np.expm1(lognorm).sum(axis=1), 1e4, rtol=1e-3)
        assert mock_counts.raw is not None
        np.testing.assert_allclose(mock_counts.layers["scaled"].mean(axis=0), 0.0, atol=1e-3)

    def test_variable_genes_ranked(self, mock_counts):
        """Test variable genes are returned most variable first."""
        genes = Normalizer(NormalizationConfig(flavor="seurat", n_top_genes=20)).run(mock_counts)

        assert len(genes) == 20
        assert mock_counts.var["highly_variable"].sum() == 20
        dispersions = mock_counts.var.loc[genes, "dispersions_norm"].to_numpy()
        assert (np.diff(dispersions) <= 0).all()

    def test_seurat_v3_needs_counts(self, mock_counts):
        """Test seurat_v3 raises without a counts layer."""
        norm = Normalizer(NormalizationConfig(flavor="seurat_v3", n_top_genes=20))
        with pytest.raises(KeyError):
            norm.select_variable_genes(mock_counts)

    def test_max_value_clips(self, mock_counts):
        """Test scaled values are clipped at max_value."""
        Normalizer(NormalizationConfig(flavor="seurat", n_top_genes=20, max_value=1.0)).run(
            mock_counts
        )
        assert mock_counts.layers["scaled"].max() <= 1.0 + 1e-6
