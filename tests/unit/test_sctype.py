"""Unit tests for ScType marker scoring."""

import numpy as np
import pandas as pd
import pytest
import yaml

from scrna_workshop.core.annotation import ScTypeConfig
from scrna_workshop.core.annotation.sctype import (
    GeneSets,
    ScTypeAnnotator,
    _split_symbols,
    load_sctype_db,
    marker_sensitivity,
    prepare_gene_sets,
    sctype_score,
)


def _db(rows):
    return pd.DataFrame(
        rows, columns=["tissueType", "cellName", "geneSymbolmore1", "geneSymbolmore2"]
    )


class TestMarkerDatabase:
    """Tests for loading and preparing marker gene sets."""

    def test_bundled_database(self):
        """Test the bundled PBMC marker sets load."""
        db = load_sctype_db()
        assert len(db) == 20
        assert set(db["tissueType"]) == {"Immune system"}
        assert "Classical Monocytes" in set(db["cellName"])

    def test_yaml_database(self, tmp_path):
        """Test a custom YAML database."""
        path = tmp_path / "markers.yaml"
        path.write_text(yaml.safe_dump({"gene_sets": [
            {"tissueType": "Blood", "cellName": "T", "geneSymbolmore1": "CD3E",
             "geneSymbolmore2": ""},
        ]}))
        db = load_sctype_db(str(path))
        assert db["cellName"].tolist() == ["T"]

    def test_missing_columns(self, tmp_path):
        """Test a database without the expected columns is rejected."""
        path = tmp_path / "markers.yaml"
        path.write_text(yaml.safe_dump({"gene_sets": [{"cellName": "T"}]}))
        with pytest.raises(ValueError, match="missing columns"):
            load_sctype_db(str(path))

    def test_url_database_cached(self, tmp_path, monkeypatch):
        """Test a database URL is downloaded into the cache directory and read."""
        calls = []

        def fake_download(url, destination):
            calls.append((url, destination))
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(yaml.safe_dump({"gene_sets": [
                {"tissueType": "Blood", "cellName": "B", "geneSymbolmore1": "MS4A1",
                 "geneSymbolmore2": ""},
            ]}))
            return destination

        monkeypatch.setattr("scrna_workshop.core.annotation.sctype.download_file", fake_download)
        db = load_sctype_db("https://example.org/db/markers.yaml", cache_dir=str(tmp_path / "cache"))

        assert calls == [("https://example.org/db/markers.yaml", tmp_path / "cache" / "markers.yaml")]
        assert db["cellName"].tolist() == ["B"]

    def test_unsupported_format(self):
        """Test unknown file extensions are rejected."""
        with pytest.raises(ValueError, match="Unsupported"):
            load_sctype_db("markers.json")

    def test_split_symbols(self):
        """Test gene lists are split, upper-cased and cleaned."""
        assert _split_symbols(" cd3e, CD3D ,, NA,CD3E") == ["CD3E", "CD3D"]
        assert _split_symbols(np.nan) == []
        assert _split_symbols(None) == []

    def test_prepare_gene_sets(self):
        """Test tissue filtering and merging of repeated cell types."""
        db = _db([
            ["Blood", "T", "CD3E,CD3D", "MS4A1"],
            ["Blood", "T", "IL7R", ""],
            ["Blood", "B", "MS4A1", "CD3E"],
            ["Brain", "Neuron", "SNAP25", ""],
        ])
        sets = prepare_gene_sets(db, "Blood")

        assert sets.cell_types == ["T", "B"]
        assert sets.positive["T"] == ["CD3E", "CD3D", "IL7R"]
        assert sets.negative["T"] == ["MS4A1"]
        assert sets.negative["B"] == ["CD3E"]
        assert "SNAP25" not in sets.genes()

    def test_unknown_tissue(self):
        """Test an unknown tissue lists the available ones."""
        db = _db([["Blood", "T", "CD3E", ""]])
        with pytest.raises(ValueError, match="Blood"):
            prepare_gene_sets(db, "Liver")


class TestSctypeScore:
    """Tests for marker sensitivity and the enrichment score."""

    def test_marker_sensitivity(self):
        """Test specificity weights of shared and unique markers."""
        weights = marker_sensitivity({"A": ["g1", "g2"], "B": ["g2", "g3"], "C": ["g3"]})
        assert weights["g1"] == pytest.approx(1.0)
        assert weights["g2"] == pytest.approx(0.5)
        assert weights["g3"] == pytest.approx(0.5)

    def test_single_set_sensitivity(self):
        """Test a single gene set weights every marker 0.5."""
        weights = marker_sensitivity({"A": ["g1", "g2"]})
        assert weights.tolist() == [0.5, 0.5]

    def test_positive_and_negative_markers(self):
        """Test score = positive sum / sqrt(n) - negative sum / sqrt(m)."""
        expr = pd.DataFrame(
            [[2.0, -1.0], [-1.0, 2.0]], index=["g1", "g2"], columns=["c1", "c2"]
        )
        scores = sctype_score(expr, {"A": ["g1"], "B": ["g2"]}, {"A": ["g2"]})

        assert scores.loc["A"].tolist() == pytest.approx([3.0, -3.0])
        assert scores.loc["B"].tolist() == pytest.approx([-1.0, 2.0])

    def test_unscaled_input_is_zscored(self):
        """Test constant genes get zero z-scores when scaling internally."""
        expr = pd.DataFrame(
            [[1.0, 1.0, 1.0], [0.0, 1.0, 2.0]], index=["flat", "g"], columns=["a", "b", "c"]
        )
        scores = sctype_score(expr, {"F": ["flat"], "G": ["g"]}, scaled=False)

        assert scores.loc["F"].tolist() == pytest.approx([0.0, 0.0, 0.0])
        assert scores.loc["G"].tolist() == pytest.approx([-1.0, 0.0, 1.0])

    def test_types_without_markers_dropped(self):
        """Test cell types with no marker in the data are skipped."""
        expr = pd.DataFrame([[1.0]], index=["g1"], columns=["c1"])
        scores = sctype_score(expr, {"A": ["g1"], "B": ["absent"]})
        assert scores.index.tolist() == ["A"]

    def test_no_markers_present(self):
        """Test an error when no positive marker is present."""
        expr = pd.DataFrame([[1.0]], index=["g1"], columns=["c1"])
        with pytest.raises(ValueError):
            sctype_score(expr, {"A": ["absent"]})


class TestScTypeAnnotator:
    """Tests for ScTypeAnnotator."""

    def test_planted_populations_recovered(self, processed_adata, planted_gene_sets):
        """Test every planted cluster gets its population's label."""
        result = ScTypeAnnotator().annotate(
            processed_adata, cluster_key="leiden", gene_sets=planted_gene_sets
        )

        assert result.clusters["cluster"].tolist() == ["0", "1", "2", "3"]
        assert result.clusters["type"].tolist() == ["T cells", "B cells", "Monocytes", "NK cells"]
        expected = processed_adata.obs["cell_type"]
        assert (result.labels.astype(str) == expected).all()
        assert result.labels.name == "sctype_cell_type"

    def test_result_tables(self, processed_adata, planted_gene_sets):
        """Test score matrix and candidate table shapes."""
        result = ScTypeAnnotator(ScTypeConfig(top_n=2)).annotate(
            processed_adata, gene_sets=planted_gene_sets
        )

        assert result.scores.shape == (4, processed_adata.n_obs)
        assert list(result.scores.columns) == list(processed_adata.obs_names)
        assert result.candidates.groupby("cluster", observed=True).size().tolist() == [2, 2, 2, 2]

    def test_adata_not_modified(self, processed_adata, planted_gene_sets):
        """Test annotation leaves obs untouched."""
        columns = list(processed_adata.obs.columns)
        ScTypeAnnotator().annotate(processed_adata, gene_sets=planted_gene_sets)
        assert list(processed_adata.obs.columns) == columns

    def test_bundled_markers(self, processed_adata):
        """Test annotation with the bundled PBMC database."""
        result = ScTypeAnnotator().annotate(processed_adata, cluster_key="leiden")

        assert len(result.clusters) == 4
        table = result.clusters.set_index("cluster")
        assert table.loc["2", "type"] == "Classical Monocytes"

    def test_missing_cluster_key(self, processed_adata, planted_gene_sets):
        """Test a missing cluster column raises KeyError."""
        with pytest.raises(KeyError):
            ScTypeAnnotator().annotate(processed_adata, cluster_key="nope", gene_sets=planted_gene_sets)

    def test_no_marker_genes_in_data(self, processed_adata):
        """Test gene sets with no gene in the data are rejected."""
        sets = GeneSets(positive={"X": ["NOTAGENE"]})
        with pytest.raises(ValueError):
            ScTypeAnnotator().annotate(processed_adata, gene_sets=sets)
