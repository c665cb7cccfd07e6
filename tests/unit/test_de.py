"""Unit tests for differential expression across conditions."""

import numpy as np
import pytest

from scrna_workshop.core.de import (
    ConditionDEConfig,
    PseudobulkDE,
    aggregate_pseudobulk,
    condition_markers,
    find_conserved_markers,
)
from tests.fixtures import PLANTED_MARKERS

GROUP_KEYS = ["group_id", "cell_type", "sample_id"]


@pytest.fixture
def replicated_adata(processed_adata):
    """processed_adata with three replicates per cell type and condition."""
    rank = np.arange(processed_adata.n_obs) // 4
    processed_adata.obs["sample_id"] = (rank % 3 + 1).astype(str)
    return processed_adata


class TestConditionMarkers:
    """Tests for per-cell-type condition comparisons."""

    def test_every_cell_type_tested(self, processed_adata):
        """Test one table per cell type, sorted by p-value."""
        results = condition_markers(processed_adata)

        assert set(results) == set(PLANTED_MARKERS)
        table = results["T cells"]
        assert len(table) == processed_adata.n_vars
        assert {"gene", "avg_log2FC", "pval", "pval_adj", "pct_in", "pct_out"} <= set(table)
        assert (np.diff(table["pval"].to_numpy()) >= 0).all()

    def test_small_groups_skipped(self, processed_adata):
        """Test cell types with too few cells per condition are skipped."""
        assert condition_markers(processed_adata, min_cells_per_group=30) == {}

    def test_missing_columns(self, processed_adata):
        """Test missing obs columns raise KeyError."""
        with pytest.raises(KeyError):
            condition_markers(processed_adata, condition_key="stim")


class TestConservedMarkers:
    """Tests for conserved markers across conditions."""

    def test_planted_markers_rank_first(self, processed_adata):
        """Test a cluster's planted genes are its top conserved markers."""
        table = find_conserved_markers(processed_adata, ident="1")

        assert set(table.index[:3]) == set(PLANTED_MARKERS["B cells"])
        assert {"Ctrl_pval", "Tx_pval", "max_pval", "minimump_p", "minimump_padj"} <= set(table.columns)
        assert (table["minimump_padj"] >= table["minimump_p"] - 1e-12).all()
        assert (table["max_pval"] >= table[["Ctrl_pval", "Tx_pval"]].min(axis=1)).all()
        assert (np.diff(table["minimump_p"].to_numpy()) >= 0).all()

    def test_unknown_ident(self, processed_adata):
        """Test an unknown cluster raises ValueError."""
        with pytest.raises(ValueError):
            find_conserved_markers(processed_adata, ident="9")

    def test_all_conditions_too_small(self, processed_adata):
        """Test an error when no condition has enough cells."""
        with pytest.raises(ValueError, match="too few cells"):
            find_conserved_markers(processed_adata, ident="1", min_cells_per_group=100)


class TestAggregatePseudobulk:
    """Tests for pseudo-bulk aggregation."""

    def test_sums_counts(self, replicated_adata):
        """Test each sample is the sum of its cells' counts."""
        pseudo = aggregate_pseudobulk(replicated_adata, GROUP_KEYS)

        assert pseudo.n_obs == 2 * 4 * 3
        assert pseudo.obs["n_cells"].sum() == replicated_adata.n_obs
        total = np.asarray(pseudo.X.sum())
        assert total == pytest.approx(replicated_adata.layers["counts"].sum())

        obs = replicated_adata.obs
        mask = (
            (obs["group_id"] == "Ctrl") & (obs["cell_type"] == "B cells") & (obs["sample_id"] == "1")
        ).to_numpy()
        expected = replicated_adata.layers["counts"][mask].sum(axis=0)
        row = pseudo["Ctrl_B cells_1"].X.toarray().ravel()
        np.testing.assert_allclose(row, expected)

    def test_obs_columns(self, replicated_adata):
        """Test obs holds the group values."""
        pseudo = aggregate_pseudobulk(replicated_adata, GROUP_KEYS)
        assert list(pseudo.obs.columns) == GROUP_KEYS + ["n_cells"]
        assert pseudo.obs.loc["Tx_NK cells_3", "cell_type"] == "NK cells"

    def test_missing_inputs(self, replicated_adata):
        """Test missing columns or layers raise KeyError."""
        with pytest.raises(KeyError):
            aggregate_pseudobulk(replicated_adata, ["group_id", "donor"])
        with pytest.raises(KeyError):
            aggregate_pseudobulk(replicated_adata, GROUP_KEYS, layer="raw_counts")


class TestPseudobulkDE:
    """Tests for DESeq2 pseudo-bulk DE."""

    def test_testable_cell_types(self, replicated_adata):
        """Test cell types need enough samples in both conditions."""
        pseudo = aggregate_pseudobulk(replicated_adata, GROUP_KEYS)

        assert sorted(PseudobulkDE().testable_cell_types(pseudo)) == sorted(PLANTED_MARKERS)
        strict = PseudobulkDE(ConditionDEConfig(min_samples_per_level=4))
        assert strict.testable_cell_types(pseudo) == []

    def test_too_few_samples(self, replicated_adata):
        """Test DESeq2 is not run with too few samples."""
        pytest.importorskip("pydeseq2")
        pseudo = aggregate_pseudobulk(replicated_adata, GROUP_KEYS)
        with pytest.raises(ValueError, match="pseudo-bulk sample"):
            PseudobulkDE(ConditionDEConfig(min_samples_per_level=4)).run(pseudo, "B cells")

    @pytest.mark.slow
    def test_deseq2_results(self, replicated_adata):
        """Test the DESeq2 result table."""
        pytest.importorskip("pydeseq2")
        pseudo = aggregate_pseudobulk(replicated_adata, GROUP_KEYS)
        results = PseudobulkDE().run(pseudo, "B cells")

        assert {"baseMean", "log2FoldChange", "pvalue", "padj"} <= set(results.columns)
        assert results.index.name == "gene"
        assert len(results) <= replicated_adata.n_vars
        assert results["padj"].dropna().between(0, 1).all()
