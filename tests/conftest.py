"""Pytest configuration and shared fixtures for scrna-workshop tests."""

import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    PLANTED_MARKERS,
    create_mock_counts,
    create_processed_adata,
)


# ============================================================================
# Mock Data Fixtures
# ============================================================================


@pytest.fixture
def mock_counts():
    """Raw-count AnnData with four planted populations."""
    return create_mock_counts()


@pytest.fixture
def processed_adata():
    """Normalized, scaled, clustered AnnData with simulated conditions."""
    return create_processed_adata()


@pytest.fixture
def planted_gene_sets():
    """ScType gene sets matching the planted populations."""
    from scrna_workshop.core.annotation.sctype import GeneSets

    negative = {
        "T cells": ["MS4A1"],
        "B cells": ["CD3E"],
        "Monocytes": ["CD3E"],
        "NK cells": ["CD3E"],
    }
    return GeneSets(
        positive={name: list(genes) for name, genes in PLANTED_MARKERS.items()},
        negative=negative,
        tissue="Immune system",
    )


@pytest.fixture
def example_scores() -> pd.DataFrame:
    """Two cell types over four cells.

    Cluster "a" (c1, c2) is clearly B; cluster "b" (c3, c4) has a weak
    best score of T.
    """
    return pd.DataFrame(
        {
            "c1": [3.0, 0.0],
            "c2": [2.0, 0.1],
            "c3": [0.0, 0.2],
            "c4": [0.1, 0.1],
        },
        index=["B", "T"],
    )


@pytest.fixture
def example_clusters() -> pd.Series:
    """Cluster assignment for example_scores."""
    return pd.Series({"c1": "a", "c2": "a", "c3": "b", "c4": "b"})


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================


@pytest.fixture
def temp_output_dir(tmp_path) -> Path:
    """Create temporary output directory."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir


# ============================================================================
# Markers for Test Categories
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
