"""Test fixtures for scrna-workshop.

Provides mock data generators and test utilities.
"""

from .mock_adata import (
    MITO_GENES,
    PLANTED_MARKERS,
    create_mock_counts,
    create_processed_adata,
    create_score_matrix,
)

__all__ = [
    "MITO_GENES",
    "PLANTED_MARKERS",
    "create_mock_counts",
    "create_processed_adata",
    "create_score_matrix",
]
