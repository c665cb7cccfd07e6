"""Utility functions for scrna-workshop.

Provides statistical helpers and expression-matrix access used across modules.
"""

from .matrix import expression_frame, gene_variance, select_matrix, to_dense
from .stats import bh_adjust, minimump, robust_zscore

__all__ = [
    "expression_frame",
    "gene_variance",
    "select_matrix",
    "to_dense",
    "bh_adjust",
    "minimump",
    "robust_zscore",
]
