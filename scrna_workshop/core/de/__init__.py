"""Differential expression across simulated conditions.

- Conserved markers of a cluster across conditions
- Naive per-cell-type condition comparison
- Pseudo-bulk DESeq2 per cell type
"""

from .condition import condition_markers
from .config import ConditionDEConfig
from .conserved import find_conserved_markers
from .pseudobulk import PseudobulkDE, aggregate_pseudobulk

__all__ = [
    "ConditionDEConfig",
    "condition_markers",
    "find_conserved_markers",
    "PseudobulkDE",
    "aggregate_pseudobulk",
]
