"""Configuration for differential expression across conditions."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class ConditionDEConfig:
    """Configuration for conserved-marker, per-cell-type and pseudo-bulk DE.

    Attributes
    ----------
    condition_key : str
        obs column with the condition
    ident_1 : str
        First condition (numerator of fold changes)
    ident_2 : str
        Second condition
    cell_type_key : str
        obs column with cell-type labels
    replicate_key : str
        obs column with replicate (sample) ids
    conserved_ident : str
        Cluster whose conserved markers are computed
    method : str
        rank_genes_groups test for the cell-level comparisons
    layer : str
        Layer with log-normalized expression
    min_cells_per_group : int
        Cell types with fewer cells in either condition are skipped
    counts_layer : str
        Layer with raw counts summed into pseudo-bulk samples
    pseudobulk_cell_types : List[str]
        Cell types tested with DESeq2; empty tests every cell type
    min_samples_per_level : int
        Pseudo-bulk samples each condition needs
    feature_genes : List[str]
        Genes plotted split by condition
    """

    condition_key: str = "group_id"
    ident_1: str = "Ctrl"
    ident_2: str = "Tx"
    cell_type_key: str = "cell_type"
    replicate_key: str = "sample_id"
    conserved_ident: str = "1"
    method: str = "wilcoxon"
    layer: str = "lognorm"
    min_cells_per_group: int = 3
    counts_layer: str = "counts"
    pseudobulk_cell_types: List[str] = field(
        default_factory=lambda: ["Classical Monocytes"]
    )
    min_samples_per_level: int = 2
    feature_genes: List[str] = field(default_factory=lambda: ["LYZ", "ISG15"])
