"""Annotation module for cluster and cell-level cell-type assignment.

Provides ScType marker scoring with cluster consolidation, plus CellTypist,
reference SVM and reference correlation classifiers.
"""

from .celltypist_runner import CellTypistAnnotator
from .config import (
    ANNOTATION_METHODS,
    AnnotationConfig,
    CellTypistConfig,
    CorrelationConfig,
    ReferenceConfig,
    ScTypeConfig,
)
from .consolidation import (
    UNKNOWN_LABEL,
    consolidate_cluster_scores,
    label_cells,
    rank_cluster_types,
)
from .correlation import CorrelationAnnotator
from .engine import AnnotationEngine, AnnotationResult
from .errors import AnnotationError, EmptyClusterError, MissingDataError
from .reference import ReferenceClassifier, load_reference
from .sctype import (
    GeneSets,
    ScTypeAnnotator,
    ScTypeResult,
    load_sctype_db,
    prepare_gene_sets,
    sctype_score,
)

__all__ = [
    # Engine
    "AnnotationEngine",
    "AnnotationResult",
    # Config
    "ANNOTATION_METHODS",
    "AnnotationConfig",
    "ScTypeConfig",
    "CellTypistConfig",
    "ReferenceConfig",
    "CorrelationConfig",
    # Consolidation
    "UNKNOWN_LABEL",
    "consolidate_cluster_scores",
    "rank_cluster_types",
    "label_cells",
    # Errors
    "AnnotationError",
    "MissingDataError",
    "EmptyClusterError",
    # ScType
    "GeneSets",
    "ScTypeAnnotator",
    "ScTypeResult",
    "load_sctype_db",
    "prepare_gene_sets",
    "sctype_score",
    # Classifiers
    "CellTypistAnnotator",
    "ReferenceClassifier",
    "load_reference",
    "CorrelationAnnotator",
]
