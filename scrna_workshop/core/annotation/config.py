"""Configuration classes for cell-type annotation.

Each annotation method has its own dataclass; ``AnnotationConfig`` selects
which methods run and which one provides the primary ``cell_type`` labels.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

ANNOTATION_METHODS = ("sctype", "celltypist", "reference", "correlation")

SCTYPE_DB_URL = (
    "https://raw.githubusercontent.com/IanevskiAleksandr/sc-type/master/ScTypeDB_full.xlsx"
)


@dataclass
class ScTypeConfig:
    """Configuration for ScType marker scoring.

    Attributes
    ----------
    db_source : str, optional
        Marker database: local .xlsx/.yaml path or URL (e.g. SCTYPE_DB_URL).
        None uses the bundled PBMC marker sets.
    db_cache_dir : str
        Directory where a database given by URL is downloaded and cached
    tissue : str
        Tissue type to take gene sets from
    layer : str
        Layer holding scaled expression
    scaled : bool
        Whether the layer is already z-scored per gene
    confidence_fraction : float
        Clusters whose winning score is below n_cells * fraction are Unknown
    unknown_label : str
        Label for low-confidence clusters
    top_n : int
        Candidates kept per cluster in the candidate table
    """

    db_source: Optional[str] = None
    db_cache_dir: str = "data"
    tissue: str = "Immune system"
    layer: str = "scaled"
    scaled: bool = True
    confidence_fraction: float = 0.25
    unknown_label: str = "Unknown"
    top_n: int = 10


@dataclass
class CellTypistConfig:
    """Configuration for CellTypist pre-trained model annotation.

    Attributes
    ----------
    model : str
        CellTypist model name
    majority_voting : bool
        Refine predictions by majority vote within clusters
    layer : str
        Layer holding log-normalized (10k) expression
    """

    model: str = "Immune_All_Low.pkl"
    majority_voting: bool = True
    layer: str = "lognorm"


@dataclass
class ReferenceConfig:
    """Configuration for the reference-trained SVM classifier.

    Attributes
    ----------
    n_features : int
        Most variable reference genes used as features
    n_components : int
        Principal components of the reference feature space
    kernel : str
        SVM kernel
    threshold : float
        Minimum class probability for a confident prediction
    unassigned_label : str
        Label given below threshold
    random_seed : int
        Random seed for PCA and SVM
    """

    n_features: int = 2000
    n_components: int = 30
    kernel: str = "rbf"
    threshold: float = 0.55
    unassigned_label: str = "unassigned"
    random_seed: int = 0


@dataclass
class CorrelationConfig:
    """Configuration for reference correlation labelling.

    Attributes
    ----------
    n_de_genes : int, optional
        Marker genes per label pair. None uses 500 * (2/3) ** log2(n_labels).
    nmads : float
        MADs below the median delta at which a call is pruned
    """

    n_de_genes: Optional[int] = None
    nmads: float = 3.0


@dataclass
class AnnotationConfig:
    """Master configuration for cell-type annotation.

    Attributes
    ----------
    methods : List[str]
        Methods to run, any of ANNOTATION_METHODS
    primary : str
        Method whose labels become obs["cell_type"]
    reference : str
        Reference dataset for the reference and correlation methods
    reference_label_key : str
        obs column with reference cell-type labels
    """

    methods: List[str] = field(default_factory=lambda: ["sctype"])
    primary: str = "sctype"
    reference: str = "pbmc3k_processed"
    reference_label_key: str = "louvain"
    sctype: ScTypeConfig = field(default_factory=ScTypeConfig)
    celltypist: CellTypistConfig = field(default_factory=CellTypistConfig)
    reference_model: ReferenceConfig = field(default_factory=ReferenceConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)

    def __post_init__(self):
        unknown = [m for m in self.methods if m not in ANNOTATION_METHODS]
        if unknown:
            raise ValueError(
                f"Unknown annotation method(s) {unknown}; choose from {list(ANNOTATION_METHODS)}"
            )
        if self.primary not in self.methods:
            raise ValueError(
                f"Primary method '{self.primary}' is not among methods {self.methods}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnnotationConfig":
        """Build configuration from a (possibly partial) dictionary."""
        data = dict(data or {})
        return cls(
            sctype=ScTypeConfig(**data.pop("sctype", {})),
            celltypist=CellTypistConfig(**data.pop("celltypist", {})),
            reference_model=ReferenceConfig(**data.pop("reference_model", {})),
            correlation=CorrelationConfig(**data.pop("correlation", {})),
            **data,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "AnnotationConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "annotation" in data:
            data = data["annotation"]

        return cls.from_dict(data)
