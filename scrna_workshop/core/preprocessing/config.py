"""Configuration classes for preprocessing stages.

Defaults follow the standard PBMC 3k workflow: keep genes seen in at least
3 cells and cells with 200-2500 detected genes and under 5% mitochondrial
reads, log-normalize to 10,000 counts and keep 2,000 variable genes.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

PBMC3K_URL = (
    "https://cf.10xgenomics.com/samples/cell/pbmc3k/pbmc3k_filtered_gene_bc_matrices.tar.gz"
)


@dataclass
class LoaderConfig:
    """Configuration for data loading.

    Attributes
    ----------
    url : str
        Tarball with the 10x filtered feature-barcode matrices
    data_dir : str
        Directory the tarball is downloaded to and extracted in
    matrix_subdir : str
        Matrix directory inside the extracted archive
    min_cells : int
        Keep genes detected in at least this many cells
    min_genes : int
        Keep cells with at least this many detected genes
    """

    url: str = PBMC3K_URL
    data_dir: str = "data"
    matrix_subdir: str = "filtered_gene_bc_matrices/hg19"
    min_cells: int = 3
    min_genes: int = 200


@dataclass
class QCConfig:
    """Configuration for cell QC.

    Attributes
    ----------
    mito_prefix : str
        Gene-name prefix of mitochondrial genes
    min_genes : int
        Cells must have more detected genes than this
    max_genes : int
        Cells must have fewer detected genes than this
    max_pct_mt : float
        Cells must have a lower mitochondrial percentage than this
    """

    mito_prefix: str = "MT-"
    min_genes: int = 200
    max_genes: int = 2500
    max_pct_mt: float = 5.0


@dataclass
class NormalizationConfig:
    """Configuration for normalization, feature selection and scaling.

    Attributes
    ----------
    target_sum : float
        Library size after normalization
    flavor : str
        Highly-variable-gene method ('seurat_v3' expects counts)
    n_top_genes : int
        Number of highly variable genes
    max_value : float, optional
        Clip scaled values to this absolute value
    """

    target_sum: float = 1e4
    flavor: str = "seurat_v3"
    n_top_genes: int = 2000
    max_value: Optional[float] = None


@dataclass
class PreprocessingConfig:
    """Master configuration for preprocessing.

    Attributes
    ----------
    loader : LoaderConfig
        Loading configuration
    qc : QCConfig
        QC configuration
    normalization : NormalizationConfig
        Normalization configuration
    """

    loader: LoaderConfig = field(default_factory=LoaderConfig)
    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreprocessingConfig":
        data = data or {}
        return cls(
            loader=LoaderConfig(**data.get("loader", {})),
            qc=QCConfig(**data.get("qc", {})),
            normalization=NormalizationConfig(**data.get("normalization", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested preprocessing section
        if "preprocessing" in data:
            data = data["preprocessing"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "PreprocessingConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
