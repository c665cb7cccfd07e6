"""Preprocessing module for data loading, quality control and normalization.

Pipeline Stages
---------------
- Loader: download the 10x matrices and read them into AnnData
- QC: remove cells by detected genes and mitochondrial fraction
- Normalization: log-normalize, select variable genes, scale

Example Usage
-------------
>>> from scrna_workshop.core.preprocessing import (
...     DataLoader, CellQC, Normalizer, PreprocessingConfig,
... )
>>> config = PreprocessingConfig.default()
>>> adata = DataLoader(config.loader).load().adata
>>> adata = CellQC(config.qc).filter(adata).adata
>>> hvgs = Normalizer(config.normalization).run(adata)
"""

from .config import (
    PBMC3K_URL,
    LoaderConfig,
    NormalizationConfig,
    PreprocessingConfig,
    QCConfig,
)
from .loader import DataLoader, LoadResult
from .normalization import Normalizer
from .qc import REASON_COLUMNS, CellQC, QCResult

__all__ = [
    # Config
    "PBMC3K_URL",
    "LoaderConfig",
    "QCConfig",
    "NormalizationConfig",
    "PreprocessingConfig",
    # Loader
    "DataLoader",
    "LoadResult",
    # QC
    "CellQC",
    "QCResult",
    "REASON_COLUMNS",
    # Normalization
    "Normalizer",
]
