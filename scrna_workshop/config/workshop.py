"""Run configuration for the workshop pipeline.

One YAML file configures every stage. Each section maps onto the
dataclass of the corresponding engine; omitted keys keep their defaults
and unknown keys raise ``TypeError``.

Example YAML::

    workshop:
      output_dir: results
      plots: true
      loader:
        data_dir: data
      qc:
        max_pct_mt: 5
      clustering:
        resolution: 0.5
      annotation:
        methods: [sctype, celltypist]
        primary: sctype
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..core.annotation.config import AnnotationConfig
from ..core.clustering.config import ClusteringConfig, MarkerConfig
from ..core.de.config import ConditionDEConfig
from ..core.integration.config import IntegrationConfig
from ..core.preprocessing.config import LoaderConfig, NormalizationConfig, QCConfig

_SECTIONS = {
    "loader": LoaderConfig,
    "qc": QCConfig,
    "normalization": NormalizationConfig,
    "integration": IntegrationConfig,
    "clustering": ClusteringConfig,
    "markers": MarkerConfig,
    "de": ConditionDEConfig,
}


@dataclass
class WorkshopConfig:
    """Configuration of a full workshop run.

    Attributes
    ----------
    output_dir : str
        Directory receiving tables, figures, the .h5ad and logs
    plots : bool
        Write figures
    resolutions : List[float]
        Leiden resolutions for the resolution sweep (empty skips it)
    dims : List[int]
        PC counts for the dims sweep (empty skips it)
    skip_stages : List[str]
        Stages not to run
    """

    output_dir: str = "results"
    plots: bool = True
    resolutions: List[float] = field(
        default_factory=lambda: [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
    )
    dims: List[int] = field(default_factory=list)
    skip_stages: List[str] = field(default_factory=list)
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    de: ConditionDEConfig = field(default_factory=ConditionDEConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkshopConfig":
        """Build configuration from a (possibly partial) dictionary."""
        data = dict(data or {})
        sections = {
            name: section_cls(**(data.pop(name, None) or {}))
            for name, section_cls in _SECTIONS.items()
        }
        annotation = AnnotationConfig.from_dict(data.pop("annotation", None) or {})
        return cls(annotation=annotation, **sections, **data)

    @classmethod
    def from_yaml(cls, path: Path) -> "WorkshopConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested workshop section
        if "workshop" in data:
            data = data["workshop"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "WorkshopConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a YAML-serialisable dictionary."""
        return asdict(self)

    def to_yaml(self, path: Path) -> Path:
        """Write the configuration under a top-level ``workshop`` key."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump({"workshop": self.to_dict()}, f, sort_keys=False)
        return path
