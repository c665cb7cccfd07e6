"""Pipeline orchestration module.

Provides an in-memory stage executor with dependency resolution, run
logging, and the workshop pipeline built on top of them.

Example Usage
-------------
>>> from scrna_workshop.config import WorkshopConfig
>>> from scrna_workshop.pipeline import WorkshopRun
>>> run = WorkshopRun(WorkshopConfig.from_yaml("workshop.yaml"), output_dir="results")
>>> results = run.run()
>>> results["cluster"]["n_clusters"]
"""

# Logging
from .logger import (
    ColoredFormatter,
    PipelineLogger,
)

# Execution
from .executor import InMemoryExecutor
from .workshop import STAGES, WorkshopRun

__all__ = [
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "InMemoryExecutor",
    "STAGES",
    "WorkshopRun",
]
