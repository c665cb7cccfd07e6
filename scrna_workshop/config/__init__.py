"""Centralized run configuration for scrna-workshop.

Example
-------
>>> from scrna_workshop.config import WorkshopConfig
>>> config = WorkshopConfig.from_yaml("workshop.yaml")
>>> config.clustering.resolution
0.5
"""

from .workshop import WorkshopConfig

__all__ = ["WorkshopConfig"]
