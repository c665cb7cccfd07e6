"""Command-line interface for scrna-workshop.

Example Usage
-------------
    # From command line:
    scrna-workshop --help
    scrna-workshop run --config workshop.yaml --out results/
    scrna-workshop consolidate --scores scores.csv --clusters clusters.csv --out types.csv
    scrna-workshop annotate --input clustered.h5ad --method sctype --out annotated/
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
