"""Errors raised by cell-type annotation.

Both errors are raised immediately: consolidation is a deterministic,
in-memory computation, so there is nothing to retry.
"""

from __future__ import annotations

from typing import Any, Iterable, List


def _preview(items: Iterable[Any], limit: int = 5) -> str:
    """Format the first few items of a collection for an error message."""
    items = [str(item) for item in items]
    shown = ", ".join(items[:limit])
    if len(items) > limit:
        shown += f", ... ({len(items)} total)"
    return shown


class AnnotationError(ValueError):
    """Base class for cell-type annotation errors."""


class MissingDataError(AnnotationError):
    """A cell in the cluster assignment has no score.

    Attributes:
        cells: Cell identifiers lacking a score (for any cell type).
    """

    def __init__(self, cells: Iterable[Any], detail: str = ""):
        self.cells: List[Any] = list(cells)
        message = f"No score for {len(self.cells)} cell(s): {_preview(self.cells)}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class EmptyClusterError(AnnotationError):
    """A cluster has no member cells, so its score sum is undefined.

    Attributes:
        clusters: Labels of the empty clusters.
    """

    def __init__(self, clusters: Iterable[Any]):
        self.clusters: List[Any] = list(clusters)
        super().__init__(
            f"{len(self.clusters)} cluster(s) have no member cells: "
            f"{_preview(self.clusters)}"
        )
