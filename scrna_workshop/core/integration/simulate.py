"""Simulated experimental design for a single-sample dataset.

PBMC 3k is one sample, so conditions and replicates are assigned at
random to demonstrate condition-aware analyses. Both functions return a
new Series; the caller decides where to store it.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def simulate_conditions(
    adata: Any,
    labels: Sequence[str] = ("Ctrl", "Tx"),
    prob: float = 0.5,
    seed: int = 0,
    name: str = "group_id",
) -> pd.Series:
    """Assign each cell to one of two conditions by a Bernoulli draw.

    Parameters
    ----------
    adata : AnnData
        Cells to assign
    labels : Sequence[str]
        Labels for draw outcomes 0 and 1
    prob : float
        Probability of outcome 1
    seed : int
        Random seed

    Returns
    -------
    pd.Series
        Categorical condition per cell with categories ``labels``
    """
    if len(labels) != 2:
        raise ValueError(f"Exactly two condition labels are required, got {list(labels)}")
    if not 0.0 <= prob <= 1.0:
        raise ValueError(f"prob must be in [0, 1], got {prob}")

    rng = np.random.default_rng(seed)
    draws = rng.binomial(1, prob, size=adata.n_obs)
    values = np.asarray(labels, dtype=object)[draws]

    series = pd.Series(
        pd.Categorical(values, categories=list(labels)),
        index=adata.obs_names,
        name=name,
    )
    logger.info("Simulated conditions: %s", series.value_counts().to_dict())
    return series


def simulate_replicates(
    adata: Any,
    n_replicates: int = 10,
    seed: int = 0,
    name: str = "sample_id",
) -> pd.Series:
    """Assign each cell a replicate number drawn uniformly from 1..n_replicates."""
    if n_replicates < 1:
        raise ValueError(f"n_replicates must be at least 1, got {n_replicates}")

    rng = np.random.default_rng(seed)
    values = rng.integers(1, n_replicates + 1, size=adata.n_obs)
    series = pd.Series(
        pd.Categorical(values.astype(str), categories=[str(i) for i in range(1, n_replicates + 1)]),
        index=adata.obs_names,
        name=name,
    )
    logger.info("Simulated %d replicates over %d cells", n_replicates, adata.n_obs)
    return series
