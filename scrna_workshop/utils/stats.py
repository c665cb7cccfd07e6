"""Statistical utilities for scrna-workshop.

Provides robust statistics and p-value combination helpers.
"""

from __future__ import annotations

from typing import Iterable, Union

import numpy as np
from statsmodels.stats.multitest import multipletests

ArrayLike = Union[Iterable[float], np.ndarray]


def robust_zscore(values: ArrayLike) -> np.ndarray:
    """Median/MAD z-score, with the MAD scaled by 1.4826 to match a normal SD.

    Non-finite values stay NaN. If the MAD is zero every finite value
    scores 0.
    """
    arr = np.asarray(list(values), dtype=float)
    result = np.full(arr.shape, np.nan)
    finite = np.isfinite(arr)
    if not finite.any():
        return result

    center = np.median(arr[finite])
    deviations = arr[finite] - center
    scale = 1.4826 * np.median(np.abs(deviations))
    result[finite] = deviations / scale if scale > 0 else 0.0
    return result


def minimump(pvalues: np.ndarray) -> np.ndarray:
    """Combine p-values row-wise with the minimum-p method.

    For ``k`` tests the combined p-value is ``1 - (1 - min p) ** k``.

    Parameters
    ----------
    pvalues : np.ndarray
        2-D array, one row per gene and one column per test.

    Returns
    -------
    np.ndarray
        Combined p-value per row.
    """
    arr = np.atleast_2d(np.asarray(pvalues, dtype=float))
    k = arr.shape[1]
    return 1.0 - (1.0 - np.nanmin(arr, axis=1)) ** k


def bh_adjust(pvalues: ArrayLike) -> np.ndarray:
    """Benjamini-Hochberg adjusted p-values; NaNs are passed through."""
    arr = np.asarray(list(pvalues), dtype=float)
    adjusted = np.full_like(arr, np.nan)
    mask = np.isfinite(arr)
    if mask.any():
        adjusted[mask] = multipletests(arr[mask], method="fdr_bh")[1]
    return adjusted
