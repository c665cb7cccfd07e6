"""Configuration classes for condition simulation and integration."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class IntegrationConfig:
    """Configuration for simulated conditions and Harmony integration.

    Attributes
    ----------
    enabled : bool
        Run Harmony; if False clustering uses the plain PCA
    condition_key : str
        obs column holding the simulated condition
    condition_labels : List[str]
        Labels for the two conditions (Bernoulli outcome 0 and 1)
    condition_prob : float
        Probability that a cell gets the second label
    replicate_key : str
        obs column holding the simulated replicate
    n_replicates : int
        Replicates per dataset, numbered 1..n_replicates
    basis : str
        obsm key of the embedding to correct
    adjusted_basis : str
        obsm key receiving the corrected embedding
    max_iter : int
        Maximum Harmony iterations
    random_seed : int
        Random seed for simulation and Harmony
    """

    enabled: bool = True
    condition_key: str = "group_id"
    condition_labels: List[str] = field(default_factory=lambda: ["Ctrl", "Tx"])
    condition_prob: float = 0.5
    replicate_key: str = "sample_id"
    n_replicates: int = 10
    basis: str = "X_pca"
    adjusted_basis: str = "X_pca_harmony"
    max_iter: int = 10
    random_seed: int = 0
