"""Harmony integration of the PCA embedding across conditions."""

from dataclasses import dataclass
from typing import Any, Optional
import logging

from .config import IntegrationConfig


@dataclass
class IntegrationResult:
    """Result from integration.

    Attributes
    ----------
    use_rep : str
        obsm key downstream steps should build the neighbor graph on
    batch_key : str
        obs column that was integrated over
    n_batches : int
        Number of distinct batches
    """

    use_rep: str = "X_pca"
    batch_key: str = ""
    n_batches: int = 0


class IntegrationEngine:
    """Correct the PCA embedding for a batch or condition with Harmony.

    Example
    -------
    >>> engine = IntegrationEngine(IntegrationConfig())
    >>> result = engine.integrate(adata, batch_key="group_id")
    >>> adata.obsm[result.use_rep].shape
    """

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or IntegrationConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import harmonypy  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Integration requires harmonypy. Install with: pip install harmonypy"
            )

    def integrate(self, adata: Any, batch_key: Optional[str] = None) -> IntegrationResult:
        """Run Harmony, writing ``obsm[adjusted_basis]``.

        With integration disabled, or a single batch, the plain basis is
        returned unchanged.
        """
        cfg = self.config
        batch_key = batch_key or cfg.condition_key

        if batch_key not in adata.obs:
            raise KeyError(f"Batch key '{batch_key}' not found in adata.obs")
        if cfg.basis not in adata.obsm:
            raise KeyError(f"Basis '{cfg.basis}' not found in adata.obsm; run PCA first")

        n_batches = int(adata.obs[batch_key].nunique())
        if not cfg.enabled or n_batches < 2:
            self.logger.info(
                "Skipping integration (enabled=%s, %d batch(es)); using %s",
                cfg.enabled,
                n_batches,
                cfg.basis,
            )
            return IntegrationResult(use_rep=cfg.basis, batch_key=batch_key, n_batches=n_batches)

        self._check_dependencies()
        import scanpy as sc

        self.logger.info("Running Harmony over %d batches of '%s'", n_batches, batch_key)
        sc.external.pp.harmony_integrate(
            adata,
            key=batch_key,
            basis=cfg.basis,
            adjusted_basis=cfg.adjusted_basis,
            max_iter_harmony=cfg.max_iter,
            random_state=cfg.random_seed,
        )
        return IntegrationResult(
            use_rep=cfg.adjusted_basis, batch_key=batch_key, n_batches=n_batches
        )
