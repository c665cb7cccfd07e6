"""Simulated conditions and replicates, and Harmony integration."""

from .config import IntegrationConfig
from .engine import IntegrationEngine, IntegrationResult
from .simulate import simulate_conditions, simulate_replicates

__all__ = [
    "IntegrationConfig",
    "IntegrationEngine",
    "IntegrationResult",
    "simulate_conditions",
    "simulate_replicates",
]
