"""
Shared types, factories and logging configuration.

Submodules
----------
- `mgvi_types`:
    NamedTuple data structures and their type-checked factories
- `logging_setup`:
    Root logger configuration
"""

from .logging_setup import setup_logging
from .mgvi_types import (
    CGResult,
    Energy,
    LinearOperator,
    MGVIConfig,
    MinimizationReport,
    NegLogLikelihoodWithMetric,
    StandardHamiltonian,
    latent_vector,
    make_energy,
    make_linear_operator,
    make_mgvi_config,
    scalar_float,
    scalar_int,
)

__all__ = [
    "CGResult",
    "Energy",
    "LinearOperator",
    "MGVIConfig",
    "MinimizationReport",
    "NegLogLikelihoodWithMetric",
    "StandardHamiltonian",
    "latent_vector",
    "make_energy",
    "make_linear_operator",
    "make_mgvi_config",
    "scalar_float",
    "scalar_int",
    "setup_logging",
]
