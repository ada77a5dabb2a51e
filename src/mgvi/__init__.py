"""
mgvi: Metric Gaussian Variational Inference in JAX.

Subpackages
-----------
- `tools`:
    Types, factories and logging configuration
- `jacobian`:
    Matrix-free Jacobians, operator algebra and conjugate gradient
- `inference`:
    Likelihoods, posterior samples, KL energies and minimizers
- `models`:
    Correlated field forward model and synthetic data
- `workflows`:
    MAP and multi-round variational inference loops
"""

from . import inference, jacobian, models, tools, workflows

__all__ = [
    "inference",
    "jacobian",
    "models",
    "tools",
    "workflows",
]
