"""
Inference workflows.

Submodules
----------
- `variational`:
    MAP estimation and multi-round Metric Gaussian Variational Inference
"""

from .variational import run_maximum_posterior, run_mgvi

__all__ = [
    "run_maximum_posterior",
    "run_mgvi",
]
