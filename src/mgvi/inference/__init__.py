"""
Metric Gaussian Variational Inference and MAP estimation.

Submodules
----------
- `likelihoods`:
    Gaussian likelihood and standard Hamiltonian
- `sampling`:
    Samples from the implicit inverse-Fisher covariance
- `kl`:
    Metric Gaussian KL energy and MAP energy
- `minimize`:
    Natural gradient descent and quasi-Newton minimization
"""

from .kl import maximum_posterior, metric_gaussian_kl, sample_averaged_fisher
from .likelihoods import gaussian_energy, standard_hamiltonian
from .minimize import minimize, natural_gradient_descent, quasi_newton
from .sampling import covariance_sample, draw_samples

__all__ = [
    "gaussian_energy",
    "standard_hamiltonian",
    "covariance_sample",
    "draw_samples",
    "metric_gaussian_kl",
    "maximum_posterior",
    "sample_averaged_fisher",
    "minimize",
    "natural_gradient_descent",
    "quasi_newton",
]
