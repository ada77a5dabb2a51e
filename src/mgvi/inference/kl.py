"""
Module: mgvi.inference.kl
-------------------------

Energies the minimizer acts on.

Functions
---------
- `metric_gaussian_kl`:
    Sampled KL energy with sample-averaged Fisher curvature (MGVI)
- `maximum_posterior`:
    Curvature-free energy for maximum a posteriori estimation
- `sample_averaged_fisher`:
    Fisher information averaged over Jacobians at perturbed points
"""

import logging
from functools import partial

import jax
import jax.numpy as jnp
from beartype.typing import Callable, Optional
from jaxtyping import Array, Float, PRNGKeyArray

from mgvi.inference.sampling import draw_samples
from mgvi.jacobian.operators import adjoint_apply, apply, fisher_operator
from mgvi.tools import (
    Energy,
    LinearOperator,
    NegLogLikelihoodWithMetric,
    StandardHamiltonian,
    make_energy,
    make_linear_operator,
)

logger = logging.getLogger(__name__)


def _kl_potential(
    nll_plus_prior: Callable[[Array], Array],
    samples: Float[Array, "S D"],
    position: Float[Array, " D"],
) -> Float[Array, ""]:
    per_sample: Float[Array, " S"] = jax.vmap(lambda s: nll_plus_prior(position + s))(
        samples
    )
    return jnp.sum(per_sample) / samples.shape[0]


def _averaged_fisher_matvec(
    likelihood: NegLogLikelihoodWithMetric,
    points: Float[Array, "S D"],
    vector: Float[Array, " D"],
) -> Float[Array, " D"]:
    def fisher_at(point: Float[Array, " D"]) -> Float[Array, " D"]:
        jac: LinearOperator = likelihood.jac_at(point)
        return adjoint_apply(jac, apply(likelihood.metric, apply(jac, vector)))

    per_point: Float[Array, "S D"] = jax.vmap(fisher_at)(points)
    return jnp.sum(per_point, axis=0) / points.shape[0] + vector


def sample_averaged_fisher(
    likelihood: NegLogLikelihoodWithMetric,
    points: Float[Array, "S D"],
) -> LinearOperator:
    """
    Description
    -----------
    Construct v ↦ (1/S) Σ_s J(p_s)ᵀ M J(p_s) v + v.

    The Jacobian is re-linearized at every point on each application, so
    one application costs one forward-mode and one reverse-mode pass per
    point. The per-point products are reduced by sum-then-divide.

    Parameters
    ----------
    - `likelihood` (NegLogLikelihoodWithMetric):
        Supplies the metric and `jac_at`.
    - `points` (Float[Array, "S D"]):
        Latent points at which the Jacobian is evaluated.

    Returns
    -------
    - `curvature` (LinearOperator):
        Symmetric positive-definite operator of shape (D, D).
    """
    dims: int = points.shape[1]
    matvec: Callable = partial(_averaged_fisher_matvec, likelihood, points)
    return make_linear_operator(matvec, matvec, (dims, dims))


def metric_gaussian_kl(
    key: PRNGKeyArray,
    hamiltonian: StandardHamiltonian,
    position: Float[Array, " D"],
    n_samples: int,
    mirror_samples: bool = False,
    recompute_mirrored_jacobians: bool = True,
    cg_max_iterations: Optional[int] = None,
    cg_tolerance: Optional[float] = None,
) -> Energy:
    """
    Description
    -----------
    Build the Metric Gaussian KL energy at `position`.

    Samples are drawn against the Fisher operator Jᵀ M J + I at
    `position`. The potential moves the whole sample cloud rigidly with
    ξ, and the curvature is the Fisher information averaged over the
    sampled points.

    Parameters
    ----------
    - `key` (PRNGKeyArray):
        Random key for the sample draws.
    - `hamiltonian` (StandardHamiltonian):
        Negative log-posterior with standard-normal prior.
    - `position` (Float[Array, " D"]):
        Expansion point.
    - `n_samples` (int):
        Number of independent samples, at least 1.
    - `mirror_samples` (bool):
        Double the sample set with the negation of every draw.
    - `recompute_mirrored_jacobians` (bool):
        When True the curvature evaluates the Jacobian at every point of
        the (mirrored) sample set, position ± s. When False the mirrored
        copies reuse the Jacobians at position + s, which halves the
        curvature cost but makes it asymmetric in the sample offsets.
        Ignored without mirroring.
    - `cg_max_iterations` (Optional[int]):
        Iteration cap of each sampling solve.
    - `cg_tolerance` (Optional[float]):
        Relative tolerance of each sampling solve.

    Returns
    -------
    - `energy` (Energy):
        potential kl(ξ) = (1/S) Σ_s H(ξ + s), position `position`,
        the samples, the averaged curvature and the per-sample
        convergence flags.

    Raises
    ------
    - ValueError:
        If `n_samples` is not a positive integer or operator dimensions
        are inconsistent with `position`.

    Flow
    ----
    1. Linearize the forward model at position and form Jᵀ M J + I
    2. Draw the sample set (mirrored when requested)
    3. Bind the sample-averaged Hamiltonian as potential
    4. Bind the Fisher information averaged over the sampled points
    """
    if isinstance(n_samples, bool) or not isinstance(n_samples, int) or n_samples < 1:
        msg = f"n_samples must be a positive integer, got {n_samples!r}."
        raise ValueError(msg)
    likelihood: NegLogLikelihoodWithMetric = hamiltonian.likelihood
    jac: LinearOperator = likelihood.jac_at(position)
    metric: LinearOperator = likelihood.metric
    fisher: LinearOperator = fisher_operator(jac, metric)

    samples, converged = draw_samples(
        key,
        fisher,
        jac,
        metric,
        n_samples,
        mirror_samples=mirror_samples,
        cg_max_iterations=cg_max_iterations,
        cg_tolerance=cg_tolerance,
    )

    if mirror_samples and not recompute_mirrored_jacobians:
        curvature_points: Float[Array, "S D"] = position + samples[:n_samples]
    else:
        curvature_points = position + samples
    curvature: LinearOperator = sample_averaged_fisher(likelihood, curvature_points)

    potential: Callable = partial(_kl_potential, hamiltonian.nll_plus_prior, samples)
    logger.debug(
        "Built KL energy with %d samples (mirrored=%s)",
        samples.shape[0],
        mirror_samples,
    )
    return make_energy(
        potential=potential,
        position=position,
        samples=samples,
        curvature=curvature,
        sampling_converged=converged,
    )


def maximum_posterior(
    hamiltonian: StandardHamiltonian,
    position: Float[Array, " D"],
) -> Energy:
    """Curvature-free energy whose minimizer is the MAP estimate."""
    return make_energy(potential=hamiltonian.nll_plus_prior, position=position)
