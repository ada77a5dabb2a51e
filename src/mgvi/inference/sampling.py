"""
Module: mgvi.inference.sampling
-------------------------------

Draw samples from the implicit Gaussian N(0, F⁻¹), where F is a
matrix-free Fisher information operator, without forming or inverting F.

Functions
---------
- `covariance_sample`:
    One sample via whitening and a CG residual correction
- `draw_samples`:
    A batch of independent samples, optionally mirrored
"""

import logging

import jax
import jax.numpy as jnp
from beartype.typing import Optional, Tuple
from jaxtyping import Array, Bool, Float, PRNGKeyArray

from mgvi.jacobian.operators import adjoint_apply, apply, inverse_sqrt_operator
from mgvi.jacobian.solvers import conjugate_gradient
from mgvi.tools import CGResult, LinearOperator

logger = logging.getLogger(__name__)


def covariance_sample(
    key: PRNGKeyArray,
    cov_inv: LinearOperator,
    jac: LinearOperator,
    metric: LinearOperator,
    metric_inv_sqrt: Optional[LinearOperator] = None,
    cg_max_iterations: Optional[int] = None,
    cg_tolerance: Optional[float] = None,
) -> Tuple[Float[Array, " D"], CGResult]:
    """
    Description
    -----------
    Draw one sample distributed approximately as N(0, cov_inv⁻¹) for
    cov_inv = Jᵀ M J + I.

    A synthetic data-space perturbation consistent with the linearized
    model is projected back to latent space and removed from a white
    latent draw through one CG solve. Only products with J, Jᵀ, M and
    cov_inv are needed.

    Parameters
    ----------
    - `key` (PRNGKeyArray):
        Random key owned by this sample.
    - `cov_inv` (LinearOperator):
        Symmetric positive-definite operator to invert, shape (D, D).
    - `jac` (LinearOperator):
        Jacobian of the forward model, shape (M, D).
    - `metric` (LinearOperator):
        Inverse noise covariance, shape (M, M).
    - `metric_inv_sqrt` (Optional[LinearOperator]):
        Precomputed metric^(-1/2). Computed from `metric` when None,
        which requires an explicit metric and concrete values.
    - `cg_max_iterations` (Optional[int]):
        Iteration cap of the CG solve.
    - `cg_tolerance` (Optional[float]):
        Relative tolerance of the CG solve.

    Returns
    -------
    - `sample` (Float[Array, " D"]):
        ξ_new - m_new.
    - `cg_result` (CGResult):
        Diagnostics of the solve; `converged` is False when the budget
        ran out, in which case the best iterate was used.

    Flow
    ----
    1. Draw ξ_new ~ N(0, I) in latent space
    2. Draw d_new = J ξ_new + M^(-1/2) η with η ~ N(0, I) in data space
    3. Project back: j_new = Jᵀ M d_new
    4. Solve cov_inv m_new = j_new by conjugate gradient
    5. Return ξ_new - m_new
    """
    if metric_inv_sqrt is None:
        metric_inv_sqrt = inverse_sqrt_operator(metric)
    latent_key, noise_key = jax.random.split(key)
    latent_dims: int = cov_inv.shape[1]
    data_dims: int = metric.shape[1]

    xi_new: Float[Array, " D"] = jax.random.normal(latent_key, (latent_dims,))
    noise: Float[Array, " M"] = jax.random.normal(noise_key, (data_dims,))
    d_new: Float[Array, " M"] = apply(jac, xi_new) + apply(metric_inv_sqrt, noise)
    j_new: Float[Array, " D"] = adjoint_apply(jac, apply(metric, d_new))
    cg_result: CGResult = conjugate_gradient(
        cov_inv,
        j_new,
        max_iterations=cg_max_iterations,
        tolerance=cg_tolerance,
    )
    return xi_new - cg_result.solution, cg_result


def draw_samples(
    key: PRNGKeyArray,
    cov_inv: LinearOperator,
    jac: LinearOperator,
    metric: LinearOperator,
    n_samples: int,
    mirror_samples: bool = False,
    cg_max_iterations: Optional[int] = None,
    cg_tolerance: Optional[float] = None,
) -> Tuple[Float[Array, "S D"], Bool[Array, " S"]]:
    """
    Description
    -----------
    Draw `n_samples` independent samples from N(0, cov_inv⁻¹).

    Every sample gets its own key split from `key` and the draws are
    vectorized with `jax.vmap`; they share no mutable state.

    Parameters
    ----------
    - `key` (PRNGKeyArray):
        Random key for the whole batch.
    - `cov_inv` (LinearOperator):
        Operator to invert.
    - `jac` (LinearOperator):
        Jacobian at the expansion point.
    - `metric` (LinearOperator):
        Inverse noise covariance with an explicit representation.
    - `n_samples` (int):
        Number of independent draws, at least 1.
    - `mirror_samples` (bool):
        Append the negation of every draw (antithetic sampling).
    - `cg_max_iterations` (Optional[int]):
        Iteration cap of each CG solve.
    - `cg_tolerance` (Optional[float]):
        Relative tolerance of each CG solve.

    Returns
    -------
    - `samples` (Float[Array, "S D"]):
        S = n_samples, or 2 * n_samples when mirrored. Row i + n_samples
        is exactly the negation of row i.
    - `converged` (Bool[Array, " S"]):
        Convergence flag of the solve behind each row. Mirrored rows
        repeat the flag of their original.

    Raises
    ------
    - ValueError:
        If `n_samples` is not positive or operator dimensions disagree.
    """
    if n_samples < 1:
        msg = f"n_samples must be a positive integer, got {n_samples}."
        raise ValueError(msg)
    if jac.shape[1] != cov_inv.shape[1] or jac.shape[0] != metric.shape[1]:
        msg = (
            f"Operator shapes are inconsistent: cov_inv {cov_inv.shape}, "
            f"jac {jac.shape}, metric {metric.shape}."
        )
        raise ValueError(msg)
    metric_inv_sqrt: LinearOperator = inverse_sqrt_operator(metric)
    keys: PRNGKeyArray = jax.random.split(key, n_samples)

    def single_sample(sample_key: PRNGKeyArray) -> Tuple[Array, CGResult]:
        return covariance_sample(
            sample_key,
            cov_inv,
            jac,
            metric,
            metric_inv_sqrt=metric_inv_sqrt,
            cg_max_iterations=cg_max_iterations,
            cg_tolerance=cg_tolerance,
        )

    samples, cg_results = jax.vmap(single_sample)(keys)
    converged: Bool[Array, " S"] = cg_results.converged

    n_unconverged: int = int(jnp.sum(~converged))
    if n_unconverged > 0:
        logger.warning(
            "%d of %d sample solves did not converge (max residual %.3e); "
            "using best iterates",
            n_unconverged,
            n_samples,
            float(jnp.max(cg_results.residual_norm)),
        )
    else:
        logger.debug(
            "Drew %d samples, CG iterations max %d",
            n_samples,
            int(jnp.max(cg_results.iterations)),
        )

    if mirror_samples:
        samples = jnp.concatenate([samples, -samples], axis=0)
        converged = jnp.concatenate([converged, converged], axis=0)
    return samples, converged
