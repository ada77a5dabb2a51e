"""
Module: mgvi.inference.likelihoods
----------------------------------

Gaussian likelihood and standard Hamiltonian constructors.

The captured state of each potential (data, metric, forward model) is
bound with `functools.partial` onto module-level functions, so every
potential is an explicit record of what it closes over.

Functions
---------
- `gaussian_energy`:
    Negative log-likelihood of data under Gaussian noise
- `standard_hamiltonian`:
    Likelihood plus standard-normal prior
"""

from functools import partial

import jax.numpy as jnp
from beartype import beartype
from beartype.typing import Callable
from jaxtyping import Array, Float, jaxtyped

from mgvi.jacobian.operators import apply, inverse_operator, jacobian_operator
from mgvi.tools import LinearOperator, NegLogLikelihoodWithMetric, StandardHamiltonian


def _gaussian_nll(
    data: Float[Array, " M"],
    metric: LinearOperator,
    signal_response: Callable[[Array], Array],
    position: Float[Array, " D"],
) -> Float[Array, ""]:
    residual: Float[Array, " M"] = data - signal_response(position)
    return 0.5 * jnp.dot(residual, apply(metric, residual))


def _nll_plus_prior(
    nll: Callable[[Array], Array],
    position: Float[Array, " D"],
) -> Float[Array, ""]:
    return nll(position) + 0.5 * jnp.dot(position, position)


@jaxtyped(typechecker=beartype)
def gaussian_energy(
    noise_cov: LinearOperator,
    data: Float[Array, " M"],
    signal_response: Callable[[Array], Array],
) -> NegLogLikelihoodWithMetric:
    """
    Description
    -----------
    Build the negative log-likelihood of `data` for a forward model with
    additive Gaussian noise of covariance `noise_cov`.

    Parameters
    ----------
    - `noise_cov` (LinearOperator):
        Noise covariance N. Must carry an explicit diagonal or matrix so
        that it can be inverted up front.
    - `data` (Float[Array, " M"]):
        Observed data d.
    - `signal_response` (Callable[[Array], Array]):
        Differentiable forward model ξ ↦ predicted data.

    Returns
    -------
    - `likelihood` (NegLogLikelihoodWithMetric):
        nll(ξ) = ½ (d - R(ξ))ᵀ N⁻¹ (d - R(ξ)), metric N⁻¹ and
        jac_at(ξ) the Jacobian operator of `signal_response` at ξ.

    Raises
    ------
    - ValueError:
        If `noise_cov` is not invertible or its dimension differs from
        the data length.
    """
    if noise_cov.shape != (data.shape[0], data.shape[0]):
        msg = (
            f"Noise covariance of shape {noise_cov.shape} does not match "
            f"data of length {data.shape[0]}."
        )
        raise ValueError(msg)
    metric: LinearOperator = inverse_operator(noise_cov)
    return NegLogLikelihoodWithMetric(
        nll=partial(_gaussian_nll, data, metric, signal_response),
        metric=metric,
        jac_at=partial(jacobian_operator, signal_response),
    )


def standard_hamiltonian(
    likelihood: NegLogLikelihoodWithMetric,
) -> StandardHamiltonian:
    """
    Description
    -----------
    Add the standard-normal prior ½ ξ·ξ to a likelihood.

    The prior's curvature is the identity, so Fisher information of the
    likelihood and prior combine additively as Jᵀ M J + I.

    Parameters
    ----------
    - `likelihood` (NegLogLikelihoodWithMetric):
        Any metric-bearing negative log-likelihood.

    Returns
    -------
    - `hamiltonian` (StandardHamiltonian):
        Negative log-posterior up to a constant.
    """
    return StandardHamiltonian(
        nll_plus_prior=partial(_nll_plus_prior, likelihood.nll),
        likelihood=likelihood,
    )
