"""
Module: mgvi.models.correlated_field
------------------------------------
Log-normal correlated random field observed through a linear response.

The latent vector ξ is white; the field is obtained by scaling ξ with
the amplitude of a power-law spectrum in harmonic space and
transforming back with a discrete Hartley transform. All model settings
are passed explicitly through a `FieldConfig`.

Classes
-------
- `FieldConfig`:
    A named tuple for the dimension and spectral prior of the field

Functions
---------
- `make_field_config`:
    Creates a validated FieldConfig instance
- `harmonic_modes`:
    Harmonic mode index of every pixel
- `hartley_transform`:
    Discrete Hartley transform
- `inverse_hartley_transform`:
    Inverse discrete Hartley transform
- `draw_loglogslope`:
    Draw the log-log slope of the power spectrum
- `power_spectrum`:
    Power-law spectral amplitude per mode
- `make_correlated_field`:
    ξ ↦ H⁻¹(spectrum ⊙ ξ)
- `make_lognormal_signal`:
    ξ ↦ exp(correlated field)
- `make_signal_response`:
    ξ ↦ R exp(correlated field)
- `synthetic_data`:
    Noisy observation of a signal for a given latent vector
"""

from functools import partial

import jax
import jax.numpy as jnp
from beartype import beartype
from beartype.typing import Callable, NamedTuple
from jaxtyping import Array, Float, PRNGKeyArray, jaxtyped

from mgvi.jacobian.operators import apply, sqrt_operator
from mgvi.tools import LinearOperator, scalar_float


class FieldConfig(NamedTuple):
    """
    Description
    -----------
    Settings of the correlated field prior.

    Attributes
    ----------
    - `dims` (int):
        Number of pixels.
    - `loglogavgslope_mean` (float):
        Mean of the log-log slope of the power spectrum.
    - `loglogavgslope_stddev` (float):
        Standard deviation of the log-log slope.
    - `amplitude` (float):
        Spectral amplitude at the zero mode.
    """

    dims: int
    loglogavgslope_mean: float
    loglogavgslope_stddev: float
    amplitude: float


@beartype
def make_field_config(
    dims: int,
    loglogavgslope_mean: float = 2.0,
    loglogavgslope_stddev: float = 0.5,
    amplitude: float = 50.0,
) -> FieldConfig:
    """
    Description
    -----------
    Factory function for FieldConfig with runtime type-checking.

    Raises
    ------
    - ValueError:
        If `dims` is not positive or a spread or amplitude is negative.
    """
    if dims < 1:
        msg = f"dims must be a positive integer, got {dims}."
        raise ValueError(msg)
    if loglogavgslope_stddev < 0:
        msg = f"loglogavgslope_stddev must be non-negative, got {loglogavgslope_stddev}."
        raise ValueError(msg)
    if amplitude <= 0:
        msg = f"amplitude must be positive, got {amplitude}."
        raise ValueError(msg)
    return FieldConfig(
        dims=dims,
        loglogavgslope_mean=loglogavgslope_mean,
        loglogavgslope_stddev=loglogavgslope_stddev,
        amplitude=amplitude,
    )


def harmonic_modes(dims: int) -> Float[Array, " N"]:
    """Mode index k_i = i for i < dims / 2, dims - i otherwise."""
    index: Float[Array, " N"] = jnp.arange(dims, dtype=jnp.float64)
    return jnp.where(index < dims / 2, index, dims - index)


@jaxtyped(typechecker=beartype)
def hartley_transform(
    field: Float[Array, " N"],
) -> Float[Array, " N"]:
    """
    Description
    -----------
    Discrete Hartley transform H x = Re(F x) - Im(F x).

    H is real and symmetric and H H = N I, so it is its own inverse up
    to a factor 1/N. Built on `jnp.fft.fft`, it supports both forward
    and reverse-mode differentiation.

    Parameters
    ----------
    - `field` (Float[Array, " N"]):
        Real input.

    Returns
    -------
    - `transformed` (Float[Array, " N"]):
        Hartley coefficients.
    """
    spectrum = jnp.fft.fft(field)
    return spectrum.real - spectrum.imag


def inverse_hartley_transform(
    coefficients: Float[Array, " N"],
) -> Float[Array, " N"]:
    """Inverse of `hartley_transform`."""
    return hartley_transform(coefficients) / coefficients.shape[0]


def draw_loglogslope(
    key: PRNGKeyArray,
    config: FieldConfig,
) -> Float[Array, ""]:
    """Draw the power spectrum slope from N(mean, stddev²)."""
    return config.loglogavgslope_mean + config.loglogavgslope_stddev * jax.random.normal(key)


def power_spectrum(
    modes: Float[Array, " N"],
    loglogslope: scalar_float,
    amplitude: scalar_float,
) -> Float[Array, " N"]:
    """Spectral amplitude amplitude / (k^slope + 1) for each mode k."""
    return amplitude / (modes**loglogslope + 1.0)


def _correlated_field(
    spectrum: Float[Array, " N"],
    latent: Float[Array, " N"],
) -> Float[Array, " N"]:
    return inverse_hartley_transform(spectrum * latent)


def _lognormal_signal(
    spectrum: Float[Array, " N"],
    latent: Float[Array, " N"],
) -> Float[Array, " N"]:
    return jnp.exp(_correlated_field(spectrum, latent))


def _signal_response(
    spectrum: Float[Array, " N"],
    response: LinearOperator,
    latent: Float[Array, " N"],
) -> Float[Array, " M"]:
    return apply(response, _lognormal_signal(spectrum, latent))


def make_correlated_field(
    spectrum: Float[Array, " N"],
) -> Callable[[Float[Array, " N"]], Float[Array, " N"]]:
    """Forward model ξ ↦ H⁻¹(spectrum ⊙ ξ)."""
    return partial(_correlated_field, spectrum)


def make_lognormal_signal(
    spectrum: Float[Array, " N"],
) -> Callable[[Float[Array, " N"]], Float[Array, " N"]]:
    """Forward model ξ ↦ exp(H⁻¹(spectrum ⊙ ξ))."""
    return partial(_lognormal_signal, spectrum)


def make_signal_response(
    spectrum: Float[Array, " N"],
    response: LinearOperator,
) -> Callable[[Float[Array, " N"]], Float[Array, " M"]]:
    """
    Description
    -----------
    Forward model of the observation, ξ ↦ R exp(H⁻¹(spectrum ⊙ ξ)).

    Parameters
    ----------
    - `spectrum` (Float[Array, " N"]):
        Spectral amplitude per harmonic mode.
    - `response` (LinearOperator):
        Instrument response R of shape (M, N).

    Returns
    -------
    - `signal_response` (Callable):
        Differentiable forward model for `gaussian_energy`.

    Raises
    ------
    - ValueError:
        If the response does not act on fields of the spectrum's length.
    """
    if response.shape[1] != spectrum.shape[0]:
        msg = (
            f"Response of shape {response.shape} does not act on a field "
            f"of {spectrum.shape[0]} pixels."
        )
        raise ValueError(msg)
    return partial(_signal_response, spectrum, response)


def synthetic_data(
    key: PRNGKeyArray,
    signal_fn: Callable[[Float[Array, " N"]], Float[Array, " N"]],
    response: LinearOperator,
    noise_cov: LinearOperator,
    latent: Float[Array, " N"],
) -> Float[Array, " M"]:
    """
    Description
    -----------
    Simulate d = R s(ξ) + R N^(1/2) η with η ~ N(0, I).

    The noise passes through the response as well, so pixels the
    response masks out stay noise free.

    Parameters
    ----------
    - `key` (PRNGKeyArray):
        Random key for the noise.
    - `signal_fn` (Callable):
        Signal model ξ ↦ s.
    - `response` (LinearOperator):
        Instrument response R.
    - `noise_cov` (LinearOperator):
        Noise covariance N on signal space, with an explicit
        representation.
    - `latent` (Float[Array, " N"]):
        Ground-truth latent vector.

    Returns
    -------
    - `data` (Float[Array, " M"]):
        Synthetic observation.
    """
    noise_std: LinearOperator = sqrt_operator(noise_cov)
    white_noise: Float[Array, " N"] = jax.random.normal(key, (noise_cov.shape[1],))
    signal: Float[Array, " N"] = signal_fn(latent)
    return apply(response, signal) + apply(response, apply(noise_std, white_noise))
