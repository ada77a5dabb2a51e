"""
Module: mgvi.tools.mgvi_types
-----------------------------
Data structures and type definitions for Metric Gaussian Variational
Inference.

Type Aliases
------------
- `scalar_float`:
    Type alias for float or Float array of 0 dimensions
- `scalar_int`:
    Type alias for int or Integer array of 0 dimensions
- `latent_vector`:
    Type alias for a one-dimensional latent (inference-space) vector

Classes
-------
- `LinearOperator`:
    A named tuple for a matrix-free linear map with its adjoint
- `NegLogLikelihoodWithMetric`:
    A named tuple bundling a negative log-likelihood, its metric and
    the Jacobian of the underlying forward model
- `StandardHamiltonian`:
    A named tuple for a likelihood plus a standard-normal prior
- `Energy`:
    A named tuple holding the potential the minimizer acts on
- `CGResult`:
    A named tuple for the outcome of a conjugate gradient solve
- `MinimizationReport`:
    A named tuple summarizing a minimization run
- `MGVIConfig`:
    A named tuple for the configuration surface of the inference loop

Factory Functions
----------------
- `make_linear_operator`:
    Creates a LinearOperator instance with runtime type checking
- `make_energy`:
    Creates an Energy instance with runtime type checking
- `make_mgvi_config`:
    Creates a validated MGVIConfig instance

Note
----
Always use these factory functions instead of directly instantiating the
NamedTuple classes to ensure proper runtime type checking of the contents.
"""

import jax
from beartype import beartype
from beartype.typing import Callable, NamedTuple, Optional, Tuple, TypeAlias, Union
from jaxtyping import Array, Bool, Float, Int, jaxtyped

jax.config.update("jax_enable_x64", True)

scalar_float: TypeAlias = Union[float, Float[Array, ""]]
scalar_int: TypeAlias = Union[int, Int[Array, ""]]
latent_vector: TypeAlias = Float[Array, " D"]


class LinearOperator(NamedTuple):
    """
    Description
    -----------
    Matrix-free linear map of shape (m, n) together with its adjoint.

    Attributes
    ----------
    - `matvec` (Callable[[Float[Array, " n"]], Float[Array, " m"]]):
        Applies the operator to a vector of the domain.
    - `rmatvec` (Callable[[Float[Array, " m"]], Float[Array, " n"]]):
        Applies the transposed operator to a vector of the range.
    - `shape` (Tuple[int, int]):
        (range dimension, domain dimension)
    - `diagonal` (Optional[Float[Array, " n"]]):
        Explicit diagonal when the operator is diagonal, otherwise None.
    - `matrix` (Optional[Float[Array, "m n"]]):
        Explicit dense matrix when one is available, otherwise None.

    Notes
    -----
    The callables make this structure unsuitable as a PyTree leaf
    container, so it is not registered with JAX. It is captured in
    closures instead, which is how it reaches `vmap`, `jit` and the
    solvers.
    """

    matvec: Callable[[Array], Array]
    rmatvec: Callable[[Array], Array]
    shape: Tuple[int, int]
    diagonal: Optional[Float[Array, " n"]] = None
    matrix: Optional[Float[Array, "m n"]] = None


class NegLogLikelihoodWithMetric(NamedTuple):
    """
    Description
    -----------
    Negative log-likelihood that carries the metric (inverse noise
    covariance) and a Jacobian factory for its forward model.

    Attributes
    ----------
    - `nll` (Callable[[latent_vector], Float[Array, ""]]):
        Differentiable scalar negative log-likelihood.
    - `metric` (LinearOperator):
        Inverse noise covariance weighting the residuals.
    - `jac_at` (Callable[[latent_vector], LinearOperator]):
        Returns the Jacobian operator of the forward model at a point.
    """

    nll: Callable[[Array], Array]
    metric: LinearOperator
    jac_at: Callable[[Array], LinearOperator]


class StandardHamiltonian(NamedTuple):
    """
    Description
    -----------
    Negative log-posterior with a standard-normal prior on the latent
    vector.

    Attributes
    ----------
    - `nll_plus_prior` (Callable[[latent_vector], Float[Array, ""]]):
        nll(ξ) + ½ ξ·ξ
    - `likelihood` (NegLogLikelihoodWithMetric):
        The wrapped likelihood.
    """

    nll_plus_prior: Callable[[Array], Array]
    likelihood: NegLogLikelihoodWithMetric


class Energy(NamedTuple):
    """
    Description
    -----------
    Potential together with the state a minimizer needs.

    Attributes
    ----------
    - `potential` (Callable[[latent_vector], Float[Array, ""]]):
        Scalar function to minimize.
    - `position` (Float[Array, " D"]):
        Current latent position.
    - `samples` (Optional[Float[Array, "S D"]]):
        Offsets of the approximate-posterior samples, or None for a
        point estimate.
    - `curvature` (Optional[LinearOperator]):
        Curvature used to precondition the gradient, or None.
    - `sampling_converged` (Optional[Bool[Array, " S"]]):
        Per-sample convergence flags of the solves that drew `samples`.
    """

    potential: Callable[[Array], Array]
    position: Float[Array, " D"]
    samples: Optional[Float[Array, "S D"]] = None
    curvature: Optional[LinearOperator] = None
    sampling_converged: Optional[Bool[Array, " S"]] = None


class CGResult(NamedTuple):
    """
    Description
    -----------
    Outcome of a conjugate gradient solve.

    Attributes
    ----------
    - `solution` (Float[Array, " n"]):
        Iterate with the smallest residual norm seen during the solve.
    - `converged` (Bool[Array, ""]):
        Whether the residual tolerance was reached within budget.
    - `iterations` (Int[Array, ""]):
        Number of iterations performed.
    - `residual_norm` (Float[Array, ""]):
        Residual norm of `solution`.
    """

    solution: Float[Array, " n"]
    converged: Bool[Array, ""]
    iterations: Int[Array, ""]
    residual_norm: Float[Array, ""]


class MinimizationReport(NamedTuple):
    """Summary of one minimization run."""

    method: str
    converged: bool
    iterations: int
    potential: float


class MGVIConfig(NamedTuple):
    """
    Description
    -----------
    Configuration of the sampling and minimization loop.

    Attributes
    ----------
    - `n_samples` (int):
        Number of independent samples drawn per round.
    - `mirror_samples` (bool):
        Whether every sample is paired with its negation.
    - `nat_grad_steps` (int):
        Natural-gradient iterations per round.
    - `nat_grad_scale` (float):
        Step scale of the natural-gradient update.
    - `initial_nat_grad_scale` (Optional[float]):
        Step scale used in the first round only. None means
        `nat_grad_scale` throughout.
    - `n_rounds` (int):
        Number of sampling ⇄ minimizing rounds.
    - `cg_max_iterations` (Optional[int]):
        Iteration cap of every CG solve. None means the operator
        dimension.
    - `cg_tolerance` (Optional[float]):
        Relative residual tolerance of every CG solve. None means the
        square root of the machine epsilon.
    - `map_max_iterations` (Optional[int]):
        Iteration cap of the L-BFGS optimizer. None means 1000.
    - `map_gtol` (float):
        Gradient tolerance of the quasi-Newton optimizer.
    - `recompute_mirrored_jacobians` (bool):
        Whether the curvature evaluates the Jacobian at the mirrored
        sample points as well.
    """

    n_samples: int
    mirror_samples: bool
    nat_grad_steps: int
    nat_grad_scale: float
    initial_nat_grad_scale: Optional[float]
    n_rounds: int
    cg_max_iterations: Optional[int]
    cg_tolerance: Optional[float]
    map_max_iterations: Optional[int]
    map_gtol: float
    recompute_mirrored_jacobians: bool


@beartype
def make_linear_operator(
    matvec: Callable[[Array], Array],
    rmatvec: Callable[[Array], Array],
    shape: Tuple[int, int],
    diagonal: Optional[Float[Array, " n"]] = None,
    matrix: Optional[Float[Array, "m n"]] = None,
) -> LinearOperator:
    """
    Description
    -----------
    Factory function for LinearOperator with runtime type-checking.

    Parameters
    ----------
    - `matvec` (Callable):
        Forward application of the operator.
    - `rmatvec` (Callable):
        Adjoint application of the operator.
    - `shape` (Tuple[int, int]):
        (range dimension, domain dimension), both positive.
    - `diagonal` (Optional[Float[Array, " n"]]):
        Explicit diagonal, if any.
    - `matrix` (Optional[Float[Array, "m n"]]):
        Explicit matrix, if any.

    Returns
    -------
    - `LinearOperator` instance

    Raises
    ------
    - ValueError:
        If a dimension is not positive or an explicit representation
        disagrees with `shape`.
    """
    if shape[0] < 1 or shape[1] < 1:
        msg = f"Operator dimensions must be positive, got {shape}."
        raise ValueError(msg)
    if diagonal is not None and (shape[0] != shape[1] or diagonal.shape != (shape[0],)):
        msg = f"Diagonal of shape {diagonal.shape} does not fit operator shape {shape}."
        raise ValueError(msg)
    if matrix is not None and matrix.shape != tuple(shape):
        msg = f"Matrix of shape {matrix.shape} does not fit operator shape {shape}."
        raise ValueError(msg)
    return LinearOperator(
        matvec=matvec,
        rmatvec=rmatvec,
        shape=(int(shape[0]), int(shape[1])),
        diagonal=diagonal,
        matrix=matrix,
    )


@jaxtyped(typechecker=beartype)
def make_energy(
    potential: Callable[[Array], Array],
    position: Float[Array, " D"],
    samples: Optional[Float[Array, "S D"]] = None,
    curvature: Optional[LinearOperator] = None,
    sampling_converged: Optional[Bool[Array, " S"]] = None,
) -> Energy:
    """
    Description
    -----------
    Factory function for Energy with runtime type-checking.

    The jaxtyping dimension `D` ties the width of `samples` to the
    length of `position`.

    Parameters
    ----------
    - `potential` (Callable):
        Scalar function to minimize.
    - `position` (Float[Array, " D"]):
        Starting position.
    - `samples` (Optional[Float[Array, "S D"]]):
        Sample offsets.
    - `curvature` (Optional[LinearOperator]):
        Curvature operator, square with dimension D.
    - `sampling_converged` (Optional[Bool[Array, " S"]]):
        Convergence flags of the sample draws.

    Returns
    -------
    - `Energy` instance

    Raises
    ------
    - ValueError:
        If the curvature does not act on vectors of dimension D.
    """
    dims: int = position.shape[0]
    if curvature is not None and curvature.shape != (dims, dims):
        msg = (
            f"Curvature of shape {curvature.shape} does not act on a "
            f"position of dimension {dims}."
        )
        raise ValueError(msg)
    return Energy(
        potential=potential,
        position=position,
        samples=samples,
        curvature=curvature,
        sampling_converged=sampling_converged,
    )


@beartype
def make_mgvi_config(
    n_samples: int = 3,
    mirror_samples: bool = True,
    nat_grad_steps: int = 15,
    nat_grad_scale: float = 0.5,
    initial_nat_grad_scale: Optional[float] = 0.1,
    n_rounds: int = 4,
    cg_max_iterations: Optional[int] = None,
    cg_tolerance: Optional[float] = None,
    map_max_iterations: Optional[int] = None,
    map_gtol: float = 1e-5,
    recompute_mirrored_jacobians: bool = True,
) -> MGVIConfig:
    """
    Description
    -----------
    Factory function for MGVIConfig that validates every field.

    Parameters
    ----------
    See `MGVIConfig`.

    Returns
    -------
    - `MGVIConfig` instance

    Raises
    ------
    - ValueError:
        If a count is out of range or a scale or tolerance is not
        positive.
    """
    if n_samples < 1:
        msg = f"n_samples must be a positive integer, got {n_samples}."
        raise ValueError(msg)
    if nat_grad_steps < 1:
        msg = f"nat_grad_steps must be a positive integer, got {nat_grad_steps}."
        raise ValueError(msg)
    if n_rounds < 0:
        msg = f"n_rounds must be non-negative, got {n_rounds}."
        raise ValueError(msg)
    if nat_grad_scale <= 0:
        msg = f"nat_grad_scale must be positive, got {nat_grad_scale}."
        raise ValueError(msg)
    if initial_nat_grad_scale is not None and initial_nat_grad_scale <= 0:
        msg = f"initial_nat_grad_scale must be positive, got {initial_nat_grad_scale}."
        raise ValueError(msg)
    if cg_max_iterations is not None and cg_max_iterations < 1:
        msg = f"cg_max_iterations must be a positive integer, got {cg_max_iterations}."
        raise ValueError(msg)
    if cg_tolerance is not None and cg_tolerance <= 0:
        msg = f"cg_tolerance must be positive, got {cg_tolerance}."
        raise ValueError(msg)
    if map_max_iterations is not None and map_max_iterations < 1:
        msg = f"map_max_iterations must be a positive integer, got {map_max_iterations}."
        raise ValueError(msg)
    if map_gtol <= 0:
        msg = f"map_gtol must be positive, got {map_gtol}."
        raise ValueError(msg)
    return MGVIConfig(
        n_samples=n_samples,
        mirror_samples=mirror_samples,
        nat_grad_steps=nat_grad_steps,
        nat_grad_scale=nat_grad_scale,
        initial_nat_grad_scale=initial_nat_grad_scale,
        n_rounds=n_rounds,
        cg_max_iterations=cg_max_iterations,
        cg_tolerance=cg_tolerance,
        map_max_iterations=map_max_iterations,
        map_gtol=map_gtol,
        recompute_mirrored_jacobians=recompute_mirrored_jacobians,
    )
