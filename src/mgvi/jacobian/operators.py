"""
Module: mgvi.jacobian.operators
-------------------------------

Matrix-free linear operators and Jacobian operator primitives.

These functions wrap JAX's autodiff to provide the Jacobian of an
arbitrary forward model as a linear operator, and a small algebra of
operators (composition, sums, adjoints, inverses of explicit
operators) from which metrics and Fisher information operators are
assembled without forming dense matrices.

Functions
---------
- `apply`:
    Apply an operator to a vector of its domain
- `adjoint_apply`:
    Apply the transposed operator to a vector of its range
- `identity_operator`:
    Identity on a given dimension
- `diagonal_operator`:
    Operator backed by an explicit diagonal
- `dense_operator`:
    Operator backed by an explicit matrix
- `adjoint`:
    Transposed operator
- `compose`:
    Operator product outer ∘ inner
- `add`:
    Operator sum
- `scale`:
    Operator times a scalar
- `inverse_operator`:
    Inverse of an operator with an explicit representation
- `sqrt_operator`:
    Symmetric square root of an explicit positive semi-definite operator
- `inverse_sqrt_operator`:
    Symmetric square root of the inverse
- `operator_to_dense`:
    Materialize an operator column by column
- `jvp_operator`:
    Jacobian-vector product J @ v
- `vjp_operator`:
    Vector-Jacobian product Jᵀ @ u
- `jacobian_operator`:
    Jacobian as a LinearOperator combining both products
- `fisher_operator`:
    Fisher information operator Jᵀ M J + I
"""

from functools import partial

import jax
import jax.numpy as jnp
from beartype import beartype
from beartype.typing import Callable, Tuple
from jaxtyping import Array, Float, jaxtyped

from mgvi.tools import LinearOperator, make_linear_operator, scalar_float


def _check_dimension(
    vector: Array,
    expected: int,
    role: str,
) -> None:
    """Raise ValueError unless `vector` is one-dimensional of length `expected`."""
    if vector.ndim != 1 or vector.shape[0] != expected:
        msg = (
            f"Vector of shape {vector.shape} does not match the operator "
            f"{role} dimension {expected}."
        )
        raise ValueError(msg)


def apply(
    operator: LinearOperator,
    vector: Float[Array, " n"],
) -> Float[Array, " m"]:
    """
    Description
    -----------
    Apply `operator` to a vector of its domain.

    Parameters
    ----------
    - `operator` (LinearOperator):
        Operator of shape (m, n).
    - `vector` (Float[Array, " n"]):
        Domain vector.

    Returns
    -------
    - `result` (Float[Array, " m"]):
        Range vector.

    Raises
    ------
    - ValueError:
        If the vector length differs from n, or the operator returns a
        vector whose length differs from m.
    """
    _check_dimension(vector, operator.shape[1], "domain")
    result: Float[Array, " m"] = operator.matvec(vector)
    _check_dimension(result, operator.shape[0], "range")
    return result


def adjoint_apply(
    operator: LinearOperator,
    vector: Float[Array, " m"],
) -> Float[Array, " n"]:
    """
    Description
    -----------
    Apply the transpose of `operator` to a vector of its range.

    Parameters
    ----------
    - `operator` (LinearOperator):
        Operator of shape (m, n).
    - `vector` (Float[Array, " m"]):
        Range vector.

    Returns
    -------
    - `result` (Float[Array, " n"]):
        Domain vector.

    Raises
    ------
    - ValueError:
        On a dimension mismatch in either direction.
    """
    _check_dimension(vector, operator.shape[0], "range")
    result: Float[Array, " n"] = operator.rmatvec(vector)
    _check_dimension(result, operator.shape[1], "domain")
    return result


def _identity(vector: Array) -> Array:
    return vector


def identity_operator(dims: int) -> LinearOperator:
    """Identity operator on vectors of length `dims`."""
    return make_linear_operator(
        _identity,
        _identity,
        (dims, dims),
        diagonal=jnp.ones(dims),
    )


@jaxtyped(typechecker=beartype)
def diagonal_operator(
    diagonal: Float[Array, " n"],
) -> LinearOperator:
    """
    Description
    -----------
    Construct the operator v ↦ diagonal ⊙ v.

    Parameters
    ----------
    - `diagonal` (Float[Array, " n"]):
        Diagonal entries.

    Returns
    -------
    - `operator` (LinearOperator):
        Self-adjoint diagonal operator that keeps its diagonal, so it
        can later be inverted or square-rooted.
    """
    matvec: Callable = partial(jnp.multiply, diagonal)
    dims: int = diagonal.shape[0]
    return make_linear_operator(matvec, matvec, (dims, dims), diagonal=diagonal)


@jaxtyped(typechecker=beartype)
def dense_operator(
    matrix: Float[Array, "m n"],
) -> LinearOperator:
    """
    Description
    -----------
    Wrap an explicit matrix as a LinearOperator.

    Parameters
    ----------
    - `matrix` (Float[Array, "m n"]):
        Matrix representation.

    Returns
    -------
    - `operator` (LinearOperator):
        Operator with matvec v ↦ A v and rmatvec u ↦ Aᵀ u.
    """
    matvec: Callable = partial(jnp.matmul, matrix)
    rmatvec: Callable = partial(jnp.matmul, matrix.T)
    shape: Tuple[int, int] = (matrix.shape[0], matrix.shape[1])
    return make_linear_operator(matvec, rmatvec, shape, matrix=matrix)


def adjoint(operator: LinearOperator) -> LinearOperator:
    """Transposed operator; swaps matvec and rmatvec."""
    matrix = None if operator.matrix is None else operator.matrix.T
    return make_linear_operator(
        operator.rmatvec,
        operator.matvec,
        (operator.shape[1], operator.shape[0]),
        diagonal=operator.diagonal,
        matrix=matrix,
    )


def compose(
    outer: LinearOperator,
    inner: LinearOperator,
) -> LinearOperator:
    """
    Description
    -----------
    Construct the product operator outer ∘ inner.

    Parameters
    ----------
    - `outer` (LinearOperator):
        Operator applied second, shape (m, k).
    - `inner` (LinearOperator):
        Operator applied first, shape (k, n).

    Returns
    -------
    - `product` (LinearOperator):
        Operator of shape (m, n). Keeps a diagonal or matrix
        representation only when both factors have one.

    Raises
    ------
    - ValueError:
        If the inner range does not match the outer domain.
    """
    if outer.shape[1] != inner.shape[0]:
        msg = f"Cannot compose operators of shapes {outer.shape} and {inner.shape}."
        raise ValueError(msg)

    def matvec(vector: Array) -> Array:
        return outer.matvec(inner.matvec(vector))

    def rmatvec(vector: Array) -> Array:
        return inner.rmatvec(outer.rmatvec(vector))

    diagonal = None
    if outer.diagonal is not None and inner.diagonal is not None:
        diagonal = outer.diagonal * inner.diagonal
    matrix = None
    if outer.matrix is not None and inner.matrix is not None:
        matrix = outer.matrix @ inner.matrix
    return make_linear_operator(
        matvec,
        rmatvec,
        (outer.shape[0], inner.shape[1]),
        diagonal=diagonal,
        matrix=matrix,
    )


def add(
    first: LinearOperator,
    second: LinearOperator,
) -> LinearOperator:
    """
    Description
    -----------
    Construct the sum operator first + second.

    Raises
    ------
    - ValueError:
        If the operator shapes differ.
    """
    if first.shape != second.shape:
        msg = f"Cannot add operators of shapes {first.shape} and {second.shape}."
        raise ValueError(msg)

    def matvec(vector: Array) -> Array:
        return first.matvec(vector) + second.matvec(vector)

    def rmatvec(vector: Array) -> Array:
        return first.rmatvec(vector) + second.rmatvec(vector)

    diagonal = None
    if first.diagonal is not None and second.diagonal is not None:
        diagonal = first.diagonal + second.diagonal
    matrix = None
    if first.matrix is not None and second.matrix is not None:
        matrix = first.matrix + second.matrix
    return make_linear_operator(
        matvec, rmatvec, first.shape, diagonal=diagonal, matrix=matrix
    )


def scale(
    operator: LinearOperator,
    factor: scalar_float,
) -> LinearOperator:
    """Operator v ↦ factor · (operator v)."""

    def matvec(vector: Array) -> Array:
        return factor * operator.matvec(vector)

    def rmatvec(vector: Array) -> Array:
        return factor * operator.rmatvec(vector)

    diagonal = None if operator.diagonal is None else factor * operator.diagonal
    matrix = None if operator.matrix is None else factor * operator.matrix
    return make_linear_operator(
        matvec, rmatvec, operator.shape, diagonal=diagonal, matrix=matrix
    )


def inverse_operator(operator: LinearOperator) -> LinearOperator:
    """
    Description
    -----------
    Invert an operator that carries an explicit diagonal or matrix.

    The check for invertibility needs concrete values, so this must be
    called outside of `jax.jit`. It is meant for configuration-time
    objects such as noise covariances.

    Parameters
    ----------
    - `operator` (LinearOperator):
        Square operator with `diagonal` or `matrix` set.

    Returns
    -------
    - `inverse` (LinearOperator):
        Explicit inverse of the same kind as the input.

    Raises
    ------
    - ValueError:
        If the operator is not square, is singular, has non-finite
        entries, or has no explicit representation.

    Flow
    ----
    1. Diagonal: reject zero or non-finite entries, return 1 / diagonal
    2. Matrix: reject rank deficiency, return the dense inverse
    3. Anything else cannot be inverted without an iterative solve
    """
    if operator.shape[0] != operator.shape[1]:
        msg = f"Cannot invert a non-square operator of shape {operator.shape}."
        raise ValueError(msg)
    if operator.diagonal is not None:
        diagonal: Float[Array, " n"] = operator.diagonal
        if not bool(jnp.all(jnp.isfinite(diagonal)) & jnp.all(diagonal != 0)):
            msg = "Diagonal operator is not invertible: it has zero or non-finite entries."
            raise ValueError(msg)
        return diagonal_operator(1.0 / diagonal)
    if operator.matrix is not None:
        matrix: Float[Array, "n n"] = operator.matrix
        if not bool(jnp.all(jnp.isfinite(matrix))):
            msg = "Matrix operator is not invertible: it has non-finite entries."
            raise ValueError(msg)
        rank: int = int(jnp.linalg.matrix_rank(matrix))
        if rank < matrix.shape[0]:
            msg = (
                f"Matrix operator is singular: rank {rank} < dimension "
                f"{matrix.shape[0]}."
            )
            raise ValueError(msg)
        return dense_operator(jnp.linalg.inv(matrix))
    msg = (
        "Cannot invert a matrix-free operator; build it with "
        "diagonal_operator or dense_operator."
    )
    raise ValueError(msg)


def sqrt_operator(operator: LinearOperator) -> LinearOperator:
    """
    Description
    -----------
    Symmetric square root of a positive semi-definite operator with an
    explicit representation.

    Raises
    ------
    - ValueError:
        If the operator has no explicit representation, is not
        symmetric, or has negative eigenvalues.
    """
    if operator.diagonal is not None:
        diagonal: Float[Array, " n"] = operator.diagonal
        if not bool(jnp.all(jnp.isfinite(diagonal)) & jnp.all(diagonal >= 0)):
            msg = "Square root requires finite, non-negative diagonal entries."
            raise ValueError(msg)
        return diagonal_operator(jnp.sqrt(diagonal))
    if operator.matrix is not None and operator.shape[0] == operator.shape[1]:
        matrix: Float[Array, "n n"] = operator.matrix
        if not bool(jnp.allclose(matrix, matrix.T)):
            msg = "Square root requires a symmetric matrix."
            raise ValueError(msg)
        eigenvalues, eigenvectors = jnp.linalg.eigh(matrix)
        cutoff: Float[Array, ""] = (
            -jnp.finfo(matrix.dtype).eps * matrix.shape[0] * jnp.max(jnp.abs(eigenvalues))
        )
        if not bool(jnp.all(eigenvalues >= cutoff)):
            msg = "Square root requires a positive semi-definite matrix."
            raise ValueError(msg)
        root_values: Float[Array, " n"] = jnp.sqrt(jnp.clip(eigenvalues, 0.0))
        return dense_operator((eigenvectors * root_values) @ eigenvectors.T)
    msg = (
        "Cannot take the square root of a matrix-free operator; build it "
        "with diagonal_operator or dense_operator."
    )
    raise ValueError(msg)


def inverse_sqrt_operator(operator: LinearOperator) -> LinearOperator:
    """Symmetric square root of the inverse, e.g. metric^(-1/2)."""
    return sqrt_operator(inverse_operator(operator))


def operator_to_dense(operator: LinearOperator) -> Float[Array, "m n"]:
    """
    Description
    -----------
    Materialize an operator by applying it to every basis vector.

    Costs one matvec per domain dimension. Intended for diagnostics and
    tests on small problems, never inside the inference loop.

    Parameters
    ----------
    - `operator` (LinearOperator):
        Operator of shape (m, n).

    Returns
    -------
    - `matrix` (Float[Array, "m n"]):
        Dense matrix representation.
    """
    basis: Float[Array, "n n"] = jnp.eye(operator.shape[1])
    columns: Float[Array, "n m"] = jax.vmap(operator.matvec)(basis)
    return columns.T


def jvp_operator(
    forward_fn: Callable[[Float[Array, " n"]], Float[Array, " m"]],
    position: Float[Array, " n"],
) -> Callable[[Float[Array, " n"]], Float[Array, " m"]]:
    """
    Description
    -----------
    Push a latent-space direction δ through the linearized forward model,
    δ ↦ J(ξ) δ, with ξ = `position`.

    Every call re-runs the forward model under `jax.jvp`, so nothing is
    stored between calls and memory stays at one model evaluation. The
    result lives in data space and is the first-order change of the
    predicted data when ξ moves along δ.

    Parameters
    ----------
    - `forward_fn` (Callable[[Float[Array, " n"]], Float[Array, " m"]]):
        Signal response ξ ↦ predicted data.
    - `position` (Float[Array, " n"]):
        Expansion point ξ of the linearization.

    Returns
    -------
    - `push_forward` (Callable[[Float[Array, " n"]], Float[Array, " m"]]):
        Latent direction to data-space perturbation.
    """

    def push_forward(
        direction: Float[Array, " n"],
    ) -> Float[Array, " m"]:
        return jax.jvp(forward_fn, (position,), (direction,))[1]

    return push_forward


def vjp_operator(
    forward_fn: Callable[[Float[Array, " n"]], Float[Array, " m"]],
    position: Float[Array, " n"],
) -> Callable[[Float[Array, " m"]], Float[Array, " n"]]:
    """
    Description
    -----------
    Pull a data-space vector u back to latent space, u ↦ J(ξ)ᵀ u.

    The forward model is evaluated once here under `jax.vjp` and its
    residuals are kept, so later calls only run the backward pass. This
    is how weighted data residuals such as M (d - R(ξ)) become latent
    gradients and how the sampler projects synthetic data back onto ξ.

    Parameters
    ----------
    - `forward_fn` (Callable[[Float[Array, " n"]], Float[Array, " m"]]):
        Signal response ξ ↦ predicted data.
    - `position` (Float[Array, " n"]):
        Expansion point ξ of the linearization.

    Returns
    -------
    - `pull_back` (Callable[[Float[Array, " m"]], Float[Array, " n"]]):
        Data-space vector to latent-space vector.
    """
    _, backward = jax.vjp(forward_fn, position)

    def pull_back(
        data_vector: Float[Array, " m"],
    ) -> Float[Array, " n"]:
        (latent_vector,) = backward(data_vector)
        return latent_vector

    return pull_back


def jacobian_operator(
    forward_fn: Callable[[Float[Array, " n"]], Float[Array, " m"]],
    position: Float[Array, " n"],
) -> LinearOperator:
    """
    Description
    -----------
    Construct the Jacobian of `forward_fn` at `position` as a matrix-free
    LinearOperator.

    `apply` runs one forward-mode pass, `adjoint_apply` one reverse-mode
    pass through the linearization captured here. Both act on the same
    linear map, so they are exact transposes of each other. No dense
    Jacobian is ever formed.

    Parameters
    ----------
    - `forward_fn` (Callable[[Float[Array, " n"]], Float[Array, " m"]]):
        Differentiable forward model.
    - `position` (Float[Array, " n"]):
        Evaluation point.

    Returns
    -------
    - `jacobian` (LinearOperator):
        Operator of shape (m, n).

    Raises
    ------
    - ValueError:
        If the position or the model output is not one-dimensional.

    Flow
    ----
    1. Infer the output shape abstractly with jax.eval_shape
    2. Build the JVP closure for matvec
    3. Build the VJP closure for rmatvec
    """
    if position.ndim != 1:
        msg = f"Jacobian position must be one-dimensional, got shape {position.shape}."
        raise ValueError(msg)
    output_struct = jax.eval_shape(
        forward_fn, jax.ShapeDtypeStruct(position.shape, position.dtype)
    )
    if len(output_struct.shape) != 1:
        msg = (
            "Forward model must return a one-dimensional array, got shape "
            f"{output_struct.shape}."
        )
        raise ValueError(msg)
    jvp_fn: Callable = jvp_operator(forward_fn, position)
    vjp_fn: Callable = vjp_operator(forward_fn, position)
    return make_linear_operator(
        jvp_fn, vjp_fn, (output_struct.shape[0], position.shape[0])
    )


def fisher_operator(
    jacobian: LinearOperator,
    metric: LinearOperator,
) -> LinearOperator:
    """
    Description
    -----------
    Fisher information of a Gaussian likelihood plus the standard-normal
    prior curvature, Jᵀ M J + I.

    Parameters
    ----------
    - `jacobian` (LinearOperator):
        Jacobian of the forward model, shape (m, n).
    - `metric` (LinearOperator):
        Inverse noise covariance, shape (m, m).

    Returns
    -------
    - `fisher` (LinearOperator):
        Symmetric positive-definite operator of shape (n, n).

    Raises
    ------
    - ValueError:
        If the metric does not act on the Jacobian's range.
    """
    likelihood_fisher: LinearOperator = compose(
        adjoint(jacobian), compose(metric, jacobian)
    )
    return add(likelihood_fisher, identity_operator(jacobian.shape[1]))
