"""
Module: mgvi.jacobian.solvers
-----------------------------

Iterative linear solvers for matrix-free curvature operators.

Functions
---------
- `conjugate_gradient`:
    Matrix-free CG solver for symmetric positive-definite systems
"""

import math

from beartype.typing import NamedTuple, Optional
import jax.numpy as jnp
import jax.lax as lax
from jaxtyping import Array, Bool, Float, Int

from mgvi.jacobian.operators import apply
from mgvi.tools import CGResult, LinearOperator


class CGState(NamedTuple):
    """State for conjugate gradient iteration."""
    x: Float[Array, " n"]
    r: Float[Array, " n"]
    p: Float[Array, " n"]
    r_dot_r: Float[Array, ""]
    best_x: Float[Array, " n"]
    best_r_dot_r: Float[Array, ""]
    iteration: Int[Array, ""]


def conjugate_gradient(
    operator: LinearOperator,
    rhs: Float[Array, " n"],
    x0: Optional[Float[Array, " n"]] = None,
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
    atol: float = 0.0,
) -> CGResult:
    """
    Description
    -----------
    Solve the linear system A @ x = b using conjugate gradient method.

    The operator A must be symmetric positive-definite. This is
    satisfied by the Fisher information operators Jᵀ M J + I used
    throughout the inference loop. Running out of iterations is not an
    error: the iterate with the smallest recursive residual is returned
    with `converged` set to False so the caller can decide what to do.

    Parameters
    ----------
    - `operator` (LinearOperator):
        Square operator A. Must be symmetric positive-definite.
    - `rhs` (Float[Array, " n"]):
        Right-hand side vector b.
    - `x0` (Optional[Float[Array, " n"]]):
        Initial guess for solution. Default zeros.
    - `max_iterations` (Optional[int]):
        Maximum number of CG iterations. Default is the dimension n.
    - `tolerance` (Optional[float]):
        Relative tolerance on the residual norm. Default is the square
        root of the machine epsilon of the rhs dtype.
    - `atol` (float):
        Absolute tolerance on the residual norm. Default 0.

    Returns
    -------
    - `result` (CGResult):
        Solution, convergence flag, iteration count and residual norm.

    Raises
    ------
    - ValueError:
        If the operator is not square or rhs/x0 do not match its
        dimension.

    Flow
    ----
    1. Initialize residual r = b - A @ x0
    2. Initialize search direction p = r
    3. While ||r|| > max(tolerance * ||b||, atol) and budget remains:
       a. Compute A @ p
       b. Compute step size α = (r·r) / (p·Ap)
       c. Update solution x = x + α*p
       d. Update residual r = r - α*Ap
       e. Compute β = (r_new·r_new) / (r_old·r_old)
       f. Update search direction p = r + β*p
       g. Keep x if ||r|| is the smallest seen so far
    4. Report the kept iterate and whether the threshold was met
    """
    if operator.shape[0] != operator.shape[1]:
        msg = f"Conjugate gradient needs a square operator, got shape {operator.shape}."
        raise ValueError(msg)
    dims: int = operator.shape[1]
    if x0 is None:
        x0 = jnp.zeros_like(rhs)
    if x0.shape != rhs.shape:
        msg = f"Initial guess of shape {x0.shape} does not match rhs of shape {rhs.shape}."
        raise ValueError(msg)
    if max_iterations is None:
        max_iterations = dims
    if tolerance is None:
        tolerance = math.sqrt(float(jnp.finfo(rhs.dtype).eps))

    initial_residual: Float[Array, " n"] = rhs - apply(operator, x0)
    initial_r_dot_r: Float[Array, ""] = jnp.dot(initial_residual, initial_residual)
    threshold: Float[Array, ""] = jnp.maximum(tolerance * jnp.linalg.norm(rhs), atol)
    threshold_squared: Float[Array, ""] = threshold**2

    initial_state: CGState = CGState(
        x=x0,
        r=initial_residual,
        p=initial_residual,
        r_dot_r=initial_r_dot_r,
        best_x=x0,
        best_r_dot_r=initial_r_dot_r,
        iteration=jnp.array(0, dtype=jnp.int32),
    )

    def cg_continue(state: CGState) -> Bool[Array, ""]:
        return (state.r_dot_r > threshold_squared) & (state.iteration < max_iterations)

    def cg_step(state: CGState) -> CGState:
        a_times_p: Float[Array, " n"] = operator.matvec(state.p)
        p_dot_ap: Float[Array, ""] = jnp.dot(state.p, a_times_p)
        alpha: Float[Array, ""] = state.r_dot_r / p_dot_ap
        x_new: Float[Array, " n"] = state.x + alpha * state.p
        r_new: Float[Array, " n"] = state.r - alpha * a_times_p
        r_dot_r_new: Float[Array, ""] = jnp.dot(r_new, r_new)
        beta: Float[Array, ""] = r_dot_r_new / state.r_dot_r
        p_new: Float[Array, " n"] = r_new + beta * state.p
        improved: Bool[Array, ""] = r_dot_r_new < state.best_r_dot_r
        return CGState(
            x=x_new,
            r=r_new,
            p=p_new,
            r_dot_r=r_dot_r_new,
            best_x=jnp.where(improved, x_new, state.best_x),
            best_r_dot_r=jnp.where(improved, r_dot_r_new, state.best_r_dot_r),
            iteration=state.iteration + 1,
        )

    final_state: CGState = lax.while_loop(cg_continue, cg_step, initial_state)
    converged: Bool[Array, ""] = final_state.best_r_dot_r <= threshold_squared
    return CGResult(
        solution=final_state.best_x,
        converged=converged,
        iterations=final_state.iteration,
        residual_norm=jnp.sqrt(final_state.best_r_dot_r),
    )
