"""
Module: mgvi.inference.minimize
-------------------------------

Minimization of an Energy.

The strategy is fixed by the state the Energy was built in: energies
carrying samples and a curvature operator are minimized by natural
gradient descent, curvature-free energies by an L-BFGS quasi-Newton method
with line search.

Functions
---------
- `minimize`:
    Dispatch on the Energy state and run the matching strategy
- `natural_gradient_descent`:
    Curvature-preconditioned gradient steps
- `quasi_newton`:
    L-BFGS to convergence for point estimates
"""

import logging

import jax
import jax.numpy as jnp
import optax
from beartype.typing import Optional, Tuple
from jaxtyping import Array, Bool, Float, Int

from mgvi.jacobian.solvers import conjugate_gradient
from mgvi.tools import CGResult, Energy, MinimizationReport

logger = logging.getLogger(__name__)


def natural_gradient_descent(
    energy: Energy,
    nat_grad_steps: int = 15,
    nat_grad_scale: float = 1.0,
    cg_max_iterations: Optional[int] = None,
    cg_tolerance: Optional[float] = None,
) -> Tuple[Energy, MinimizationReport]:
    """
    Description
    -----------
    Run a fixed number of natural gradient steps
    ξ ← ξ - scale · C⁻¹ ∇potential(ξ), where C is the Energy's
    curvature and the inverse is applied through a CG solve.

    Parameters
    ----------
    - `energy` (Energy):
        Energy with a curvature operator.
    - `nat_grad_steps` (int):
        Number of steps. Default 15.
    - `nat_grad_scale` (float):
        Step scale. Default 1.
    - `cg_max_iterations` (Optional[int]):
        Iteration cap of each CG solve.
    - `cg_tolerance` (Optional[float]):
        Relative tolerance of each CG solve.

    Returns
    -------
    - `energy` (Energy):
        Copy of the input at the final position.
    - `report` (MinimizationReport):
        `converged` is False if any CG solve ran out of budget. The best
        iterate of such a solve is still used for the step.

    Flow
    ----
    1. Gradient of the potential by reverse-mode autodiff
    2. Solve curvature · Δ = gradient with conjugate gradient
    3. Update position ← position - scale · Δ
    """
    grad_fn = jax.grad(energy.potential)

    @jax.jit
    def step(
        position: Float[Array, " D"],
    ) -> Tuple[Float[Array, " D"], CGResult]:
        gradient: Float[Array, " D"] = grad_fn(position)
        cg_result: CGResult = conjugate_gradient(
            energy.curvature,
            gradient,
            max_iterations=cg_max_iterations,
            tolerance=cg_tolerance,
        )
        return position - nat_grad_scale * cg_result.solution, cg_result

    position: Float[Array, " D"] = energy.position
    all_converged: bool = True
    for iteration in range(nat_grad_steps):
        position, cg_result = step(position)
        if not bool(cg_result.converged):
            all_converged = False
            logger.warning(
                "Natural gradient step %d: CG did not converge after %d "
                "iterations (residual %.3e); using best iterate",
                iteration,
                int(cg_result.iterations),
                float(cg_result.residual_norm),
            )
        logger.debug(
            "Natural gradient step %d: CG iterations %d",
            iteration,
            int(cg_result.iterations),
        )

    final_potential: float = float(energy.potential(position))
    logger.info(
        "Natural gradient descent finished after %d steps, potential %.6e",
        nat_grad_steps,
        final_potential,
    )
    report = MinimizationReport(
        method="natural_gradient",
        converged=all_converged,
        iterations=nat_grad_steps,
        potential=final_potential,
    )
    return energy._replace(position=position), report


def quasi_newton(
    energy: Energy,
    max_iterations: Optional[int] = None,
    gtol: float = 1e-5,
) -> Tuple[Energy, MinimizationReport]:
    """
    Description
    -----------
    Minimize the potential with L-BFGS and a zoom line search enforcing
    the strong Wolfe conditions. The gradient is computed by
    reverse-mode autodiff and reused from the line search state.

    Parameters
    ----------
    - `energy` (Energy):
        Curvature-free energy.
    - `max_iterations` (Optional[int]):
        Iteration budget. Default 1000.
    - `gtol` (float):
        Convergence tolerance on the gradient's infinity norm.
        Default 1e-5.

    Returns
    -------
    - `energy` (Energy):
        Copy of the input at the optimizer's result.
    - `report` (MinimizationReport):
        `converged` is False when the budget ran out before the gradient
        criterion was met; the position reached is used regardless.

    Flow
    ----
    1. Wrap the potential for value and gradient reuse across steps
    2. Iterate L-BFGS updates in a while loop until
       ‖∇potential‖∞ < gtol or the budget is spent
    3. Read the final value and gradient from the optimizer state
    """
    if max_iterations is None:
        max_iterations = 1000
    solver: optax.GradientTransformationExtraArgs = optax.lbfgs()
    value_and_grad_fn = optax.value_and_grad_from_state(energy.potential)

    def lbfgs_step(carry: Tuple[Array, optax.OptState]) -> Tuple[Array, optax.OptState]:
        position, state = carry
        value, gradient = value_and_grad_fn(position, state=state)
        updates, state = solver.update(
            gradient,
            state,
            position,
            value=value,
            grad=gradient,
            value_fn=energy.potential,
        )
        return optax.apply_updates(position, updates), state

    def lbfgs_continue(carry: Tuple[Array, optax.OptState]) -> Bool[Array, ""]:
        _, state = carry
        count: Int[Array, ""] = optax.tree_utils.tree_get(state, "count")
        gradient: Float[Array, " D"] = optax.tree_utils.tree_get(state, "grad")
        return (count == 0) | (
            (count < max_iterations) & (jnp.max(jnp.abs(gradient)) >= gtol)
        )

    initial_carry = (energy.position, solver.init(energy.position))
    position, final_state = jax.lax.while_loop(
        lbfgs_continue, lbfgs_step, initial_carry
    )
    gradient: Float[Array, " D"] = optax.tree_utils.tree_get(final_state, "grad")
    gradient_norm: float = float(jnp.max(jnp.abs(gradient)))
    converged: bool = gradient_norm < gtol
    iterations: int = int(optax.tree_utils.tree_get(final_state, "count"))
    final_potential: float = float(optax.tree_utils.tree_get(final_state, "value"))
    if converged:
        logger.info(
            "L-BFGS converged after %d iterations, potential %.6e",
            iterations,
            final_potential,
        )
    else:
        logger.warning(
            "L-BFGS stopped without converging after %d iterations "
            "(gradient norm %.3e), potential %.6e; using last position",
            iterations,
            gradient_norm,
            final_potential,
        )
    report = MinimizationReport(
        method="lbfgs",
        converged=converged,
        iterations=iterations,
        potential=final_potential,
    )
    return energy._replace(position=position), report


def minimize(
    energy: Energy,
    nat_grad_steps: int = 15,
    nat_grad_scale: float = 1.0,
    cg_max_iterations: Optional[int] = None,
    cg_tolerance: Optional[float] = None,
    max_iterations: Optional[int] = None,
    gtol: float = 1e-5,
) -> Tuple[Energy, MinimizationReport]:
    """
    Description
    -----------
    Minimize an Energy with the strategy its state calls for.

    Energies with samples and curvature (variational inference) go to
    `natural_gradient_descent`; energies with neither (MAP) go to
    `quasi_newton`. The natural gradient keywords are ignored for MAP
    energies and vice versa.

    Parameters
    ----------
    - `energy` (Energy):
        Energy to minimize.
    - `nat_grad_steps` (int):
        Natural gradient steps.
    - `nat_grad_scale` (float):
        Natural gradient step scale.
    - `cg_max_iterations` (Optional[int]):
        Iteration cap of each CG solve.
    - `cg_tolerance` (Optional[float]):
        Relative tolerance of each CG solve.
    - `max_iterations` (Optional[int]):
        Iteration budget of the quasi-Newton optimizer.
    - `gtol` (float):
        Gradient tolerance of the quasi-Newton optimizer.

    Returns
    -------
    - `energy` (Energy):
        New Energy at the minimizer's final position; samples and
        curvature are carried over unchanged.
    - `report` (MinimizationReport):
        Convergence summary.

    Raises
    ------
    - ValueError:
        If exactly one of samples and curvature is present.
    """
    has_samples: bool = energy.samples is not None
    has_curvature: bool = energy.curvature is not None
    if has_samples != has_curvature:
        msg = (
            "Energy must carry both samples and curvature or neither, got "
            f"samples={'present' if has_samples else 'absent'}, "
            f"curvature={'present' if has_curvature else 'absent'}."
        )
        raise ValueError(msg)
    if has_curvature:
        return natural_gradient_descent(
            energy,
            nat_grad_steps=nat_grad_steps,
            nat_grad_scale=nat_grad_scale,
            cg_max_iterations=cg_max_iterations,
            cg_tolerance=cg_tolerance,
        )
    return quasi_newton(energy, max_iterations=max_iterations, gtol=gtol)
