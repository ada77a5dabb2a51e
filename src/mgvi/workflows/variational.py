"""High-level inference workflows.

Extended Summary
----------------
This module chains likelihood construction, energy construction and
minimization into the two loops used in practice: a single MAP
minimization, and the alternating sampling ⇄ minimizing rounds of
Metric Gaussian Variational Inference.

Routine Listings
----------------
_round_scale : function, internal
    Natural gradient step scale for a given round.
run_maximum_posterior : function
    Maximum a posteriori estimate by quasi-Newton minimization.
run_mgvi : function
    Metric Gaussian Variational Inference over several rounds.

Notes
-----
Rounds are strictly sequential: each round samples around the position
the previous round's minimization produced, and every round builds a
fresh Energy so that samples and curvature always belong to the
position they were drawn at.
"""

import logging

import jax
from beartype.typing import List, Tuple
from jaxtyping import Array, Float, PRNGKeyArray

from mgvi.inference import maximum_posterior, metric_gaussian_kl, minimize
from mgvi.tools import Energy, MGVIConfig, MinimizationReport, StandardHamiltonian

logger = logging.getLogger(__name__)


def _round_scale(config: MGVIConfig, round_index: int) -> float:
    """Natural gradient step scale for a given round.

    Parameters
    ----------
    config : MGVIConfig
        Inference configuration.
    round_index : int
        Zero-based round counter.

    Returns
    -------
    scale : float
        `initial_nat_grad_scale` in round 0 when set, otherwise
        `nat_grad_scale`.
    """
    if round_index == 0 and config.initial_nat_grad_scale is not None:
        return config.initial_nat_grad_scale
    return config.nat_grad_scale


def run_maximum_posterior(
    hamiltonian: StandardHamiltonian,
    position: Float[Array, " D"],
    config: MGVIConfig,
) -> Tuple[Energy, MinimizationReport]:
    """Maximum a posteriori estimate of the latent vector.

    Parameters
    ----------
    hamiltonian : StandardHamiltonian
        Negative log-posterior to minimize.
    position : Float[Array, " D"]
        Starting point.
    config : MGVIConfig
        Supplies `map_max_iterations` and `map_gtol`.

    Returns
    -------
    energy : Energy
        Curvature-free Energy at the optimizer's result.
    report : MinimizationReport
        Convergence summary of the quasi-Newton run.
    """
    energy: Energy = maximum_posterior(hamiltonian, position)
    return minimize(
        energy,
        max_iterations=config.map_max_iterations,
        gtol=config.map_gtol,
    )


def run_mgvi(
    key: PRNGKeyArray,
    hamiltonian: StandardHamiltonian,
    position: Float[Array, " D"],
    config: MGVIConfig,
) -> Tuple[Energy, List[MinimizationReport]]:
    """Metric Gaussian Variational Inference.

    Each round draws a fresh sample set around the current position,
    builds the KL energy with its sample-averaged curvature and runs the
    natural gradient steps on it. A round whose solves did not converge
    is logged and the loop carries on with the best iterates.

    Parameters
    ----------
    key : PRNGKeyArray
        Random key; one subkey is split off per round.
    hamiltonian : StandardHamiltonian
        Negative log-posterior.
    position : Float[Array, " D"]
        Initial latent position.
    config : MGVIConfig
        Sample count, mirroring, step counts and scales, round count and
        solver budgets.

    Returns
    -------
    energy : Energy
        The last round's KL energy at its minimized position. With
        `n_rounds == 0` the curvature-free Energy at `position`.
    reports : List[MinimizationReport]
        One report per round.
    """
    energy: Energy = maximum_posterior(hamiltonian, position)
    reports: List[MinimizationReport] = []
    for round_index in range(config.n_rounds):
        key, round_key = jax.random.split(key)
        logger.info("Round %d: sampling", round_index)
        energy = metric_gaussian_kl(
            round_key,
            hamiltonian,
            energy.position,
            config.n_samples,
            mirror_samples=config.mirror_samples,
            recompute_mirrored_jacobians=config.recompute_mirrored_jacobians,
            cg_max_iterations=config.cg_max_iterations,
            cg_tolerance=config.cg_tolerance,
        )
        logger.info("Round %d: minimizing", round_index)
        energy, report = minimize(
            energy,
            nat_grad_steps=config.nat_grad_steps,
            nat_grad_scale=_round_scale(config, round_index),
            cg_max_iterations=config.cg_max_iterations,
            cg_tolerance=config.cg_tolerance,
        )
        reports.append(report)
        if not report.converged:
            logger.warning("Round %d finished with unconverged solves", round_index)
    return energy, reports
