import chex
import jax
import jax.numpy as jnp
import pytest
from absl.testing import parameterized

from mgvi.inference.kl import maximum_posterior, metric_gaussian_kl
from mgvi.inference.likelihoods import gaussian_energy, standard_hamiltonian
from mgvi.inference.minimize import minimize, natural_gradient_descent, quasi_newton
from mgvi.jacobian.operators import dense_operator, diagonal_operator, identity_operator
from mgvi.tools import MinimizationReport, make_energy

# Enable 64-bit precision
jax.config.update("jax_enable_x64", True)


def _linear_problem():
    matrix = jnp.array(
        [[1.0, 0.5, 0.0], [0.0, 2.0, -0.3], [0.4, 0.0, 1.0], [1.0, 1.0, 1.0]]
    )
    noise_diagonal = jnp.array([0.1, 0.2, 0.1, 0.5])
    data = jnp.array([1.0, -2.0, 0.5, 0.3])
    likelihood = gaussian_energy(
        diagonal_operator(noise_diagonal), data, lambda x: matrix @ x
    )
    metric = jnp.diag(1.0 / noise_diagonal)
    analytic = jnp.linalg.solve(
        matrix.T @ metric @ matrix + jnp.eye(3), matrix.T @ metric @ data
    )
    return standard_hamiltonian(likelihood), analytic


class TestQuasiNewton(chex.TestCase):
    """Test MAP minimization of curvature-free energies."""

    def test_linear_model_normal_equations(self):
        """Check the MAP of a linear model against the normal equations."""
        hamiltonian, analytic = _linear_problem()
        energy = maximum_posterior(hamiltonian, jnp.zeros(3))
        result, report = minimize(energy, gtol=1e-7)
        assert isinstance(report, MinimizationReport)
        assert report.method == "lbfgs"
        assert report.converged
        chex.assert_trees_all_close(result.position, analytic, atol=1e-6)
        assert result.samples is None and result.curvature is None

    def test_does_not_mutate_input(self):
        """Check the input energy keeps its starting position."""
        hamiltonian, _ = _linear_problem()
        start = jnp.array([0.1, 0.1, 0.1])
        energy = maximum_posterior(hamiltonian, start)
        minimize(energy)
        chex.assert_trees_all_close(energy.position, start)

    def test_recovers_data_with_small_noise(self):
        """Check D = 4, N = 0.01² I, identity response recovers d within 1e-3."""
        data = jnp.array([0.5, -1.2, 2.0, 0.3])
        likelihood = gaussian_energy(
            diagonal_operator(0.01**2 * jnp.ones(4)), data, lambda x: x
        )
        energy = maximum_posterior(standard_hamiltonian(likelihood), jnp.zeros(4))
        result, _ = minimize(energy)
        chex.assert_trees_all_close(result.position, data, atol=1e-3)

    @parameterized.parameters({"gtol": 1e-5}, {"gtol": 1e-7})
    def test_quadratic_meets_gradient_tolerance(self, gtol):
        """Check that L-BFGS drives the gradient below gtol on a quadratic."""
        hamiltonian, analytic = _linear_problem()
        energy = maximum_posterior(hamiltonian, jnp.zeros(3))
        result, report = quasi_newton(energy, gtol=gtol)
        gradient = jax.grad(hamiltonian.nll_plus_prior)(result.position)
        assert report.converged
        assert report.iterations < 50
        assert float(jnp.max(jnp.abs(gradient))) < gtol
        chex.assert_trees_all_close(result.position, analytic, atol=10 * gtol)
        chex.assert_trees_all_close(
            report.potential, float(hamiltonian.nll_plus_prior(analytic)), rtol=1e-8
        )

    def test_ill_conditioned_quadratic(self):
        """Check convergence when the Hessian spans four orders of magnitude."""
        hessian = jnp.diag(jnp.logspace(0, 4, 6))
        linear = jnp.arange(1.0, 7.0)
        energy = make_energy(
            lambda x: 0.5 * x @ hessian @ x - linear @ x, jnp.zeros(6)
        )
        result, report = quasi_newton(energy, gtol=1e-8)
        assert report.converged
        chex.assert_trees_all_close(
            result.position, linear / jnp.diag(hessian), atol=1e-8
        )

    def test_budget_exhaustion_is_reported(self):
        """Check that a tiny iteration budget yields a warning, not an error."""
        hamiltonian, _ = _linear_problem()
        energy = maximum_posterior(hamiltonian, jnp.zeros(3))
        with self.assertLogs("mgvi.inference.minimize", level="WARNING"):
            result, report = quasi_newton(energy, max_iterations=1, gtol=1e-12)
        assert not report.converged
        assert bool(jnp.all(jnp.isfinite(result.position)))
        assert report.potential <= float(energy.potential(energy.position))


class TestNaturalGradientDescent(chex.TestCase):
    """Test curvature-preconditioned descent."""

    @parameterized.parameters({"step_scale": 0.1}, {"step_scale": 0.25})
    def test_identity_curvature_is_gradient_descent(self, step_scale):
        """Check step-by-step agreement with plain gradient descent."""
        hessian = jnp.array([[3.0, 1.0], [1.0, 2.0]])
        linear = jnp.array([1.0, -1.0])

        def potential(x):
            return 0.5 * x @ hessian @ x - linear @ x

        energy = make_energy(
            potential,
            jnp.array([2.0, -3.0]),
            samples=jnp.zeros((1, 2)),
            curvature=identity_operator(2),
        )
        reference = energy.position
        for _ in range(5):
            energy, report = natural_gradient_descent(
                energy, nat_grad_steps=1, nat_grad_scale=step_scale
            )
            reference = reference - step_scale * (hessian @ reference - linear)
            chex.assert_trees_all_close(energy.position, reference, rtol=1e-12, atol=1e-12)
            assert report.converged

    def test_exact_curvature_is_newton(self):
        """Check that one unit step with the exact Hessian hits the minimum."""
        hessian = jnp.array([[4.0, 1.0, 0.0], [1.0, 3.0, 0.5], [0.0, 0.5, 2.0]])
        linear = jnp.array([1.0, 2.0, 3.0])
        energy = make_energy(
            lambda x: 0.5 * x @ hessian @ x - linear @ x,
            jnp.zeros(3),
            samples=jnp.zeros((2, 3)),
            curvature=dense_operator(hessian),
        )
        result, report = minimize(energy, nat_grad_steps=1, nat_grad_scale=1.0)
        assert report.method == "natural_gradient"
        assert report.iterations == 1
        chex.assert_trees_all_close(
            result.position, jnp.linalg.solve(hessian, linear), rtol=1e-6
        )

    def test_mgvi_on_linear_model(self):
        """Check that mirrored MGVI on a linear model converges to the MAP."""
        hamiltonian, analytic = _linear_problem()
        energy = metric_gaussian_kl(
            jax.random.PRNGKey(0), hamiltonian, jnp.zeros(3), 2, mirror_samples=True
        )
        result, report = minimize(energy, nat_grad_steps=3, nat_grad_scale=1.0)
        assert report.converged
        chex.assert_trees_all_close(result.position, analytic, atol=1e-6)
        chex.assert_trees_all_close(result.samples, energy.samples)
        assert result.curvature is energy.curvature

    def test_unconverged_solves_are_reported(self):
        """Check that an exhausted CG budget keeps the best iterate and warns."""
        hessian = jnp.diag(jnp.logspace(0, 3, 5))
        energy = make_energy(
            lambda x: 0.5 * x @ hessian @ x - jnp.sum(x),
            jnp.zeros(5),
            samples=jnp.zeros((1, 5)),
            curvature=dense_operator(hessian),
        )
        with self.assertLogs("mgvi.inference.minimize", level="WARNING"):
            result, report = natural_gradient_descent(
                energy, nat_grad_steps=2, cg_max_iterations=1
            )
        assert not report.converged
        assert bool(jnp.all(jnp.isfinite(result.position)))


class TestMinimizeDispatch(chex.TestCase):
    """Test the state checks of minimize."""

    def test_samples_without_curvature(self):
        """Check that half-built energies are rejected."""
        energy = make_energy(
            lambda x: jnp.sum(x**2), jnp.ones(2), samples=jnp.zeros((1, 2))
        )
        with pytest.raises(ValueError):
            minimize(energy)

    def test_curvature_without_samples(self):
        """Check the symmetric case."""
        energy = make_energy(
            lambda x: jnp.sum(x**2), jnp.ones(2), curvature=identity_operator(2)
        )
        with pytest.raises(ValueError):
            minimize(energy)
