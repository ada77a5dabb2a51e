import chex
import jax
import jax.numpy as jnp
import pytest
from absl.testing import parameterized

from mgvi.jacobian.operators import (
    dense_operator,
    diagonal_operator,
    fisher_operator,
    identity_operator,
    jacobian_operator,
    operator_to_dense,
)
from mgvi.jacobian.solvers import conjugate_gradient
from mgvi.tools import CGResult

# Enable 64-bit precision
jax.config.update("jax_enable_x64", True)


def _spd_matrix(dims, seed):
    factor = jax.random.normal(jax.random.PRNGKey(seed), (dims, dims))
    return factor @ factor.T + dims * jnp.eye(dims)


class TestConjugateGradient(chex.TestCase):
    """Test the matrix-free conjugate gradient solver."""

    @chex.variants(with_jit=True, without_jit=True)
    @parameterized.parameters(
        {"dims": 3, "seed": 0},
        {"dims": 8, "seed": 1},
        {"dims": 20, "seed": 2},
    )
    def test_solves_spd_system(self, dims, seed):
        """Check the solution against a dense solve."""
        matrix = _spd_matrix(dims, seed)
        rhs = jnp.linspace(-1.0, 2.0, dims)
        operator = dense_operator(matrix)

        @self.variant
        def solve(b):
            return conjugate_gradient(
                operator, b, max_iterations=2 * dims, tolerance=1e-10
            )

        result = solve(rhs)
        assert isinstance(result, CGResult)
        assert bool(result.converged)
        assert int(result.iterations) <= 2 * dims
        chex.assert_shape(result.solution, (dims,))
        chex.assert_trees_all_close(
            result.solution, jnp.linalg.solve(matrix, rhs), rtol=1e-8, atol=1e-10
        )

    def test_matrix_free_fisher(self):
        """Check a solve against Jᵀ M J + I built from a Jacobian operator."""
        xi = jnp.array([0.2, -0.4, 0.9])
        jac = jacobian_operator(lambda x: jnp.tanh(x) * jnp.sum(x), xi)
        fisher = fisher_operator(jac, diagonal_operator(jnp.array([10.0, 2.0, 0.5])))
        rhs = jnp.array([1.0, 0.0, -1.0])
        result = conjugate_gradient(fisher, rhs)
        assert bool(result.converged)
        chex.assert_trees_all_close(
            result.solution,
            jnp.linalg.solve(operator_to_dense(fisher), rhs),
            rtol=1e-6,
        )

    def test_zero_rhs_converges_immediately(self):
        """Check that b = 0 returns zero without iterating."""
        result = conjugate_gradient(identity_operator(4), jnp.zeros(4))
        assert bool(result.converged)
        assert int(result.iterations) == 0
        chex.assert_trees_all_close(result.solution, jnp.zeros(4))

    def test_identity_single_step(self):
        """Check that the identity is solved exactly in one iteration."""
        rhs = jnp.array([3.0, -1.0, 0.5])
        result = conjugate_gradient(identity_operator(3), rhs)
        assert int(result.iterations) == 1
        chex.assert_trees_all_close(result.solution, rhs, rtol=0.0, atol=0.0)

    def test_budget_exhausted_returns_iterate(self):
        """Check that running out of iterations is reported, not raised."""
        dims = 20
        matrix = jnp.diag(jnp.logspace(0, 4, dims))
        rhs = jnp.ones(dims)
        result = conjugate_gradient(dense_operator(matrix), rhs, max_iterations=2)
        assert not bool(result.converged)
        assert int(result.iterations) == 2
        assert bool(jnp.all(jnp.isfinite(result.solution)))
        chex.assert_trees_all_close(
            result.residual_norm,
            jnp.linalg.norm(rhs - matrix @ result.solution),
            rtol=1e-6,
        )

    def test_residual_never_grows_with_budget(self):
        """Check that a larger budget never returns a worse iterate."""
        dims = 20
        matrix = jnp.diag(jnp.logspace(0, 4, dims))
        rhs = jnp.ones(dims)
        previous = float(jnp.linalg.norm(rhs))
        for budget in range(1, 11):
            result = conjugate_gradient(
                dense_operator(matrix), rhs, max_iterations=budget
            )
            current = float(result.residual_norm)
            assert current <= previous
            chex.assert_trees_all_close(
                result.residual_norm,
                jnp.linalg.norm(rhs - matrix @ result.solution),
                rtol=1e-6,
            )
            previous = current

    def test_warm_start(self):
        """Check that starting from the solution needs no iterations."""
        matrix = _spd_matrix(5, 4)
        solution = jnp.arange(5.0)
        result = conjugate_gradient(
            dense_operator(matrix), matrix @ solution, x0=solution, atol=1e-10
        )
        assert bool(result.converged)
        assert int(result.iterations) == 0

    def test_dimension_errors(self):
        """Check that non-square operators and wrong lengths raise."""
        with pytest.raises(ValueError):
            conjugate_gradient(dense_operator(jnp.ones((2, 3))), jnp.ones(2))
        with pytest.raises(ValueError):
            conjugate_gradient(identity_operator(3), jnp.ones(4))
        with pytest.raises(ValueError):
            conjugate_gradient(identity_operator(3), jnp.ones(3), x0=jnp.ones(2))
