import chex
import jax
import jax.numpy as jnp
import pytest
from absl.testing import parameterized

from mgvi.jacobian.operators import (
    add,
    adjoint,
    adjoint_apply,
    apply,
    compose,
    dense_operator,
    diagonal_operator,
    fisher_operator,
    identity_operator,
    inverse_operator,
    inverse_sqrt_operator,
    jacobian_operator,
    jvp_operator,
    operator_to_dense,
    scale,
    sqrt_operator,
    vjp_operator,
)

# Enable 64-bit precision
jax.config.update("jax_enable_x64", True)


def _nonlinear_model(xi):
    return jnp.concatenate([jnp.sin(xi) * xi[::-1], jnp.exp(0.3 * xi[:2])])


def _assert_adjoint_identity(operator, key, rtol=1e-10):
    key_u, key_v = jax.random.split(key)
    u = jax.random.normal(key_u, (operator.shape[1],))
    v = jax.random.normal(key_v, (operator.shape[0],))
    lhs = jnp.dot(apply(operator, u), v)
    rhs = jnp.dot(u, adjoint_apply(operator, v))
    chex.assert_trees_all_close(lhs, rhs, rtol=rtol, atol=1e-12)


class TestJacobianOperator(chex.TestCase):
    """Test the Jacobian operator builder."""

    @parameterized.parameters(
        {"position": [0.5, -1.0, 2.0]},
        {"position": [0.0, 0.0, 0.0]},
        {"position": [3.0, 1.5, -0.25, 4.0, -2.0]},
    )
    def test_elementwise_square(self, position):
        """Check J v = 2 ξ ⊙ v and Jᵀ u = 2 ξ ⊙ u for f(ξ) = ξ²."""
        xi = jnp.array(position)
        jac = jacobian_operator(lambda x: x**2, xi)
        direction = jnp.linspace(-1.0, 1.0, xi.shape[0])
        assert jac.shape == (xi.shape[0], xi.shape[0])
        chex.assert_trees_all_close(apply(jac, direction), 2.0 * xi * direction)
        chex.assert_trees_all_close(adjoint_apply(jac, direction), 2.0 * xi * direction)

    def test_rectangular_matches_dense_jacobian(self):
        """Check both products against jax.jacfwd on a non-square model."""
        xi = jnp.array([0.3, -0.7, 1.1, 0.2])
        jac = jacobian_operator(_nonlinear_model, xi)
        dense = jax.jacfwd(_nonlinear_model)(xi)
        assert jac.shape == (6, 4)
        chex.assert_trees_all_close(operator_to_dense(jac), dense, atol=1e-12)
        u = jnp.arange(6.0)
        chex.assert_trees_all_close(adjoint_apply(jac, u), dense.T @ u, atol=1e-12)

    @parameterized.parameters({"seed": 0}, {"seed": 1}, {"seed": 2})
    def test_adjoint_identity(self, seed):
        """Check ⟨J u, v⟩ = ⟨u, Jᵀ v⟩ at random points."""
        key = jax.random.PRNGKey(seed)
        point_key, check_key = jax.random.split(key)
        xi = jax.random.normal(point_key, (4,))
        _assert_adjoint_identity(jacobian_operator(_nonlinear_model, xi), check_key)

    def test_jvp_and_vjp_primitives(self):
        """Check the bare JVP and VJP closures agree with the operator."""
        xi = jnp.array([0.1, 0.2, 0.3, 0.4])
        jvp_fn = jvp_operator(_nonlinear_model, xi)
        vjp_fn = vjp_operator(_nonlinear_model, xi)
        dense = jax.jacrev(_nonlinear_model)(xi)
        chex.assert_trees_all_close(jvp_fn(jnp.ones(4)), dense @ jnp.ones(4))
        chex.assert_trees_all_close(vjp_fn(jnp.ones(6)), dense.T @ jnp.ones(6))

    def test_rejects_non_vector_input(self):
        """Check that matrix-shaped positions are rejected."""
        with pytest.raises(ValueError):
            jacobian_operator(lambda x: x, jnp.ones((2, 2)))

    def test_rejects_non_vector_output(self):
        """Check that models returning matrices are rejected."""
        with pytest.raises(ValueError):
            jacobian_operator(lambda x: jnp.outer(x, x), jnp.ones(3))

    def test_call_time_dimension_mismatch(self):
        """Check that wrong vector lengths fail instead of broadcasting."""
        jac = jacobian_operator(_nonlinear_model, jnp.ones(4))
        with pytest.raises(ValueError):
            apply(jac, jnp.ones(6))
        with pytest.raises(ValueError):
            adjoint_apply(jac, jnp.ones(4))
        with pytest.raises(ValueError):
            apply(jac, jnp.ones((4, 1)))


class TestOperatorAlgebra(chex.TestCase):
    """Test composition, sums, adjoints and explicit inverses."""

    def setUp(self):
        super().setUp()
        self.matrix = jnp.array([[2.0, 0.5, 0.0], [0.5, 3.0, 0.2], [0.0, 0.2, 1.5]])
        self.rectangular = jnp.array([[1.0, 2.0, 0.0], [0.0, -1.0, 3.0]])

    def test_dense_and_diagonal_adjoint_identity(self):
        """Check the adjoint identity for metric-like operators."""
        key = jax.random.PRNGKey(7)
        _assert_adjoint_identity(dense_operator(self.rectangular), key)
        _assert_adjoint_identity(diagonal_operator(jnp.array([1.0, 4.0, 0.5])), key)

    def test_compose_and_adjoint(self):
        """Check (A ∘ B) and its adjoint against dense products."""
        left = dense_operator(self.rectangular)
        right = dense_operator(self.matrix)
        product = compose(left, right)
        chex.assert_trees_all_close(
            operator_to_dense(product), self.rectangular @ self.matrix
        )
        chex.assert_trees_all_close(
            operator_to_dense(adjoint(product)), (self.rectangular @ self.matrix).T
        )
        chex.assert_trees_all_close(product.matrix, self.rectangular @ self.matrix)

    def test_compose_shape_mismatch(self):
        """Check that incompatible compositions raise."""
        with pytest.raises(ValueError):
            compose(dense_operator(self.matrix), dense_operator(self.rectangular))

    def test_add_and_scale(self):
        """Check sums and scalar multiples keep explicit representations."""
        diagonal = diagonal_operator(jnp.array([1.0, 2.0, 3.0]))
        summed = add(scale(diagonal, 2.0), identity_operator(3))
        chex.assert_trees_all_close(summed.diagonal, jnp.array([3.0, 5.0, 7.0]))
        chex.assert_trees_all_close(
            apply(summed, jnp.ones(3)), jnp.array([3.0, 5.0, 7.0])
        )
        with pytest.raises(ValueError):
            add(diagonal, dense_operator(self.rectangular))

    def test_inverse_of_diagonal(self):
        """Check the inverse of a diagonal noise covariance."""
        noise = diagonal_operator(jnp.array([0.25, 4.0]))
        metric = inverse_operator(noise)
        chex.assert_trees_all_close(metric.diagonal, jnp.array([4.0, 0.25]))

    def test_inverse_of_dense(self):
        """Check that a dense inverse undoes the operator."""
        inverse = inverse_operator(dense_operator(self.matrix))
        chex.assert_trees_all_close(
            operator_to_dense(inverse) @ self.matrix, jnp.eye(3), atol=1e-12
        )

    @parameterized.named_parameters(
        ("zero_diagonal", "diagonal"),
        ("singular_matrix", "matrix"),
        ("matrix_free", "free"),
    )
    def test_non_invertible(self, kind):
        """Check that non-invertible operators are configuration errors."""
        if kind == "diagonal":
            operator = diagonal_operator(jnp.array([1.0, 0.0]))
        elif kind == "matrix":
            operator = dense_operator(jnp.array([[1.0, 2.0], [2.0, 4.0]]))
        else:
            operator = jacobian_operator(jnp.sin, jnp.ones(2))
        with pytest.raises(ValueError):
            inverse_operator(operator)

    def test_square_roots(self):
        """Check that square roots multiply back to the operator."""
        root = sqrt_operator(dense_operator(self.matrix))
        dense_root = operator_to_dense(root)
        chex.assert_trees_all_close(dense_root @ dense_root, self.matrix, atol=1e-12)
        inv_root = inverse_sqrt_operator(diagonal_operator(jnp.array([4.0, 0.01])))
        chex.assert_trees_all_close(inv_root.diagonal, jnp.array([0.5, 10.0]))
        with pytest.raises(ValueError):
            sqrt_operator(diagonal_operator(jnp.array([1.0, -1.0])))
        with pytest.raises(ValueError):
            sqrt_operator(dense_operator(self.rectangular))


class TestFisherOperator(chex.TestCase):
    """Test the Fisher information operator Jᵀ M J + I."""

    def test_matches_dense_fisher(self):
        """Check against the dense formula for a nonlinear model."""
        xi = jnp.array([0.4, -0.3, 0.8, 1.2])
        metric_diagonal = jnp.array([1.0, 2.0, 0.5, 3.0, 1.5, 0.1])
        jac = jacobian_operator(_nonlinear_model, xi)
        fisher = fisher_operator(jac, diagonal_operator(metric_diagonal))
        dense_jac = jax.jacfwd(_nonlinear_model)(xi)
        expected = dense_jac.T @ jnp.diag(metric_diagonal) @ dense_jac + jnp.eye(4)
        chex.assert_trees_all_close(operator_to_dense(fisher), expected, atol=1e-12)
        _assert_adjoint_identity(fisher, jax.random.PRNGKey(3))

    def test_metric_shape_mismatch(self):
        """Check that a metric on the wrong data space is rejected."""
        jac = jacobian_operator(_nonlinear_model, jnp.ones(4))
        with pytest.raises(ValueError):
            fisher_operator(jac, identity_operator(4))
