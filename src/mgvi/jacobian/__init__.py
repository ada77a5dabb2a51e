"""
Matrix-free Jacobians, linear operators and iterative solvers.

This module provides the linear-algebra layer of the inference loop:
Jacobians of arbitrary JAX forward models exposed as operators through
forward-mode and reverse-mode autodiff, an operator algebra for metrics
and Fisher information, and a conjugate gradient solver.

Submodules
----------
- `operators`:
    JVP, VJP and Jacobian operators, operator algebra
- `solvers`:
    Conjugate gradient for symmetric positive-definite operators
"""

from .operators import (
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
from .solvers import conjugate_gradient

__all__ = [
    "apply",
    "adjoint_apply",
    "identity_operator",
    "diagonal_operator",
    "dense_operator",
    "adjoint",
    "compose",
    "add",
    "scale",
    "inverse_operator",
    "sqrt_operator",
    "inverse_sqrt_operator",
    "operator_to_dense",
    "jvp_operator",
    "vjp_operator",
    "jacobian_operator",
    "fisher_operator",
    "conjugate_gradient",
]
