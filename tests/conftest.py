"""Pytest configuration and fixtures."""

import jax

# Tolerances below 1e-6 are only meaningful in double precision.
jax.config.update("jax_enable_x64", True)

import jax.numpy as jnp  # noqa: E402
import pytest  # noqa: E402

from subgraph_jit.core.factor_graph import GaussianFactorGraph  # noqa: E402
from subgraph_jit.slam.measurements import between_factor, prior_factor  # noqa: E402


@pytest.fixture
def chain_graph():
    """x0 -- x1 -- x2 with a prior on x0; no loops."""
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(0, jnp.array([0.0])))
    fg.push_back(between_factor(0, 1, jnp.array([1.0])))
    fg.push_back(between_factor(1, 2, jnp.array([1.0])))
    return fg


@pytest.fixture
def triangle_graph():
    """
    x0 -> x1 -> x2 -> x0 with a prior on x0.

    The loop is inconsistent on purpose (1 + 1 - 1.5 != 0) so the
    least-squares optimum differs from the tree-only solution.
    """
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(0, jnp.array([0.0])))
    fg.push_back(between_factor(0, 1, jnp.array([1.0])))
    fg.push_back(between_factor(1, 2, jnp.array([1.0])))
    fg.push_back(between_factor(2, 0, jnp.array([-1.5])))
    return fg


@pytest.fixture
def dense_solve():
    """Brute-force least squares through the dense normal equations."""
    from subgraph_jit.core.types import KeyInfo
    from subgraph_jit.core.vector_values import VectorValues

    def solve(fg):
        info = KeyInfo.from_graph(fg)
        A, b = fg.jacobian(info)
        x = jnp.linalg.solve(A.T @ A, A.T @ b)
        return VectorValues.from_vector(x, info)

    return solve
