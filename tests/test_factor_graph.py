from __future__ import annotations

import pytest
import jax.numpy as jnp

from subgraph_jit.core.errors import IncompleteOrderingError, MalformedFactorError
from subgraph_jit.core.factor_graph import GaussianFactorGraph
from subgraph_jit.core.types import KeyInfo, LinearFactor, Ordering
from subgraph_jit.core.vector_values import VectorValues
from subgraph_jit.slam.measurements import (
    between_factor,
    linear_factor,
    prior_factor,
    sigma_to_weight,
    weight_to_sigma,
)


def test_single_variable_prior():
    """
    One variable x, one prior factor:
        residual = x - target
    The error vanishes at the target and the gradient points away from it.
    """
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(0, jnp.array([2.0])))

    at_target = VectorValues({0: jnp.array([2.0])})
    off_target = VectorValues({0: jnp.array([0.0])})

    assert float(fg.error(at_target)) == pytest.approx(0.0)
    assert float(fg.error(off_target)) == pytest.approx(2.0)   # 0.5 * 2^2

    g = fg.gradient(off_target)
    assert float(g[0][0]) == pytest.approx(-2.0)


def test_tiny_slam_prior_plus_odom():
    """
    Two variables: p0, p1 (1D each for simplicity).

    Factors:
      - prior on p0: wants p0 = 0
      - odom between p0 and p1: wants (p1 - p0) = 1

    The dense Jacobian solve gives p0 = 0, p1 = 1.
    """
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(0, jnp.array([0.0])))
    fg.push_back(between_factor(0, 1, jnp.array([1.0])))

    info = KeyInfo.from_graph(fg)
    A, b = fg.jacobian(info)
    assert A.shape == (2, 2)

    x = jnp.linalg.solve(A.T @ A, A.T @ b)
    values = VectorValues.from_vector(x, info)

    assert float(values[0][0]) == pytest.approx(0.0, abs=1e-9)
    assert float(values[1][0]) == pytest.approx(1.0, abs=1e-9)


def test_residual_function_matches_factor_errors():
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(0, jnp.array([1.0, -1.0]), sigmas=0.5))
    fg.push_back(between_factor(0, 1, jnp.array([2.0, 0.0])))

    info = KeyInfo.from_graph(fg)
    values = VectorValues({0: jnp.array([0.0, 0.0]), 1: jnp.array([1.0, 1.0])})
    x = values.vector(info)

    residual = fg.build_residual_function(info)
    objective = fg.build_objective(info)

    r = residual(x)
    expected = jnp.concatenate(fg.error_vectors(values))
    assert jnp.allclose(r, expected)
    # build_objective is ||r||^2, graph.error is 0.5 ||r||^2
    assert float(objective(x)) == pytest.approx(2.0 * float(fg.error(values)))


def test_multiply_and_transpose_are_adjoint():
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(0, jnp.array([1.0, 2.0])))
    fg.push_back(between_factor(0, 1, jnp.array([0.5, 0.5]), sigmas=jnp.array([0.1, 0.2])))

    x = VectorValues({0: jnp.array([1.0, -2.0]), 1: jnp.array([0.3, 0.7])})
    e = fg.multiply(x)
    e_other = type(e)([jnp.array([1.0, 2.0]), jnp.array([-1.0, 4.0])])

    ATe = fg.transpose_multiply_add(1.0, e_other, x.zero_like())
    assert float(e.dot(e_other)) == pytest.approx(float(x.dot(ATe)))


def test_whitening_scales_rows():
    f = prior_factor(3, jnp.array([1.0, 1.0]), sigmas=jnp.array([0.5, 2.0]))
    blocks, rhs = f.whitened()
    assert jnp.allclose(blocks[0], jnp.diag(jnp.array([2.0, 0.5])))
    assert jnp.allclose(rhs, jnp.array([2.0, 0.5]))


def test_sigma_weight_conversions():
    assert float(sigma_to_weight(0.5)) == pytest.approx(4.0)
    assert float(weight_to_sigma(4.0)) == pytest.approx(0.5)


def test_malformed_factor_shapes():
    with pytest.raises(MalformedFactorError):
        linear_factor((0, 1), (jnp.eye(2),), jnp.zeros(2))
    with pytest.raises(MalformedFactorError):
        linear_factor((0,), (jnp.eye(3),), jnp.zeros(2))
    with pytest.raises(MalformedFactorError):
        linear_factor((0, 0), (jnp.eye(2), jnp.eye(2)), jnp.zeros(2))
    with pytest.raises(MalformedFactorError):
        prior_factor(0, jnp.zeros(2), sigmas=0.0)


def test_inconsistent_dimensions_rejected():
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(0, jnp.zeros(2)))
    fg.push_back(prior_factor(0, jnp.zeros(3)))
    with pytest.raises(MalformedFactorError):
        fg.dims()


def test_key_info_layout_and_missing_keys():
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(5, jnp.zeros(2)))
    fg.push_back(between_factor(5, 7, jnp.zeros(2)))

    info = KeyInfo.from_graph(fg, Ordering([7, 9, 5]))
    assert info.ordering == [7, 5]
    assert info.index[7] == (0, 2)
    assert info.index[5] == (2, 2)
    assert info.total_dim == 4

    with pytest.raises(IncompleteOrderingError):
        KeyInfo.from_graph(fg, Ordering([5]))


def test_ordering_rejects_duplicates():
    assert Ordering.from_keys(2, 1) == [2, 1]
    with pytest.raises(ValueError):
        Ordering([1, 2, 1])


def test_factors_compare_by_identity():
    f1 = prior_factor(0, jnp.zeros(1))
    f2 = prior_factor(0, jnp.zeros(1))
    assert f1 != f2
    assert len({f1, f2}) == 2
    assert isinstance(f1, LinearFactor)
