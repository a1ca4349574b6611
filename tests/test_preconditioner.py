from __future__ import annotations

import pytest
import jax
import jax.numpy as jnp

from subgraph_jit.core.errors import SubgraphError
from subgraph_jit.core.factor_graph import GaussianFactorGraph
from subgraph_jit.core.types import KeyInfo, Ordering
from subgraph_jit.core.vector_values import Errors, VectorValues
from subgraph_jit.optimization.elimination import eliminate_sequential
from subgraph_jit.optimization.preconditioner import SubgraphPreconditioner
from subgraph_jit.optimization.subgraph_solver import split_graph
from subgraph_jit.slam.measurements import between_factor, prior_factor


def _build(fg):
    tree, constraints = split_graph(fg)
    bn = eliminate_sequential(tree, Ordering.natural(tree))
    return tree, constraints, bn, SubgraphPreconditioner(constraints, bn)


def test_zero_maps_to_xbar(triangle_graph):
    _, _, bn, pc = _build(triangle_graph)
    y0 = pc.zero()
    assert y0.keys() == [0, 1, 2]
    assert float(y0.norm()) == 0.0
    assert pc.x(y0).equals(pc.xbar, tol=0.0)
    assert pc.xbar.equals(bn.optimize(), tol=0.0)


def test_xbar_satisfies_tree_exactly(triangle_graph):
    tree, _, _, pc = _build(triangle_graph)
    assert float(tree.error(pc.xbar)) == pytest.approx(0.0, abs=1e-20)
    assert jnp.allclose(pc.xbar.vector(), jnp.array([0.0, 1.0, 2.0]))


def test_residual_is_gradient_of_error(triangle_graph):
    _, _, _, pc = _build(triangle_graph)
    info = KeyInfo.from_dims(pc.zero().dims())

    def f(y_flat):
        return pc.error(VectorValues.from_vector(y_flat, info))

    y = VectorValues({0: jnp.array([0.3]), 1: jnp.array([-0.2]), 2: jnp.array([0.5])})
    expected = jax.grad(f)(y.vector(info))
    assert jnp.allclose(pc.residual(y).vector(info), expected)
    assert pc.gradient(y).equals(pc.residual(y))


def test_operator_is_consistent_with_residual(triangle_graph):
    """residual(y) − residual(0) == AᵀA y for the implicit operator A."""
    _, _, _, pc = _build(triangle_graph)
    y = VectorValues({0: jnp.array([1.0]), 1: jnp.array([2.0]), 2: jnp.array([-1.0])})

    AtAy = pc.transpose_multiply_add(1.0, pc.multiply(y), pc.zero())
    assert (pc.residual(y) - pc.residual(pc.zero())).equals(AtAy, tol=1e-12)


def test_multiply_transpose_adjoint(triangle_graph):
    _, constraints, _, pc = _build(triangle_graph)
    y = VectorValues({0: jnp.array([0.1]), 1: jnp.array([0.7]), 2: jnp.array([-0.4])})
    e = Errors([jnp.array([1.0]), jnp.array([-2.0]), jnp.array([0.5]), jnp.array([3.0])])
    assert len(pc.multiply(y)) == 3 + len(constraints)

    lhs = float(pc.multiply(y).dot(e))
    rhs = float(y.dot(pc.transpose_multiply_add(1.0, e, pc.zero())))
    assert lhs == pytest.approx(rhs)

    shifted = pc.transpose_multiply_add(2.0, e, y)
    assert shifted.equals(y + pc.transpose_multiply_add(1.0, e, pc.zero()) * 2.0, tol=1e-12)


def test_no_constraints_zero_residual(chain_graph):
    _, constraints, _, pc = _build(chain_graph)
    assert len(constraints) == 0
    assert float(pc.residual(pc.zero()).norm()) == 0.0
    assert float(pc.error(pc.zero())) == 0.0


def test_bayes_net_shared_by_reference(triangle_graph):
    _, constraints, bn, pc = _build(triangle_graph)
    other = SubgraphPreconditioner(GaussianFactorGraph(), bn, pc.xbar)
    assert other.bayes_net is pc.bayes_net
    assert other.xbar is pc.xbar
    assert other.constraints is not constraints


def test_constraint_on_unknown_key_rejected(chain_graph):
    bn = eliminate_sequential(chain_graph, Ordering.natural(chain_graph))
    extra = GaussianFactorGraph()
    extra.push_back(between_factor(2, 99, jnp.array([1.0])))
    with pytest.raises(SubgraphError):
        SubgraphPreconditioner(extra, bn)


def test_error_combines_tree_and_constraints(triangle_graph):
    _, constraints, _, pc = _build(triangle_graph)
    # At y = 0 only the loop closure contributes: x2 - x0 = 2 vs 1.5
    assert float(pc.error(pc.zero())) == pytest.approx(0.5 * 0.5 ** 2)
    assert float(constraints.error(pc.xbar)) == pytest.approx(0.125)


def test_repr_mentions_sizes(triangle_graph):
    _, _, _, pc = _build(triangle_graph)
    assert "constraints=1" in repr(pc)


def test_prior_only_tree():
    fg = GaussianFactorGraph()
    fg.push_back(prior_factor(4, jnp.array([1.0, 2.0])))
    _, _, _, pc = _build(fg)
    assert pc.x(pc.zero()).equals(VectorValues({4: jnp.array([1.0, 2.0])}), tol=1e-12)
