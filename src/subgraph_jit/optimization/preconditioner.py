# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Subgraph preconditioner.

Given a split of a linear system into a spanning-tree part (A1, b1) and a
loop-closing part (A2, b2), and the triangular factorization R of the tree
part, the preconditioner re-parameterizes the unknowns as

    x(y) = xbar + R⁻¹ y,        xbar = R⁻¹ d

so that the tree subsystem is solved exactly for every y. In y-space the
total least-squares cost becomes

    f(y) = ½ ||y||² + ½ ||A2 x(y) − b2||²

whose normal equations are (I + R⁻ᵀ A2ᵀ A2 R⁻¹) y = R⁻ᵀ A2ᵀ (b2 − A2 xbar).
Conjugate gradient only has to resolve the (usually small) constraint
residual; the identity block keeps the operator well conditioned.

The implicit operator used by conjugate gradient is

    A_y = [ I        ]
          [ A2 R⁻¹   ]

applied through :meth:`multiply` and adjoint :meth:`transpose_multiply_add`.
Neither A_y nor AᵀA is ever formed.
"""

from __future__ import annotations
from typing import Dict, List, Optional

import jax.numpy as jnp

from subgraph_jit.core.errors import SubgraphError
from subgraph_jit.core.factor_graph import GaussianFactorGraph
from subgraph_jit.core.types import Key
from subgraph_jit.core.vector_values import Errors, VectorValues
from subgraph_jit.optimization.elimination import GaussianBayesNet


class SubgraphPreconditioner:
    """
    y-space view of a least-squares problem split into tree and constraints.

    Args:
        constraints: loop-closing factors (A2, b2).
        bayes_net: triangular factorization R of the tree factors. It is
            held by reference and may be shared with other preconditioners.
        xbar: baseline tree-only solution. Computed as ``bayes_net.optimize()``
            when omitted.
    """

    def __init__(
        self,
        constraints: GaussianFactorGraph,
        bayes_net: GaussianBayesNet,
        xbar: Optional[VectorValues] = None,
    ) -> None:
        dims = bayes_net.dims()
        for f in constraints:
            unknown = [k for k in f.keys if k not in dims]
            if unknown:
                raise SubgraphError(
                    f"Constraint factor references variables {unknown} "
                    "that are not part of the tree factorization"
                )

        self._Ab2 = constraints
        self._Rc1 = bayes_net
        self._xbar = xbar if xbar is not None else bayes_net.optimize()
        self._dims: Dict[Key, int] = dims
        self._keys: List[Key] = sorted(dims)

    @property
    def constraints(self) -> GaussianFactorGraph:
        return self._Ab2

    @property
    def bayes_net(self) -> GaussianBayesNet:
        return self._Rc1

    @property
    def xbar(self) -> VectorValues:
        return self._xbar

    def zero(self) -> VectorValues:
        """No deviation from xbar: one zero block per variable of R."""
        return VectorValues.zeros(self._dims)

    def x(self, y: VectorValues) -> VectorValues:
        """Map a y-space vector to an x-space assignment, xbar + R⁻¹ y."""
        return self._xbar + self._Rc1.back_substitute(y)

    def residual(self, y: VectorValues) -> VectorValues:
        """
        Gradient of f at y:

            ∇f(y) = y + R⁻ᵀ A2ᵀ (A2 x(y) − b2)

        The tree part contributes y itself; the constraints are evaluated at
        x(y) and pulled back into y-space through Rᵀ.
        """
        e2 = self._Ab2.error_vectors(self.x(y))
        gx2 = self._Ab2.transpose_multiply_add(1.0, e2, VectorValues.zeros(self._dims))
        return y + self._Rc1.back_substitute_transpose(gx2)

    gradient = residual

    def multiply(self, y: VectorValues) -> Errors:
        """[I; A2 R⁻¹] y, stacked as per-variable blocks then per-constraint rows."""
        e = Errors(y[key] for key in self._keys)
        e.extend(self._Ab2.multiply(self._Rc1.back_substitute(y)))
        return e

    def transpose_multiply_add(self, alpha: float, e: Errors, y: VectorValues) -> VectorValues:
        """y + alpha [I; A2 R⁻¹]ᵀ e."""
        n = len(self._keys)
        if len(e) != n + len(self._Ab2):
            raise ValueError(
                f"Expected {n + len(self._Ab2)} error blocks, got {len(e)}"
            )
        e1 = VectorValues(dict(zip(self._keys, e[:n])))
        gx2 = self._Ab2.transpose_multiply_add(1.0, Errors(e[n:]), VectorValues.zeros(self._dims))
        return y + (e1 + self._Rc1.back_substitute_transpose(gx2)) * alpha

    def error(self, y: VectorValues) -> jnp.ndarray:
        """½ ||y||² + ½ ||A2 x(y) − b2||²."""
        return 0.5 * y.squared_norm() + self._Ab2.error(self.x(y))

    def __repr__(self) -> str:
        return (
            f"SubgraphPreconditioner(tree_conditionals={len(self._Rc1)}, "
            f"constraints={len(self._Ab2)})"
        )
