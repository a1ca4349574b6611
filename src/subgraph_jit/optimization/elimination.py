# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Sequential QR elimination and triangular (Bayes net) factorizations.

This module turns a linear factor graph plus an ordering into an upper
triangular factorization, one conditional per eliminated variable:

    R_j x_j + Σ_{k ∈ parents(j)} S_jk x_k = d_j

Parents of a conditional are always eliminated after it, so the stacked
system is block upper triangular in elimination order and can be solved by
back-substitution.

Key Concepts
------------
eliminate_sequential(graph, ordering)
    For every key in order: gather the remaining factors touching it,
    stack them densely over [frontal, separator], take a QR factorization
    of the augmented matrix [A | b], emit the frontal rows as a
    conditional and push the leftover rows back into the graph as a new
    factor on the separator.

GaussianBayesNet
    Immutable, ordered tuple of conditionals with the operations the
    subgraph preconditioner needs:
        optimize()                     x  = R⁻¹ d
        back_substitute(y)             x  = R⁻¹ y
        back_substitute_transpose(g)   y  = R⁻ᵀ g
        multiply(x)                    e  = R x
        transpose_multiply(e)          g  = Rᵀ e

Notes
-----
A Bayes net is never mutated after elimination. Several solvers can hold
the same instance; sharing is by reference and needs no copying.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, List, Sequence, Tuple

import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from subgraph_jit.core.errors import IncompleteOrderingError, SingularSystemError
from subgraph_jit.core.factor_graph import GaussianFactorGraph
from subgraph_jit.core.types import Key, LinearFactor
from subgraph_jit.core.vector_values import VectorValues

# Relative pivot threshold below which R is treated as singular.
PIVOT_TOL = 1e-9


@dataclass(frozen=True, eq=False)
class GaussianConditional:
    """R x_key + Σ S_k x_parent_k = d."""
    key: Key
    R: jnp.ndarray                  # (d, d) upper triangular
    parents: Tuple[Key, ...]
    S: Tuple[jnp.ndarray, ...]      # one (d, d_k) block per parent
    d: jnp.ndarray                  # (d,)

    @property
    def dim(self) -> int:
        return self.R.shape[0]

    def solve(self, rhs: jnp.ndarray, parent_values: VectorValues) -> jnp.ndarray:
        """x = R⁻¹ (rhs − Σ S_k x_k)."""
        for parent, S in zip(self.parents, self.S):
            rhs = rhs - S @ parent_values[parent]
        return solve_triangular(self.R, rhs, lower=False)


@dataclass(frozen=True, eq=False)
class GaussianBayesNet:
    """Triangular factorization: conditionals in elimination order."""
    conditionals: Tuple[GaussianConditional, ...]

    def __len__(self) -> int:
        return len(self.conditionals)

    def __iter__(self) -> Iterator[GaussianConditional]:
        return iter(self.conditionals)

    def keys(self) -> List[Key]:
        return sorted(c.key for c in self.conditionals)

    def dims(self) -> Dict[Key, int]:
        return {c.key: c.dim for c in self.conditionals}

    def ordering(self) -> List[Key]:
        return [c.key for c in self.conditionals]

    def _back_substitute(self, rhs: Dict[Key, jnp.ndarray]) -> VectorValues:
        # Parents are solved first since they were eliminated later.
        solved: Dict[Key, jnp.ndarray] = {}
        for c in reversed(self.conditionals):
            solved[c.key] = c.solve(rhs[c.key], solved)
        return VectorValues(solved)

    def optimize(self) -> VectorValues:
        """Exact solution of R x = d."""
        return self._back_substitute({c.key: c.d for c in self.conditionals})

    def back_substitute(self, y: VectorValues) -> VectorValues:
        """x = R⁻¹ y."""
        return self._back_substitute({c.key: y[c.key] for c in self.conditionals})

    def back_substitute_transpose(self, g: VectorValues) -> VectorValues:
        """y = R⁻ᵀ g, by forward substitution in elimination order."""
        acc: Dict[Key, jnp.ndarray] = {}
        result: Dict[Key, jnp.ndarray] = {}
        for c in self.conditionals:
            rhs = g[c.key]
            if c.key in acc:
                rhs = rhs - acc[c.key]
            y = solve_triangular(c.R, rhs, trans="T", lower=False)
            result[c.key] = y
            for parent, S in zip(c.parents, c.S):
                acc[parent] = acc.get(parent, 0.0) + S.T @ y
        return VectorValues(result)

    def multiply(self, x: VectorValues) -> VectorValues:
        """e = R x, keyed by frontal variable."""
        out: Dict[Key, jnp.ndarray] = {}
        for c in self.conditionals:
            e = c.R @ x[c.key]
            for parent, S in zip(c.parents, c.S):
                e = e + S @ x[parent]
            out[c.key] = e
        return VectorValues(out)

    def transpose_multiply(self, e: VectorValues) -> VectorValues:
        """g = Rᵀ e."""
        out: Dict[Key, jnp.ndarray] = {c.key: c.R.T @ e[c.key] for c in self.conditionals}
        for c in self.conditionals:
            for parent, S in zip(c.parents, c.S):
                out[parent] = out[parent] + S.T @ e[c.key]
        return VectorValues(out)

    def error(self, x: VectorValues) -> jnp.ndarray:
        """0.5 ||R x − d||²."""
        Rx = self.multiply(x)
        total = jnp.asarray(0.0, dtype=jnp.result_type(float))
        for c in self.conditionals:
            r = Rx[c.key] - c.d
            total = total + jnp.dot(r, r)
        return 0.5 * total


def _eliminate_one(
    key: Key,
    factors: List[LinearFactor],
    dims: Dict[Key, int],
    position: Dict[Key, int],
) -> Tuple[GaussianConditional, List[LinearFactor]]:
    separator = sorted(
        {k for f in factors for k in f.keys if k != key},
        key=position.__getitem__,
    )
    columns = [key] + separator
    offsets: Dict[Key, int] = {}
    n = 0
    for k in columns:
        offsets[k] = n
        n += dims[k]

    # Augmented dense system [A | b] over [frontal, separator]
    m = sum(f.rows for f in factors)
    Ab = jnp.zeros((m, n + 1), dtype=jnp.result_type(float))
    row = 0
    for f in factors:
        blocks, rhs = f.whitened()
        for k, block in zip(f.keys, blocks):
            Ab = Ab.at[row:row + f.rows, offsets[k]:offsets[k] + dims[k]].set(block)
        Ab = Ab.at[row:row + f.rows, n].set(rhs)
        row += f.rows

    fd = dims[key]
    if m < fd:
        raise SingularSystemError(
            f"Variable {key} has {fd} dimensions but only {m} measurement rows"
        )

    Rfull = jnp.linalg.qr(Ab, mode="r")
    R = Rfull[:fd, :fd]

    tol = max(PIVOT_TOL, 10.0 * float(jnp.finfo(Ab.dtype).eps))
    scale = float(jnp.max(jnp.abs(Rfull[:, :n])))
    pivot = float(jnp.min(jnp.abs(jnp.diag(R))))
    if scale == 0.0 or pivot <= tol * scale:
        raise SingularSystemError(
            f"Near-zero pivot {pivot:.3e} while eliminating variable {key}"
        )

    S = tuple(Rfull[:fd, offsets[k]:offsets[k] + dims[k]] for k in separator)
    conditional = GaussianConditional(
        key=key, R=R, parents=tuple(separator), S=S, d=Rfull[:fd, n],
    )

    # Leftover rows form a new factor on the separator; the pure-rhs row
    # beyond the separator dimension is a constant and is dropped.
    new_factors: List[LinearFactor] = []
    sep_dim = n - fd
    rows_left = min(Rfull.shape[0] - fd, sep_dim)
    if separator and rows_left > 0:
        rest = Rfull[fd:fd + rows_left]
        new_factors.append(
            LinearFactor(
                keys=tuple(separator),
                blocks=tuple(rest[:, offsets[k]:offsets[k] + dims[k]] for k in separator),
                rhs=rest[:, n],
            )
        )
    return conditional, new_factors


def eliminate_sequential(graph: GaussianFactorGraph, ordering: Sequence[Key]) -> GaussianBayesNet:
    """
    Eliminate ``graph`` along ``ordering`` into a GaussianBayesNet.

    Keys in the ordering that the graph does not mention are skipped.

    Raises:
        IncompleteOrderingError: a key of the graph is missing from ``ordering``.
        SingularSystemError: the system is rank deficient along ``ordering``.
    """
    dims = graph.dims()
    position = {key: i for i, key in enumerate(ordering)}
    missing = sorted(k for k in dims if k not in position)
    if missing:
        raise IncompleteOrderingError(f"Ordering is missing keys {missing}")

    remaining: List[LinearFactor] = [f for f in graph if f.arity > 0]
    conditionals: List[GaussianConditional] = []

    for key in ordering:
        if key not in dims:
            continue

        involved = [f for f in remaining if key in f.keys]
        remaining = [f for f in remaining if key not in f.keys]
        if not involved:
            raise SingularSystemError(f"No constraints left on variable {key}")

        conditional, new_factors = _eliminate_one(key, involved, dims, position)
        conditionals.append(conditional)
        remaining.extend(new_factors)

    return GaussianBayesNet(conditionals=tuple(conditionals))
