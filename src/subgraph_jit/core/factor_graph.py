"""
Linear (Gaussian) factor graph for subgraph-jit.

This module implements the container that every solver in the package
consumes: an insertion-ordered sequence of :class:`core.types.LinearFactor`
objects over shared variables, together with the linear-algebra primitives
that iterative and direct solvers need.

Insertion order is significant. Graph splitting walks the factors in order
and keeps the first edge that joins two components, so two graphs holding
the same factors in a different order can produce different (equally
valid) spanning trees.

Primary Methods
---------------
keys(), dims()
    Sorted variable keys and their dimensions.

multiply(x), transpose_multiply_add(alpha, e, x)
    Apply the stacked whitened Jacobian A and its transpose without ever
    forming it. These are the building blocks of the implicit operators
    used by conjugate gradient.

gradient(x)
    Aᵀ(Ax − b), keyed by variable.

jacobian(key_info)
    Dense whitened (A, b). Only meant for small problems and tests.

build_residual_function(key_info), build_objective(key_info)
    JIT-compiled functions of the flat state vector, r(x) and ||r(x)||².

Notes
-----
The graph itself is a plain Python object; all arithmetic is done with
JAX arrays so that the dense helpers can be compiled and differentiated.
"""


from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Tuple

import jax
import jax.numpy as jnp

from subgraph_jit.core.errors import MalformedFactorError
from subgraph_jit.core.types import Key, KeyInfo, LinearFactor
from subgraph_jit.core.vector_values import Errors, VectorValues


@dataclass
class GaussianFactorGraph:
    """
    Ordered collection of linear factors.

    - factors: list of LinearFactor, in insertion order
    """
    factors: List[LinearFactor] = field(default_factory=list)

    def push_back(self, factor: LinearFactor) -> None:
        self.factors.append(factor)

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self) -> Iterator[LinearFactor]:
        return iter(self.factors)

    def __getitem__(self, i: int) -> LinearFactor:
        return self.factors[i]

    def keys(self) -> List[Key]:
        return sorted({key for f in self.factors for key in f.keys})

    def dims(self) -> Dict[Key, int]:
        """Key -> dimension; a key seen with two different sizes is malformed."""
        dims: Dict[Key, int] = {}
        for f in self.factors:
            for key in f.keys:
                d = f.dim(key)
                if dims.setdefault(key, d) != d:
                    raise MalformedFactorError(
                        f"Key {key} appears with dimensions {dims[key]} and {d}"
                    )
        return dims

    # --- Linear algebra on VectorValues ---

    def error(self, values: VectorValues) -> jnp.ndarray:
        """0.5 Σ ||W(Ax − b)||² over all factors."""
        total = jnp.asarray(0.0, dtype=jnp.result_type(float))
        for f in self.factors:
            total = total + f.error(values)
        return total

    def error_vectors(self, values: VectorValues) -> Errors:
        return Errors(f.error_vector(values) for f in self.factors)

    def multiply(self, values: VectorValues) -> Errors:
        return Errors(f.multiply(values) for f in self.factors)

    def transpose_multiply_add(self, alpha: float, errors: Errors, x: VectorValues) -> VectorValues:
        """Return x + alpha Aᵀ e. Keys of the graph missing from x are an error."""
        if len(errors) != len(self.factors):
            raise ValueError(
                f"Expected {len(self.factors)} error blocks, got {len(errors)}"
            )
        acc = {key: x[key] for key in x.keys()}
        for f, e in zip(self.factors, errors):
            for key, contrib in f.transpose_multiply(alpha, e).items():
                acc[key] = acc[key] + contrib
        return VectorValues(acc)

    def gradient(self, values: VectorValues) -> VectorValues:
        """Aᵀ(Ax − b) at ``values``, over the keys of the graph."""
        zero = VectorValues.zeros(self.dims())
        return self.transpose_multiply_add(1.0, self.error_vectors(values), zero)

    # --- Dense helpers ---

    def jacobian(self, key_info: KeyInfo) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Dense whitened Jacobian and right-hand side.

        Returns (A, b) with A of shape (m, key_info.total_dim), rows stacked
        in factor order.
        """
        m = sum(f.rows for f in self.factors)
        A = jnp.zeros((m, key_info.total_dim), dtype=jnp.result_type(float))
        b = jnp.zeros((m,), dtype=jnp.result_type(float))

        row = 0
        for f in self.factors:
            blocks, rhs = f.whitened()
            rows = slice(row, row + f.rows)
            for key, block in zip(f.keys, blocks):
                A = A.at[rows, key_info.slice(key)].set(block)
            b = b.at[rows].set(rhs)
            row += f.rows
        return A, b

    def build_residual_function(self, key_info: KeyInfo):
        """
        Returns a JIT-able function r(x) -> stacked whitened residual,
        where x is the flat state laid out by ``key_info``.
        """
        # Freeze factor list and layout inside the closure
        factors = tuple(self.factors)
        slices = {key: key_info.slice(key) for key in key_info.index}

        def residual(x: jnp.ndarray) -> jnp.ndarray:
            res_list = []
            for f in factors:
                blocks, rhs = f.whitened()
                r = -rhs
                for key, block in zip(f.keys, blocks):
                    r = r + block @ x[slices[key]]
                res_list.append(r)

            if not res_list:
                return jnp.zeros((0,), dtype=x.dtype)
            return jnp.concatenate(res_list)

        return jax.jit(residual)

    def build_objective(self, key_info: KeyInfo):
        """
        Returns a JIT-able function f(x) -> scalar loss = ||r(x)||^2.
        """
        residual = self.build_residual_function(key_info)

        def objective(x: jnp.ndarray) -> jnp.ndarray:
            r = residual(x)
            return jnp.sum(r ** 2)

        return jax.jit(objective)
