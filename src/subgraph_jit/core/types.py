# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Core typed data structures for subgraph-jit.

This module defines the lightweight containers used throughout the linear
least-squares machinery. They hold structure and coefficients only; the
numerical work happens in `core.factor_graph` and the `optimization` layer.

Classes
-------
Key
    Opaque, totally ordered identifier of an unknown (an ``int``).

LinearFactor
    A linear measurement over one or more variables in Jacobian form:
        e(x) = W (Σ_k A_k x_k − b)
    where ``W = diag(1 / sigmas)`` is the whitening of a diagonal Gaussian
    noise model (identity when ``sigmas`` is ``None``).

Ordering
    A list of keys fixing the order in which variables are eliminated.

KeyInfo
    Column layout of a flat state vector: Key -> (offset, dim), in the
    spirit of ``FactorGraph._build_state_index`` in the pose-graph code.

Notes
-----
Factors are frozen and compared by identity. Two factors with identical
coefficients are still distinct measurements, which is what graph
splitting relies on when it partitions an input graph.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Iterable, NewType, Optional, Sequence, Tuple

import jax.numpy as jnp

from subgraph_jit.core.errors import IncompleteOrderingError, MalformedFactorError

Key = NewType("Key", int)


def as_float_array(x: Any) -> jnp.ndarray:
    """Convert ``x`` to a JAX array of the default floating dtype."""
    return jnp.asarray(x, dtype=jnp.result_type(float))


@dataclass(frozen=True, eq=False)
class LinearFactor:
    """Jacobian-form linear factor over 1..n variables."""
    keys: Tuple[Key, ...]
    blocks: Tuple[jnp.ndarray, ...]   # one (m, d_k) matrix per key
    rhs: jnp.ndarray                  # (m,)
    sigmas: Optional[jnp.ndarray] = None

    def __post_init__(self) -> None:
        keys = tuple(Key(k) for k in self.keys)
        blocks = tuple(as_float_array(A) for A in self.blocks)
        rhs = jnp.atleast_1d(as_float_array(self.rhs))

        if len(set(keys)) != len(keys):
            raise MalformedFactorError(f"Duplicate keys in factor: {keys}")
        if len(blocks) != len(keys):
            raise MalformedFactorError(
                f"Factor has {len(keys)} keys but {len(blocks)} blocks"
            )
        if rhs.ndim != 1:
            raise MalformedFactorError(f"rhs must be 1-D, got shape {rhs.shape}")
        for key, A in zip(keys, blocks):
            if A.ndim != 2 or A.shape[0] != rhs.shape[0]:
                raise MalformedFactorError(
                    f"Block for key {key} has shape {A.shape}, "
                    f"expected ({rhs.shape[0]}, d)"
                )

        sigmas = self.sigmas
        if sigmas is not None:
            sigmas = jnp.broadcast_to(as_float_array(sigmas), rhs.shape)
            if bool(jnp.any(sigmas <= 0.0)):
                raise MalformedFactorError("Noise sigmas must be strictly positive")

        object.__setattr__(self, "keys", keys)
        object.__setattr__(self, "blocks", blocks)
        object.__setattr__(self, "rhs", rhs)
        object.__setattr__(self, "sigmas", sigmas)

    @property
    def arity(self) -> int:
        return len(self.keys)

    @property
    def rows(self) -> int:
        return self.rhs.shape[0]

    def dim(self, key: Key) -> int:
        return self.blocks[self.keys.index(key)].shape[1]

    def block(self, key: Key) -> jnp.ndarray:
        return self.whitened()[0][self.keys.index(key)]

    @cached_property
    def _whitened(self) -> Tuple[Tuple[jnp.ndarray, ...], jnp.ndarray]:
        if self.sigmas is None:
            return self.blocks, self.rhs
        w = 1.0 / self.sigmas
        return tuple(w[:, None] * A for A in self.blocks), w * self.rhs

    def whitened(self) -> Tuple[Tuple[jnp.ndarray, ...], jnp.ndarray]:
        """Return ``(W A_k for each key, W b)``."""
        return self._whitened

    def multiply(self, values) -> jnp.ndarray:
        """W Σ_k A_k x_k, without the right-hand side."""
        blocks, b = self.whitened()
        out = jnp.zeros_like(b)
        for key, A in zip(self.keys, blocks):
            out = out + A @ values[key]
        return out

    def error_vector(self, values) -> jnp.ndarray:
        """Whitened residual W (A x − b)."""
        return self.multiply(values) - self.whitened()[1]

    def error(self, values) -> jnp.ndarray:
        e = self.error_vector(values)
        return 0.5 * jnp.dot(e, e)

    def transpose_multiply(self, alpha: float, e: jnp.ndarray) -> Dict[Key, jnp.ndarray]:
        """Per-key contributions alpha (W A_k)^T e."""
        blocks, _ = self.whitened()
        return {key: alpha * (A.T @ e) for key, A in zip(self.keys, blocks)}


class Ordering(list):
    """Elimination order: a list of unique keys."""

    def __init__(self, keys: Iterable[Key] = ()) -> None:
        keys = [Key(k) for k in keys]
        if len(set(keys)) != len(keys):
            raise ValueError(f"Ordering contains duplicate keys: {keys}")
        super().__init__(keys)

    @classmethod
    def from_keys(cls, *keys: Key) -> "Ordering":
        return cls(keys)

    @classmethod
    def natural(cls, graph) -> "Ordering":
        """Sorted keys of ``graph``."""
        return cls(graph.keys())


@dataclass
class KeyInfo:
    """
    Column layout of a flat state vector.

    index maps each key to ``(start, dim)``; ``ordering`` is the order in
    which keys were laid out.
    """
    index: Dict[Key, Tuple[int, int]] = field(default_factory=dict)
    ordering: Ordering = field(default_factory=Ordering)

    @property
    def total_dim(self) -> int:
        return sum(dim for _, dim in self.index.values())

    def slice(self, key: Key) -> slice:
        start, dim = self.index[key]
        return slice(start, start + dim)

    def __contains__(self, key: Key) -> bool:
        return key in self.index

    @classmethod
    def from_dims(cls, dims: Dict[Key, int], ordering: Optional[Sequence[Key]] = None) -> "KeyInfo":
        if ordering is None:
            ordering = Ordering(sorted(dims))
        in_ordering = set(ordering)
        missing = [k for k in dims if k not in in_ordering]
        if missing:
            raise IncompleteOrderingError(
                f"Ordering is missing keys {sorted(missing)}"
            )

        index: Dict[Key, Tuple[int, int]] = {}
        laid_out = []
        offset = 0
        for key in ordering:
            if key not in dims:
                continue
            index[key] = (offset, dims[key])
            laid_out.append(key)
            offset += dims[key]
        return cls(index=index, ordering=Ordering(laid_out))

    @classmethod
    def from_graph(cls, graph, ordering: Optional[Sequence[Key]] = None) -> "KeyInfo":
        return cls.from_dims(graph.dims(), ordering)
