# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Variable assignments and residual stacks.

VectorValues
    Mapping Key -> 1-D JAX array. Used both for x-space assignments and for
    the y-space perturbations that conjugate gradient iterates over. The
    arithmetic operators are defined only between values with identical key
    sets, so a y-space vector can never be silently mixed with a vector
    over a different set of variables.

Errors
    A list of per-factor (or per-row-block) residual vectors: the range of
    the implicit linear operators used by conjugate gradient.

Both types pack to and unpack from flat vectors through
:class:`core.types.KeyInfo`, mirroring ``pack_state`` / ``unpack_state``
on the pose-graph factor graph.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import jax.numpy as jnp

from subgraph_jit.core.types import Key, KeyInfo, as_float_array


class VectorValues:
    """Key -> vector mapping with vector-space operations."""

    def __init__(self, values: Optional[Mapping[Key, Any]] = None) -> None:
        self._values: Dict[Key, jnp.ndarray] = {}
        if values is not None:
            for key, value in values.items():
                self.insert(key, value)

    # --- Construction ---

    @classmethod
    def zeros(cls, dims: Mapping[Key, int]) -> "VectorValues":
        return cls({key: jnp.zeros((dim,), dtype=jnp.result_type(float)) for key, dim in dims.items()})

    def zero_like(self) -> "VectorValues":
        return VectorValues({key: jnp.zeros_like(v) for key, v in self._values.items()})

    @classmethod
    def from_vector(cls, x: jnp.ndarray, key_info: KeyInfo) -> "VectorValues":
        """Split a flat vector laid out by ``key_info`` into per-key blocks."""
        return cls({key: x[start:start + dim] for key, (start, dim) in key_info.index.items()})

    def insert(self, key: Key, value: Any) -> None:
        if key in self._values:
            raise KeyError(f"Key {key} already present in VectorValues")
        self._values[Key(key)] = jnp.atleast_1d(as_float_array(value))

    # --- Mapping protocol ---

    def __getitem__(self, key: Key) -> jnp.ndarray:
        return self._values[key]

    def __contains__(self, key: Key) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._values)

    def keys(self) -> List[Key]:
        return sorted(self._values)

    def items(self) -> List[Tuple[Key, jnp.ndarray]]:
        return [(key, self._values[key]) for key in self.keys()]

    def dims(self) -> Dict[Key, int]:
        return {key: v.shape[0] for key, v in self._values.items()}

    def subset(self, keys: Iterable[Key]) -> "VectorValues":
        return VectorValues({key: self._values[key] for key in keys})

    def vector(self, key_info: Optional[KeyInfo] = None) -> jnp.ndarray:
        """Concatenate blocks in ``key_info`` order (sorted keys by default)."""
        keys = key_info.ordering if key_info is not None else self.keys()
        if not keys:
            return jnp.zeros((0,), dtype=jnp.result_type(float))
        return jnp.concatenate([self._values[key] for key in keys])

    # --- Vector space ---

    def _check_same_keys(self, other: "VectorValues") -> None:
        if self._values.keys() != other._values.keys():
            raise ValueError(
                f"VectorValues key mismatch: {self.keys()} vs {other.keys()}"
            )

    def __add__(self, other: "VectorValues") -> "VectorValues":
        self._check_same_keys(other)
        return VectorValues({k: v + other._values[k] for k, v in self._values.items()})

    def __sub__(self, other: "VectorValues") -> "VectorValues":
        self._check_same_keys(other)
        return VectorValues({k: v - other._values[k] for k, v in self._values.items()})

    def __neg__(self) -> "VectorValues":
        return VectorValues({k: -v for k, v in self._values.items()})

    def __mul__(self, alpha: float) -> "VectorValues":
        return VectorValues({k: alpha * v for k, v in self._values.items()})

    __rmul__ = __mul__

    def dot(self, other: "VectorValues") -> jnp.ndarray:
        self._check_same_keys(other)
        total = jnp.asarray(0.0, dtype=jnp.result_type(float))
        for k, v in self._values.items():
            total = total + jnp.dot(v, other._values[k])
        return total

    def squared_norm(self) -> jnp.ndarray:
        return self.dot(self)

    def norm(self) -> jnp.ndarray:
        return jnp.sqrt(self.squared_norm())

    def equals(self, other: "VectorValues", tol: float = 1e-9) -> bool:
        if self._values.keys() != other._values.keys():
            return False
        for k, v in self._values.items():
            w = other._values[k]
            if v.shape != w.shape or not bool(jnp.allclose(v, w, rtol=0.0, atol=tol)):
                return False
        return True

    def __repr__(self) -> str:
        body = ", ".join(f"{k}: {v}" for k, v in self.items())
        return f"VectorValues({{{body}}})"


class Errors(list):
    """Stack of residual vectors, one entry per factor or row block."""

    def dot(self, other: "Errors") -> jnp.ndarray:
        if len(self) != len(other):
            raise ValueError(f"Errors length mismatch: {len(self)} vs {len(other)}")
        total = jnp.asarray(0.0, dtype=jnp.result_type(float))
        for a, b in zip(self, other):
            total = total + jnp.dot(a, b)
        return total

    def squared_norm(self) -> jnp.ndarray:
        return self.dot(self)

    def norm(self) -> jnp.ndarray:
        return jnp.sqrt(self.squared_norm())
