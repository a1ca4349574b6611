# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Linear measurement factors for subgraph-jit.

This module collects the *measurement-level* constructors used to build
linear factor graphs:

    • `prior_factor`:
        Absolute measurement of a single variable:
            e = W (x − target)
        Anchors the gauge of a pose graph; always lands in the tree.

    • `between_factor`:
        Relative measurement between two variables of equal dimension:
            e = W ((x_j − x_i) − measurement)
        Odometry edges and loop closures are both between factors; which
        of them become tree edges is decided by graph splitting.

    • `linear_factor`:
        Generic Jacobian form Σ_k A_k x_k − b for anything else.

Noise
-----
Every constructor takes optional `sigmas`: a scalar or per-row standard
deviation. The factor stores them and whitens with W = diag(1 / sigma).
`sigma_to_weight` converts standard deviations into the information
weights 1/σ² for callers that think in terms of weights.
"""

from __future__ import annotations
from typing import Optional, Sequence

import jax.numpy as jnp

from subgraph_jit.core.types import Key, LinearFactor, as_float_array


def sigma_to_weight(sigma):
    """
    Convert standard deviation sigma (or vector of sigmas) to an
    information weight w = 1 / sigma^2.
    """
    s = as_float_array(sigma)
    return 1.0 / (s * s)


def weight_to_sigma(weight):
    """Inverse of `sigma_to_weight`."""
    return 1.0 / jnp.sqrt(as_float_array(weight))


def linear_factor(
    keys: Sequence[Key],
    blocks: Sequence[jnp.ndarray],
    rhs: jnp.ndarray,
    sigmas: Optional[jnp.ndarray] = None,
) -> LinearFactor:
    return LinearFactor(keys=tuple(keys), blocks=tuple(blocks), rhs=rhs, sigmas=sigmas)


def prior_factor(key: Key, target: jnp.ndarray, sigmas: Optional[jnp.ndarray] = None) -> LinearFactor:
    """
    Prior on a single variable:
        residual = x - target
    Works for any vector dimension.
    """
    target = jnp.atleast_1d(as_float_array(target))
    dim = target.shape[0]
    return linear_factor((key,), (jnp.eye(dim),), target, sigmas)


def between_factor(
    key_i: Key,
    key_j: Key,
    measurement: jnp.ndarray,
    sigmas: Optional[jnp.ndarray] = None,
) -> LinearFactor:
    """
    Relative measurement between two variables:
        residual = (x_j - x_i) - measurement
    """
    meas = jnp.atleast_1d(as_float_array(measurement))
    dim = meas.shape[0]
    return linear_factor((key_i, key_j), (-jnp.eye(dim), jnp.eye(dim)), meas, sigmas)
