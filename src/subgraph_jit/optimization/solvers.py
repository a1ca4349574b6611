# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Iterative linear solvers for subgraph-jit.

This module implements conjugate gradient (and its steepest-descent
degenerate case) over an abstract *system*: any object that describes a
linear least-squares problem ½||A y − b||² implicitly, without ever forming
A or AᵀA.

Key Concepts
------------
System protocol
    The solver only relies on three methods of ``system``:
        - residual(y)                        -> ∇f(y) = Aᵀ(A y − b)
        - multiply(p)                        -> A p, as an Errors stack
        - transpose_multiply_add(alpha, e, y) -> y + alpha Aᵀ e
    The subgraph preconditioner is the main implementation, but any
    object with these methods works.

CGConfig
    Dataclass holding configuration for conjugate gradient:
    - min_iters / max_iters: iteration bounds
    - reset: restart from steepest descent every `reset` iterations
    - epsilon_rel / epsilon_abs: stopping tolerances on ||r||
    - verbosity: what gets logged (never changes numerics)

conjugate_gradients(system, y0, cfg)
    Standard recurrence with r = −∇f:
        α = (r·r) / (p·AᵀA p),   y ← y + α p,   r ← r − α AᵀA p
        β = (r'·r') / (r·r),     p ← r' + β p
    Stops when ||r|| <= max(epsilon_abs, epsilon_rel ||r0||) after at least
    `min_iters` iterations, or when `max_iters` is reached. Reaching the
    cap is not an error: the current iterate is returned as is.

conjugate_gradients_with_info(system, y0, cfg)
    Same loop, additionally returning a CGInfo record so callers that need
    a convergence guarantee can check it.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
import logging
import math
from typing import Any, Tuple

from subgraph_jit.core.vector_values import VectorValues

logger = logging.getLogger("subgraph_jit.cg")


class Verbosity(IntEnum):
    SILENT = 0
    COMPLEXITY = 1   # split sizes, final iteration count and residual
    ERROR = 2        # residual norm at every iteration


@dataclass
class CGConfig:
    min_iters: int = 1
    max_iters: int = 500
    reset: int = 501
    epsilon_rel: float = 1e-3
    epsilon_abs: float = 1e-3
    verbosity: Verbosity = Verbosity.SILENT

    def __post_init__(self) -> None:
        if self.max_iters <= 0:
            raise ValueError(f"max_iters must be positive, got {self.max_iters}")
        if self.min_iters < 0:
            raise ValueError(f"min_iters must be non-negative, got {self.min_iters}")
        if self.reset <= 0:
            raise ValueError(f"reset must be positive, got {self.reset}")
        if self.epsilon_rel <= 0.0 or self.epsilon_abs <= 0.0:
            raise ValueError("epsilon_rel and epsilon_abs must be positive")
        self.verbosity = Verbosity(self.verbosity)


@dataclass(frozen=True)
class CGInfo:
    iterations: int
    residual_norm: float
    converged: bool


def conjugate_gradients_with_info(
    system: Any,
    y0: VectorValues,
    cfg: CGConfig,
    steepest: bool = False,
) -> Tuple[VectorValues, CGInfo]:
    """
    Minimize ½||A y − b||² for the implicit operator described by ``system``.

    Args:
        system: object providing residual / multiply / transpose_multiply_add.
        y0: starting point.
        cfg: CGConfig.
        steepest: use steepest descent (β = 0) instead of conjugate directions.

    Returns:
        (y, info): final iterate and convergence record.
    """
    y = y0
    r = -system.residual(y)
    gamma = float(r.squared_norm())
    r_norm = math.sqrt(gamma)
    threshold = max(cfg.epsilon_abs, cfg.epsilon_rel * r_norm)

    if gamma == 0.0:
        if cfg.verbosity >= Verbosity.COMPLEXITY:
            logger.info("CG: initial residual is zero, nothing to do")
        return y, CGInfo(iterations=0, residual_norm=0.0, converged=True)

    p = r
    iterations = 0
    converged = False

    for k in range(1, cfg.max_iters + 1):
        iterations = k

        # Implicit operator: AᵀA p = Aᵀ (A p)
        Ap_e = system.multiply(p)
        pAp = float(Ap_e.squared_norm())
        if pAp <= 0.0:
            break
        Ap = system.transpose_multiply_add(1.0, Ap_e, p.zero_like())

        alpha = gamma / pAp
        y = y + p * alpha

        if k % cfg.reset == 0:
            # Recompute the residual from scratch to shed accumulated drift
            r = -system.residual(y)
        else:
            r = r - Ap * alpha

        gamma_new = float(r.squared_norm())
        r_norm = math.sqrt(gamma_new)

        if cfg.verbosity >= Verbosity.ERROR:
            logger.info("CG iteration %d: |r| = %.6e", k, r_norm)

        if k >= cfg.min_iters and r_norm <= threshold:
            converged = True
            break

        if steepest or k % cfg.reset == 0:
            p = r
        else:
            p = r + p * (gamma_new / gamma)
        gamma = gamma_new

    if cfg.verbosity >= Verbosity.COMPLEXITY:
        logger.info(
            "CG finished after %d iterations, |r| = %.6e (threshold %.3e)%s",
            iterations, r_norm, threshold, "" if converged else ", not converged",
        )

    return y, CGInfo(iterations=iterations, residual_norm=r_norm, converged=converged)


def conjugate_gradients(
    system: Any,
    y0: VectorValues,
    cfg: CGConfig,
    steepest: bool = False,
) -> VectorValues:
    """Run conjugate gradient and return only the final iterate."""
    y, _ = conjugate_gradients_with_info(system, y0, cfg, steepest=steepest)
    return y


def steepest_descent(system: Any, y0: VectorValues, cfg: CGConfig) -> VectorValues:
    return conjugate_gradients(system, y0, cfg, steepest=True)
