# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.

import logging
import time

import jax
import jax.numpy as jnp

from subgraph_jit.core.factor_graph import GaussianFactorGraph
from subgraph_jit.core.types import Ordering
from subgraph_jit.optimization.elimination import eliminate_sequential
from subgraph_jit.optimization.solvers import Verbosity
from subgraph_jit.optimization.subgraph_solver import (
    SubgraphSolver,
    SubgraphSolverConfig,
    split_graph,
)
from subgraph_jit.slam.measurements import between_factor, prior_factor


def build_grid_pose_graph(rows: int = 10, cols: int = 10):
    """
    2D positions laid out on a grid:

        x(r,c) --odom--> x(r,c+1)      along each row
        x(r,c) --loop--> x(r+1,c)      down each column

    - Prior on x(0,0) at the origin.
    - Row edges are tight odometry with a small deterministic bias.
    - Column edges are looser loop closures.

    Every column edge after the first row closes a loop, so the split puts
    (rows-1)*(cols-1) factors into the constraints subgraph.
    """
    fg = GaussianFactorGraph()
    key = lambda r, c: r * cols + c  # noqa: E731

    fg.push_back(prior_factor(key(0, 0), jnp.zeros(2), sigmas=0.01))
    for r in range(rows):
        for c in range(cols):
            if c + 1 < cols:
                bias = 0.01 * jnp.sin(0.7 * (r * cols + c))
                fg.push_back(
                    between_factor(key(r, c), key(r, c + 1), jnp.array([1.0 + bias, bias]), sigmas=0.05)
                )
            if r + 1 < rows:
                fg.push_back(
                    between_factor(key(r, c), key(r + 1, c), jnp.array([0.0, 1.0]), sigmas=0.2)
                )
    return fg


def run_benchmark(rows: int = 10, cols: int = 10, max_iters: int = 200):
    print("=== Subgraph-preconditioned CG vs direct elimination (grid) ===")
    print(f"rows = {rows}, cols = {cols}, max_iters = {max_iters}")

    fg = build_grid_pose_graph(rows, cols)
    ordering = Ordering.natural(fg)
    tree, constraints = split_graph(fg)
    print(f"factors = {len(fg)}, tree = {len(tree)}, constraints = {len(constraints)}")

    # Direct: eliminate the full loopy graph
    t0 = time.time()
    x_direct = eliminate_sequential(fg, ordering).optimize()
    t1 = time.time()
    print(f"Direct elimination: {(t1 - t0) * 1000.0:.3f} ms")

    # Subgraph: eliminate the tree only, iterate on the loop closures
    cfg = SubgraphSolverConfig(
        max_iters=max_iters,
        epsilon_abs=1e-9,
        epsilon_rel=1e-9,
        verbosity=Verbosity.COMPLEXITY,
    )
    t0 = time.time()
    solver = SubgraphSolver(fg, cfg, ordering)
    x_subgraph, info = solver.optimize_with_info()
    t1 = time.time()
    print(f"Subgraph solver:    {(t1 - t0) * 1000.0:.3f} ms "
          f"({info.iterations} CG iterations, |r| = {info.residual_norm:.3e})")

    diff = (x_subgraph - x_direct).norm()
    print(f"|x_subgraph - x_direct| = {float(diff):.3e}")
    print(f"error(direct)   = {float(fg.error(x_direct)):.6f}")
    print(f"error(subgraph) = {float(fg.error(x_subgraph)):.6f}")


if __name__ == "__main__":
    # Example:
    #   python3 benchmarks/bench_subgraph_grid.py
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    jax.config.update("jax_enable_x64", True)
    run_benchmark(rows=6, cols=6)
    run_benchmark(rows=12, cols=12)
