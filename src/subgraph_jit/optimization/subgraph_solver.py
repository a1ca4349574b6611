# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Subgraph-preconditioned conjugate gradient solver.

This is the public entry point of subgraph-jit. It ties the pieces of the
pipeline together:

    split_graph            Kruskal pass (DSFMap) -> (tree, constraints)
    eliminate_sequential   tree -> triangular factorization R
    SubgraphPreconditioner (constraints, R, xbar) -> y-space system
    conjugate_gradients    iterate in y-space from zero()
    preconditioner.x(y)    map the result back to x-space

Typical Usage
-------------
    graph = GaussianFactorGraph()
    graph.push_back(prior_factor(0, jnp.zeros(2)))
    graph.push_back(between_factor(0, 1, jnp.array([1.0, 0.0])))
    ...
    solver = SubgraphSolver(graph, SubgraphSolverConfig(), Ordering.natural(graph))
    x = solver.optimize()

Construction variants
---------------------
SubgraphSolver(graph, cfg, ordering)
    Split, eliminate the tree, build the preconditioner.

SubgraphSolver.from_split(tree, constraints, cfg, ordering)
    The caller already split the graph; the tree part is eliminated as is.

SubgraphSolver.from_bayes_net(bayes_net, constraints, cfg, ordering)
    The tree is already eliminated. The factorization is shared by
    reference, so several solvers can be built on top of one elimination.

Notes
-----
`optimize(initial)` ignores `initial`: the solve always starts from y = 0,
i.e. from the tree-only solution xbar. `optimize_with_lambda` is a stub
that returns an empty assignment. Both are kept as is on purpose.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Dict, Optional, Sequence, Tuple

from subgraph_jit.core.dsf import DSFMap
from subgraph_jit.core.errors import MalformedFactorError
from subgraph_jit.core.factor_graph import GaussianFactorGraph
from subgraph_jit.core.types import Key, KeyInfo, Ordering
from subgraph_jit.core.vector_values import VectorValues
from subgraph_jit.optimization.elimination import GaussianBayesNet, eliminate_sequential
from subgraph_jit.optimization.preconditioner import SubgraphPreconditioner
from subgraph_jit.optimization.solvers import (
    CGConfig,
    CGInfo,
    Verbosity,
    conjugate_gradients_with_info,
)

logger = logging.getLogger("subgraph_jit.subgraph")


@dataclass
class SubgraphSolverConfig(CGConfig):
    """Conjugate gradient settings used by SubgraphSolver."""


def split_graph(graph: GaussianFactorGraph) -> Tuple[GaussianFactorGraph, GaussianFactorGraph]:
    """
    Split ``graph`` into a spanning-tree subgraph and a constraints subgraph.

    Factors are visited in insertion order:
      - unary factors always go to the tree;
      - a binary factor goes to the tree if its endpoints are still in
        different components (which are then merged), otherwise it closes
        a loop and goes to the constraints.

    Edges are unweighted, so the first edge seen between two components wins.

    Raises:
        MalformedFactorError: a factor has no keys or more than two.
    """
    dsf = DSFMap()
    tree = GaussianFactorGraph()
    constraints = GaussianFactorGraph()

    for factor in graph:
        keys = factor.keys
        if len(keys) == 0 or len(keys) > 2:
            raise MalformedFactorError(
                f"Graph is not simple: factor over {len(keys)} variables {keys}; "
                "reduce it to unary/binary factors before splitting"
            )

        if len(keys) == 1:
            tree.push_back(factor)
        elif dsf.find(keys[0]) != dsf.find(keys[1]):
            tree.push_back(factor)
            dsf.merge(keys[0], keys[1])
        else:
            constraints.push_back(factor)

    return tree, constraints


class IterativeSolver(ABC):
    """Base class for iterative linear least-squares solvers."""

    @abstractmethod
    def optimize(self, initial: Optional[VectorValues] = None) -> VectorValues:
        ...


class SubgraphSolver(IterativeSolver):
    """
    Solve a linear factor graph with subgraph-preconditioned CG.

    Args:
        graph: factor graph of unary and binary linear factors.
        cfg: SubgraphSolverConfig; defaults are used when None.
        ordering: elimination ordering for the tree; the sorted keys of
            the graph when None.
    """

    split_graph = staticmethod(split_graph)

    def __init__(
        self,
        graph: GaussianFactorGraph,
        cfg: Optional[SubgraphSolverConfig] = None,
        ordering: Optional[Sequence[Key]] = None,
    ) -> None:
        self._cfg = cfg if cfg is not None else SubgraphSolverConfig()
        self._ordering = Ordering(ordering) if ordering is not None else Ordering.natural(graph)

        tree, constraints = split_graph(graph)
        if self._cfg.verbosity >= Verbosity.COMPLEXITY:
            logger.info(
                "Split A into (A1) %d and (A2) %d factors", len(tree), len(constraints)
            )

        bayes_net = eliminate_sequential(tree, self._ordering)
        self._initialize(bayes_net, constraints)

    @classmethod
    def from_split(
        cls,
        tree: GaussianFactorGraph,
        constraints: GaussianFactorGraph,
        cfg: Optional[SubgraphSolverConfig] = None,
        ordering: Optional[Sequence[Key]] = None,
    ) -> "SubgraphSolver":
        """Build from a caller-made split; ``tree`` is eliminated without checks."""
        solver = cls.__new__(cls)
        solver._cfg = cfg if cfg is not None else SubgraphSolverConfig()
        solver._ordering = Ordering(ordering) if ordering is not None else Ordering.natural(tree)
        solver._initialize(eliminate_sequential(tree, solver._ordering), constraints)
        return solver

    @classmethod
    def from_bayes_net(
        cls,
        bayes_net: GaussianBayesNet,
        constraints: GaussianFactorGraph,
        cfg: Optional[SubgraphSolverConfig] = None,
        ordering: Optional[Sequence[Key]] = None,
    ) -> "SubgraphSolver":
        """Build on an already eliminated tree; ``bayes_net`` is shared, not copied."""
        solver = cls.__new__(cls)
        solver._cfg = cfg if cfg is not None else SubgraphSolverConfig()
        solver._ordering = Ordering(ordering) if ordering is not None else Ordering(bayes_net.ordering())
        solver._initialize(bayes_net, constraints)
        return solver

    def _initialize(self, bayes_net: GaussianBayesNet, constraints: GaussianFactorGraph) -> None:
        self._pc = SubgraphPreconditioner(constraints, bayes_net)

    @property
    def config(self) -> SubgraphSolverConfig:
        return self._cfg

    @property
    def ordering(self) -> Ordering:
        return self._ordering

    @property
    def preconditioner(self) -> SubgraphPreconditioner:
        return self._pc

    @property
    def bayes_net(self) -> GaussianBayesNet:
        return self._pc.bayes_net

    def optimize_with_info(self) -> Tuple[VectorValues, CGInfo]:
        ybar, info = conjugate_gradients_with_info(self._pc, self._pc.zero(), self._cfg)
        return self._pc.x(ybar), info

    def optimize(self, initial: Optional[VectorValues] = None) -> VectorValues:
        """
        Run CG from y = 0 and return x(y).

        ``initial`` is accepted for interface compatibility and ignored.
        """
        values, _ = self.optimize_with_info()
        return values

    def optimize_with_lambda(
        self,
        graph: GaussianFactorGraph,
        key_info: KeyInfo,
        lambda_: Dict[Key, object],
        initial: VectorValues,
    ) -> VectorValues:
        """Not implemented: always returns an empty assignment."""
        return VectorValues()
