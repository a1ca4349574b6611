"""Subgraph-preconditioned conjugate gradient for linear factor graphs."""

from subgraph_jit.core.errors import (
    EliminationError,
    IncompleteOrderingError,
    MalformedFactorError,
    SingularSystemError,
    SubgraphError,
)
from subgraph_jit.core.factor_graph import GaussianFactorGraph
from subgraph_jit.core.types import Key, KeyInfo, LinearFactor, Ordering
from subgraph_jit.core.vector_values import Errors, VectorValues
from subgraph_jit.optimization.solvers import CGConfig, CGInfo, Verbosity
from subgraph_jit.optimization.subgraph_solver import (
    SubgraphSolver,
    SubgraphSolverConfig,
    split_graph,
)

__all__ = [
    "CGConfig",
    "CGInfo",
    "EliminationError",
    "Errors",
    "GaussianFactorGraph",
    "IncompleteOrderingError",
    "Key",
    "KeyInfo",
    "LinearFactor",
    "MalformedFactorError",
    "Ordering",
    "SingularSystemError",
    "SubgraphError",
    "SubgraphSolver",
    "SubgraphSolverConfig",
    "VectorValues",
    "Verbosity",
    "split_graph",
]
