# Copyright (c) 2025.
# This file is part of subgraph-jit, released under the MIT License.
"""
Exception hierarchy for subgraph-jit.

Every failure the solver can report is a subclass of :class:`SubgraphError`,
so callers can catch the whole family at once or pick a specific kind:

    SubgraphError
    ├── MalformedFactorError      (also a ValueError)
    └── EliminationError
        ├── IncompleteOrderingError
        └── SingularSystemError

Conjugate gradient never raises for non-convergence; hitting the iteration
cap is treated as completion.
"""


class SubgraphError(Exception):
    """Base class for all subgraph-jit errors."""


class MalformedFactorError(SubgraphError, ValueError):
    """A factor does not have the shape the solver requires.

    Raised for factors of arity 0 or > 2 during graph splitting, for blocks
    whose row counts disagree with the right-hand side, and for variables
    that appear with two different dimensions in one graph.
    """


class EliminationError(SubgraphError):
    """Direct elimination of a factor graph failed."""


class IncompleteOrderingError(EliminationError):
    """The elimination ordering omits a variable present in the graph."""


class SingularSystemError(EliminationError):
    """The system is rank deficient along the given ordering."""
