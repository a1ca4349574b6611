"""Elimination, preconditioning and iterative solvers."""
