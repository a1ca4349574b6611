"""Graph containers, variable assignments and union-find."""
