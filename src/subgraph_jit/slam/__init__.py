"""Linear measurement factor constructors."""
