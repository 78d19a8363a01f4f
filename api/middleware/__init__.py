"""Request validation dependencies."""
