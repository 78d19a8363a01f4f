"""Persistence layer: SQLAlchemy models and async sessions."""
