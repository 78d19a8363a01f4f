"""Configuration, logging and external service clients."""
