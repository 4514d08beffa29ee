"""Core configuration, errors and request context."""
