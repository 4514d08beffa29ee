"""HTTP API for the feedback portal."""
