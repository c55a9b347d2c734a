"""Local HTTP API for datasafe."""

__version__ = "0.1.0"
