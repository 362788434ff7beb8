"""HTTP response cache for ASGI applications."""

__version__ = "0.1.0"
