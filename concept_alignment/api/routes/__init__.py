"""API route modules."""

from . import runs

__all__ = ["runs"]
