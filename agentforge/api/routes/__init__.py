"""API route modules."""

from . import builds, internal

__all__ = ["builds", "internal"]
