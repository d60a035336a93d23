"""Generator collaborators and the sanitize boundary for their output."""

from .base import FixtureGenerator, Generator
from .sanitize import Fragment, sanitize_analysis, sanitize_fragment

__all__ = ["FixtureGenerator", "Fragment", "Generator", "sanitize_analysis", "sanitize_fragment"]
