"""Centralized version metadata for the PageGen package."""

__all__ = ["__version__"]

__version__ = "0.1.0"
