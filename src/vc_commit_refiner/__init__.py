"""
Top-level package for vc_commit_refiner.

This package exposes the main CLI entry point via the
``vc_commit_refiner.cli`` module.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
