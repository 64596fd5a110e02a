"""
Configuration loading for vc_commit_refiner.

Provides a loader for the JSON configuration file in the user's home
directory and the :class:`RunSettings` derived from it. See
:mod:`vc_commit_refiner.config.loader` for implementation details.
"""

from .loader import ConfigError, RunSettings, load_config  # noqa: F401
