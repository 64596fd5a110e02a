"""
Version control system (VCS) integration.

Provides :class:`GitClient`, which reads commit history and diffs from a
Git repository and supplies them to the engine as commit units.
"""

from .git_client import GitClient  # noqa: F401
