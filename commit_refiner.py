#!/usr/bin/env python
"""
Thin wrapper script to invoke the vc_commit_refiner CLI.

Running ``python commit_refiner.py`` is equivalent to running the
``commit-refiner`` console script installed via ``pyproject.toml``.
"""

from vc_commit_refiner.cli import main


if __name__ == "__main__":
    main(prog_name="commit-refiner")
