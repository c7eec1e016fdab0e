"""Executable discovery utilities for Kiln.

This module provides a utility function for finding the external programs
Kiln shells out to, supporting both system PATH lookups and project-local
installs (Composer's ``vendor/bin`` and npm's ``node_modules/.bin``).

Functions:
    find_executable: Locate an executable in PATH or a project-local bin dir.
"""

from __future__ import annotations

import shutil
from pathlib import Path

LOCAL_BIN_DIRS = ("vendor/bin", "node_modules/.bin")


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or a project-local bin directory.

    Searches for an executable first in the system PATH, then in the
    project's ``vendor/bin`` and ``node_modules/.bin`` directories if a
    project root is provided.

    Args:
        name: Name of the executable to find (e.g., 'php').
        project_root: Optional project root directory to search for
            local installations.

    Returns:
        Full path to the executable if found, None otherwise.

    Examples:
        >>> find_executable('php')  # System PATH lookup
        '/usr/bin/php'
    """
    # First check system PATH
    found = shutil.which(name)
    if found:
        return found

    # Then check project-local bin directories
    if project_root is not None:
        for bin_dir in LOCAL_BIN_DIRS:
            local = project_root / bin_dir / name
            if local.exists():
                return str(local)

    return None
