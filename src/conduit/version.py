"""
Version management for Conduit.
"""

import os
import subprocess
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

# Base version - update this for major releases
BASE_VERSION = "0.1.0"

DISTRIBUTION_NAME = "conduit-sync"


def get_git_commit_sha() -> Optional[str]:
    """Get the current git commit SHA."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            cwd=os.path.dirname(os.path.abspath(__file__))
        )
    except OSError:
        return None
    if result.returncode == 0:
        return result.stdout.strip()
    return None


def get_version() -> str:
    """
    Get the current version.

    - If the package is installed, use its metadata
    - Otherwise use base version + git commit SHA
    - Fallback to base version
    """
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass

    commit_sha = get_git_commit_sha()
    if commit_sha:
        return f"{BASE_VERSION}-{commit_sha}"

    return BASE_VERSION


# Export the version
__version__ = get_version()
