"""
Error taxonomy for chart-releaser.

Every error maps to a process exit code so the CLI can report failures
consistently.
"""

from typing import Optional


class ChartReleaserError(Exception):
    """Base exception for all chart-releaser errors."""
    exit_code = 1

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(ChartReleaserError):
    """Missing required option, conflicting flags or malformed path."""
    exit_code = 2


class NoPackagesFoundError(ChartReleaserError):
    """Package directory yielded zero chart archives."""
    exit_code = 3


class ChartError(ChartReleaserError):
    """File is not a valid chart package or chart directory."""
    exit_code = 4


class TemplateError(ChartReleaserError):
    """Release name template failed to render."""
    exit_code = 5


class GitHubError(ChartReleaserError):
    """GitHub API call failed."""
    exit_code = 6


class GitError(ChartReleaserError):
    """git command failed."""
    exit_code = 7


class IndexFileError(ChartReleaserError):
    """Index document could not be read or written."""
    exit_code = 8
