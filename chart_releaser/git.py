"""
Git Worktree Operations

Abstract version-control interface and its implementation on top of the
``git`` binary.
"""

import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from typing import List, Optional

from .errors import GitError

logger = logging.getLogger(__name__)


class VersionControl(ABC):
    """Working copy operations used to publish to the pages branch."""

    @abstractmethod
    def add_worktree(self, working_dir: str, committish: str) -> str:
        """Create a detached worktree for committish and return its path."""

    @abstractmethod
    def remove_worktree(self, working_dir: str, path: str) -> None:
        """Remove the worktree at path."""

    @abstractmethod
    def add(self, working_dir: str, *paths: str) -> None:
        """Stage paths."""

    @abstractmethod
    def commit(self, working_dir: str, message: str) -> None:
        """Commit staged changes."""

    @abstractmethod
    def pull(self, working_dir: str, *args: str) -> None:
        """Pull with the given arguments."""

    @abstractmethod
    def push(self, working_dir: str, *args: str) -> None:
        """Push with the given arguments."""

    @abstractmethod
    def get_push_url(self, remote: str, token: str) -> str:
        """Push URL of remote with the token embedded."""


def run_command(cmd: List[str], cwd: Optional[str] = None) -> subprocess.CompletedProcess:
    """
    Run a command, raising GitError when it fails.

    Args:
        cmd: Command and arguments
        cwd: Working directory, current directory when empty

    Returns:
        CompletedProcess result
    """
    cmd_str = " ".join(cmd)
    logger.debug(f"Running: {cmd_str}")

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd or None,
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"Command failed: {cmd_str} (exit code {e.returncode})")
        if e.stderr:
            logger.error(f"STDERR: {e.stderr.strip()}")
        raise GitError(f"'{cmd_str}' failed: {(e.stderr or '').strip()}") from e
    except OSError as e:
        raise GitError(f"'{cmd_str}' failed: {e}") from e

    if result.stdout:
        logger.debug(f"STDOUT: {result.stdout[:500]}")
    return result


class Git(VersionControl):
    """VersionControl backed by the git command line."""

    def add_worktree(self, working_dir: str, committish: str) -> str:
        path = tempfile.mkdtemp(prefix="chart-releaser-")
        try:
            run_command(["git", "worktree", "add", "--detach", path, committish], cwd=working_dir)
        except GitError:
            shutil.rmtree(path, ignore_errors=True)
            raise
        return path

    def remove_worktree(self, working_dir: str, path: str) -> None:
        run_command(["git", "worktree", "remove", path, "--force"], cwd=working_dir)

    def add(self, working_dir: str, *paths: str) -> None:
        if not paths:
            raise GitError("no args specified")
        run_command(["git", "add", *paths], cwd=working_dir)

    def commit(self, working_dir: str, message: str) -> None:
        run_command(["git", "commit", "--message", message, "--signoff"], cwd=working_dir)

    def pull(self, working_dir: str, *args: str) -> None:
        run_command(["git", "pull", *args], cwd=working_dir)

    def push(self, working_dir: str, *args: str) -> None:
        run_command(["git", "push", *args], cwd=working_dir)

    def get_push_url(self, remote: str, token: str) -> str:
        result = run_command(["git", "remote", "get-url", "--push", remote])
        return push_url_with_token(result.stdout, token)


def push_url_with_token(push_url: str, token: str) -> str:
    """
    Rewrite a remote URL into an https URL carrying an access token.

    ``git@github.com:org/repo.git`` and ``https://github.com/org/repo``
    both become ``https://x-access-token:<token>@github.com/org/repo``.
    """
    url = push_url.strip()
    if url.startswith("git@"):
        url = url[len("git@"):].replace(":", "/")
        if url.endswith(".git"):
            url = url[:-len(".git")]
    elif url.startswith("https://"):
        url = url[len("https://"):]
    return f"https://x-access-token:{token}@{url}"
