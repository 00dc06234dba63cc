# git.py
# Small, focused wrapper around the Git CLI.
# gateci only reads trigger metadata from git: it never fetches, checks out
# or commits anything.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Name of the checked-out branch, or None on a detached HEAD.

    `git symbolic-ref --short HEAD` fails when HEAD is detached, which is the
    normal state on most CI checkouts.
    """
    try:
        return _git(["symbolic-ref", "--short", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        return None


def get_current_ref(cwd: Optional[str] = None) -> str:
    """
    Fully qualified ref for the checkout: refs/heads/<branch> when on a
    branch, otherwise the HEAD commit SHA.
    """
    branch = current_branch(cwd=cwd)
    if branch:
        return f"refs/heads/{branch}"
    return head_sha(cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """URL configured for a remote."""
    return _git(["remote", "get-url", remote], cwd=cwd)
