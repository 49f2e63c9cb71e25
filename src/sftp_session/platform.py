"""
Trust directory discovery.

Provides:
- is_windows(): platform family check
- resolve_trust_directory(): locate the user's SSH key/known_hosts directory
- get_cygwin_ssh_dir(): the Cygwin fallback location on Windows
"""
from __future__ import annotations

import getpass
import logging
import os
import sys
from pathlib import Path

from sftp_session.resources import is_present

log = logging.getLogger("sftp_session.platform")

SSH_DIR_NAME = ".ssh"

# Environment variable that overrides trust directory discovery
TRUST_DIR_ENV = "VFS_SFTP_SSHDIR"

CYGWIN_HOME = "C:\\cygwin\\home"


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_home_ssh_dir() -> Path:
    """Return ~/.ssh without checking that it exists."""
    return Path.home() / SSH_DIR_NAME


def get_cygwin_ssh_dir(username: str | None = None) -> Path:
    """
    Return the default Cygwin location of the user's .ssh directory.

    Args:
        username: Local account name (defaults to the current user)
    """
    if username is None:
        username = getpass.getuser()
    return Path(f"{CYGWIN_HOME}\\{username}\\{SSH_DIR_NAME}")


def resolve_trust_directory() -> Path:
    """
    Find the directory holding known_hosts and default identities.

    The lookup order is:
    1. The directory named by $VFS_SFTP_SSHDIR, if it exists
    2. ~/.ssh, if it exists
    3. On Windows only: C:\\cygwin\\home\\<user>\\.ssh, if it exists
    4. The current directory, as a last resort

    A candidate only has to exist; one that is not a usable directory
    simply yields no known_hosts or id_rsa.

    Never raises: a missing SSH directory must not stop password-only
    sessions. Resolved afresh on every call since the environment and
    home directory can change.
    """
    override = os.environ.get(TRUST_DIR_ENV)
    if override:
        candidate = Path(override)
        if is_present(candidate, "any"):
            log.debug("Using trust directory from %s: %s", TRUST_DIR_ENV, candidate)
            return candidate

    try:
        candidate = get_home_ssh_dir()
    except RuntimeError:
        # Home directory cannot be determined
        candidate = None
    if candidate is not None and is_present(candidate, "any"):
        log.debug("Using trust directory %s", candidate)
        return candidate

    if is_windows():
        try:
            candidate = get_cygwin_ssh_dir()
        except (KeyError, OSError):
            # No resolvable user name
            candidate = None
        if candidate is not None and is_present(candidate, "any"):
            log.debug("Using Cygwin trust directory %s", candidate)
            return candidate

    log.debug("No SSH directory found, falling back to the current directory")
    return Path("")
