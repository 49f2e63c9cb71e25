"""
Optional on-disk resources.

One rule governs every file the resolver may read (trust directory,
known_hosts, default identity): a missing or unreadable resource is
simply absent, while a resource that is present but cannot be loaded is an
error raised immediately.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, TypeVar

import asyncssh

T = TypeVar("T")

# Exceptions a loader may raise for a present-but-invalid resource
LOAD_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    ValueError,
    asyncssh.KeyImportError,
    asyncssh.KeyEncryptionError,
)


def is_present(path: Path, kind: str = "file") -> bool:
    """
    Check whether a resource exists and is readable.

    Args:
        path: Location to check
        kind: "file" for readable regular files, "any" for any existing path
    """
    assert kind in ("file", "any"), f"kind must be 'file' or 'any', got {kind!r}"
    if kind == "any":
        return path.exists()
    return path.is_file() and os.access(path, os.R_OK)


def optional_resource(
    path: Path,
    loader: Callable[[Path], T],
    error: Callable[[Path, BaseException], Exception],
    kind: str = "file",
) -> T | None:
    """
    Load a resource if it is present.

    Args:
        path: Location of the resource
        loader: Called with the path when the resource is present
        error: Builds the exception raised when the loader fails
        kind: "file" or "any"

    Returns:
        The loaded value, or None when the resource is absent

    Raises:
        Whatever ``error`` builds, chained to the loader's exception
    """
    if not is_present(path, kind):
        return None
    try:
        return loader(path)
    except LOAD_ERRORS as exc:
        raise error(path, exc) from exc
