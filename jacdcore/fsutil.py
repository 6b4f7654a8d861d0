"""Filesystem helpers for serving files below a root directory."""

from __future__ import annotations

import os
from pathlib import Path, PurePath
from typing import List, Optional, Tuple, Union

_PathLike = Union[str, os.PathLike]


def resolve_path(filename: str, root_dir: _PathLike) -> Optional[Path]:
    """Join ``filename`` onto ``root_dir`` and normalise it lexically.

    Returns the normalised path, or None if it does not lie at or below
    ``root_dir``. An absolute ``filename`` replaces the root and is
    rejected unless it happens to point inside it.
    """
    root = os.path.normpath(os.fspath(root_dir))
    normal = os.path.normpath(os.path.join(root, filename))
    root_parts = PurePath(root).parts
    normal_parts = PurePath(normal).parts
    if normal_parts[: len(root_parts)] != root_parts:
        return None
    return Path(normal)


def list_dir(path: _PathLike) -> Optional[Tuple[List[str], int]]:
    """List the entry names of a directory.

    Returns the names and the number of bytes they take when each is
    encoded and followed by a NUL terminator, or None if the directory
    cannot be read.
    """
    try:
        names = os.listdir(path)
    except OSError:
        return None
    data_size = sum(len(os.fsencode(name)) + 1 for name in names)
    return names, data_size


def delete_dir(path: _PathLike, only_contents: bool) -> bool:
    """Delete a directory tree.

    With ``only_contents`` the directory itself is kept and only what it
    holds is removed. Returns False as soon as anything cannot be removed.
    """
    listing = list_dir(path)
    if listing is None:
        return False
    names, _ = listing

    for name in names:
        full_path = os.path.join(path, name)
        if os.path.isdir(full_path):
            if not delete_dir(full_path, False):
                return False
        else:
            try:
                os.remove(full_path)
            except OSError:
                return False

    if only_contents:
        return True
    try:
        if os.path.islink(path):
            os.remove(path)
        else:
            os.rmdir(path)
    except OSError:
        return False
    return True