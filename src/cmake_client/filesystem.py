"""Filesystem helpers."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
import stat


MAX_TREE_DEPTH = 128


async def remove_tree(path: str | Path, *, max_depth: int = MAX_TREE_DEPTH) -> bool:
    """Remove a directory tree without following symbolic links.

    Links (and junctions) inside the tree are removed themselves; their
    targets are never entered. A link given as ``path`` is unlinked.

    Args:
        path: Directory to remove
        max_depth: Maximum nesting below ``path`` before giving up

    Returns:
        False if ``path`` did not exist, True otherwise

    Raises:
        OSError: For the first entry that could not be removed, or when the
            tree is nested deeper than ``max_depth``
    """
    root = Path(path)
    try:
        info = await asyncio.to_thread(root.lstat)
    except FileNotFoundError:
        return False
    if not stat.S_ISDIR(info.st_mode):
        await asyncio.to_thread(root.unlink)
        return True
    await _remove_directory(root, max_depth)
    return True


async def _remove_directory(directory: Path, depth_left: int) -> None:
    if depth_left < 0:
        msg = f"Directory tree too deep to remove: {directory}"
        raise OSError(msg)
    entries = await asyncio.to_thread(_list_entries, directory)
    for entry in entries:
        if entry.is_junction():
            await asyncio.to_thread(os.rmdir, entry.path)
        elif entry.is_dir(follow_symlinks=False):
            await _remove_directory(Path(entry.path), depth_left - 1)
        else:
            await asyncio.to_thread(os.unlink, entry.path)
    await asyncio.to_thread(os.rmdir, directory)


def _list_entries(directory: Path) -> list[os.DirEntry[str]]:
    with os.scandir(directory) as it:
        return list(it)
