"""
Local file scanning
"""
import os
from pathlib import Path
from typing import NamedTuple
from ..utils.logging import warn


class FileStat(NamedTuple):
    size: int
    mtime: int
    atime: int


def list_folder_files(root: Path, folder: str) -> dict[str, FileStat]:
    """
    Returns {rel_posix: FileStat} for every regular file under root/folder.

    Paths are relative to root, so they start with "<folder>/". Any entry whose
    name starts with "." is skipped, and so is everything below it. Symlinked
    directories are not descended into.
    """
    result: dict[str, FileStat] = {}
    _walk(Path(root), folder, result)
    return result


def _walk(root: Path, rel_dir: str, result: dict[str, FileStat]):
    try:
        entries = sorted(os.scandir(root / rel_dir), key=lambda e: e.name)
    except FileNotFoundError:
        return
    for entry in entries:
        if entry.name.startswith("."):
            continue
        rel = f"{rel_dir}/{entry.name}"
        if entry.is_dir(follow_symlinks=False):
            _walk(root, rel, result)
        elif entry.is_file():
            st = entry.stat()
            result[rel] = FileStat(st.st_size, int(st.st_mtime), int(st.st_atime))
        else:
            warn(f"not adding file {rel}")
