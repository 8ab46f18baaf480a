"""
Per-folder lock marker in .sync/
"""
import os
from pathlib import Path
from ..config import get_dot_sync_dir, get_lock_file
from ..utils.logging import warn


class FolderLock:
    """
    Advisory on-disk marker, .sync/<folder>.lock.

    Presence alone is the signal. There is no timeout: a marker left behind by
    an interrupted run blocks the folder until someone removes it.
    """

    def __init__(self, root: Path, folder: str):
        self.folder = folder
        self.path = get_lock_file(root, folder)
        self._dot_sync = get_dot_sync_dir(root)
        self.held = False

    def exists(self) -> bool:
        return self.path.exists()

    def acquire(self) -> bool:
        """Create the marker. Returns False if it already exists."""
        self._dot_sync.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(
                f"This is a lock file for the folder {self.folder}. This file means "
                f"that a sync may be in progress, or one may have been interrupted.\n"
            )
        self.held = True
        return True

    def release(self) -> bool:
        """Remove a marker this instance created. Returns False on failure."""
        if not self.held:
            return True
        try:
            self.path.unlink()
        except OSError as exc:
            warn(f"could not delete folder lockfile {self.path}: {exc}; "
                 f"sync of {self.folder} will fail until it is removed")
            return False
        self.held = False
        return True
