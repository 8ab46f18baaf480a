"""
Shared helpers for the arcsync tests.
"""
import os
import sys
from pathlib import Path

from arcsync.config import Settings

FAKE_SHASUM = Path(__file__).parent / "fake_shasum.py"
HASH_COMMAND = (sys.executable, str(FAKE_SHASUM))


def make_settings(**overrides) -> Settings:
    """Settings for tests: real (fake) hashing, no delay, not dry-run."""
    values = dict(
        upstream_endpoint="/nonexistent/archive",
        cycle_delay=0,
        dry_run=False,
        show_progress=False,
        hash_command=HASH_COMMAND,
    )
    values.update(overrides)
    return Settings(**values)


def write_file(root: Path, rel: str, content: str = "hello there\n",
               mtime: int = None, atime: int = None) -> Path:
    path = Path(root) / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mtime is not None or atime is not None:
        st = path.stat()
        os.utime(path, (atime if atime is not None else st.st_atime,
                        mtime if mtime is not None else st.st_mtime))
    return path
