"""
Content digests via an external hashing tool (shasum -b or compatible)
"""
import re
import subprocess
from pathlib import Path
from typing import Optional, Sequence
from ..config import HASH_BATCH_SIZE
from ..errors import HashToolError
from ..utils.logging import log, vlog, warn

_DIGEST_RE = re.compile(r"\A[0-9a-fA-F]{40}\Z")


def parse_digest_lines(lines, tool: str = "shasum") -> dict[str, str]:
    """
    Parse "<40-hex digest> *<path>" lines into {path: lowercase digest}.
    Any other shape means the tool is broken or not the one we expect.
    """
    digests: dict[str, str] = {}
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            continue
        digest, marker, path = line[:40], line[41:42], line[42:]
        if marker != "*" or line[40:41] != " " or not _DIGEST_RE.match(digest) or not path:
            raise HashToolError(
                f"could not load digests; bad output line {line!r} "
                f"(hashing tool '{tool}' does not work as expected)"
            )
        digests[path] = digest.lower()
    return digests


class ContentHasher:
    """Runs the hashing tool over batches of root-relative paths."""

    def __init__(self, command: Sequence[str], root: Path,
                 batch_size: int = HASH_BATCH_SIZE):
        self.command = list(command)
        self.root = Path(root)
        self.batch_size = batch_size

    def compute_digests(self, paths: list[str],
                        prefix: Optional[str] = None) -> dict[str, str]:
        # with no arguments most hashing tools read stdin and never finish
        if not paths:
            return {}

        tool = " ".join(self.command)
        digests: dict[str, str] = {}
        total = len(paths)
        for i in range(0, total, self.batch_size):
            batch = paths[i:i + self.batch_size]
            vlog(f"running '{tool}' on {len(batch)} files")
            try:
                proc = subprocess.run(
                    self.command + batch,
                    cwd=str(self.root),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    check=False,
                )
            except OSError as exc:
                raise HashToolError(f"could not run hashing tool '{tool}': {exc}") from exc
            found = parse_digest_lines(
                proc.stdout.decode("utf-8", errors="surrogateescape").splitlines(), tool)
            self._check_batch(tool, proc, batch, found)
            digests.update(found)
            if prefix is not None:
                done = min(i + self.batch_size, total)
                log(f"{prefix}: △ calculated digests for {done} / {total} files")

        return digests

    def _check_batch(self, tool: str, proc, batch: list[str], found: dict[str, str]):
        """
        Every file still on disk must have a digest; only files that vanished
        since the scan may be missing. A missing digest would silently turn
        off content comparison for that file.
        """
        err = proc.stderr.decode("utf-8", errors="replace").strip()
        unhashed = [p for p in batch if p not in found and (self.root / p).exists()]
        if unhashed:
            raise HashToolError(
                f"hashing tool '{tool}' (exit {proc.returncode}) gave no digests for "
                f"{len(unhashed)} existing files (first: {unhashed[0]}): {err}"
            )
        if proc.returncode != 0:
            warn(f"hashing tool '{tool}' exited {proc.returncode}: {err}")
