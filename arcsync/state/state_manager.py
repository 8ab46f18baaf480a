"""
Per-folder sync state (persistent across runs)

One YAML store per top-level folder, .sync/<folder>_info.yaml:

    <folder>/path/to/file:
      digest: 0123…  (optional; absent when fast mode skipped hashing)
      sync_ts: 1700000000
"""
import os
import posixpath
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Optional

import yaml

from ..config import Settings, get_dot_sync_dir, get_info_file
from ..errors import StateFileError
from ..operations.hasher import ContentHasher
from ..operations.scanner import FileStat, list_folder_files
from ..utils.logging import log

_RECORD_FIELDS = {"digest", "sync_ts"}
_DIGEST_RE = re.compile(r"\A[0-9a-f]{40}\Z")


@dataclass(frozen=True)
class FileRecord:
    path: str
    sync_ts: int
    digest: Optional[str] = None

    def to_yaml(self) -> dict:
        data = {"sync_ts": self.sync_ts}
        if self.digest is not None:
            data["digest"] = self.digest
        return data


def _check_path(path, folder: str):
    if not isinstance(path, str):
        raise StateFileError(f"loaded file info contains an invalid key {path!r}")
    if (not path.startswith(f"{folder}/")
            or posixpath.normpath(path) != path
            or ".." in path.split("/")):
        raise StateFileError(
            f"loaded file info contains a filename {path!r} not in the expected path {folder}"
        )


def _record_from_yaml(path: str, info) -> FileRecord:
    if not isinstance(info, dict):
        raise StateFileError(f"loaded file info for {path!r} is not a mapping")
    unknown = set(info) - _RECORD_FIELDS
    if unknown:
        raise StateFileError(
            f"loaded file info for {path!r} contains invalid keys: {sorted(map(str, unknown))}"
        )
    sync_ts = info.get("sync_ts")
    if isinstance(sync_ts, bool) or not isinstance(sync_ts, int):
        raise StateFileError(f"loaded file info for {path!r} has no integer sync_ts")
    digest = info.get("digest")
    if digest is not None and not (isinstance(digest, str) and _DIGEST_RE.match(digest)):
        raise StateFileError(f"loaded file info for {path!r} has a malformed digest")
    return FileRecord(path, sync_ts, digest)


def load_records(info_file: Path, folder: str) -> dict[str, FileRecord]:
    """
    Load and validate a folder's store. A missing file is an empty store;
    anything else that is not exactly the expected schema is fatal, since a
    partially trusted store could skip or re-upload the wrong files.
    """
    if not info_file.exists():
        return {}
    try:
        with info_file.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise StateFileError(f"could not load file info from {info_file}: {exc}") from exc

    if not isinstance(data, dict):
        raise StateFileError(f"loaded file info from {info_file} is not a mapping")

    records: dict[str, FileRecord] = {}
    for path, info in data.items():
        _check_path(path, folder)
        records[path] = _record_from_yaml(path, info)
    return records


class FolderSyncState:
    """
    The path → FileRecord store for one top-level folder.

    Loaded on construction, mutated in memory by the two scan contracts and
    written back atomically by persist().
    """

    def __init__(self, settings: Settings, root: Path, folder: str,
                 hasher: Optional[ContentHasher] = None,
                 prefix: Optional[str] = None):
        self.settings = settings
        self.root = Path(root)
        self.folder = folder
        self.prefix = prefix if prefix is not None else folder
        self.hasher = hasher or ContentHasher(settings.hash_command, self.root)
        self.info_file = get_info_file(self.root, folder)
        self._records = load_records(self.info_file, folder)

    @property
    def records(self):
        return MappingProxyType(self._records)

    def __len__(self):
        return len(self._records)

    # ── digests ─────────────────────────────────────────────────────────────

    def _required_digests(self, file_stats: dict[str, FileStat]) -> dict[str, str]:
        if self.settings.use_fast_mode_for_folder(self.folder):
            log(f"{self.prefix}: ! skipping digest calculations for folder {self.folder}")
            return {}
        log(f"{self.prefix}: ! computing full digests for folder {self.folder}")
        return self.hasher.compute_digests(list(file_stats), self.prefix)

    # ── contract A: before upload ───────────────────────────────────────────

    def compute_upload_set(self, cycle_start_ts: int) -> list[str]:
        """
        Return the files that must be uploaded, and record every scanned file
        as synced at cycle_start_ts. The store then reflects the last scan;
        it is only persisted if the upload succeeds.
        """
        file_stats = list_folder_files(self.root, self.folder)
        digests = self._required_digests(file_stats)

        to_upload = []
        for path, st in file_stats.items():
            record = self._records.get(path)
            digest = digests.get(path)
            if record is None:
                required = True
            elif digest is not None:
                # content decides, whatever the mtime says
                required = digest != record.digest
            else:
                required = st.mtime > record.sync_ts
            if required:
                to_upload.append(path)

        # clearing digests in fast mode keeps stale ones from being trusted later
        for path in file_stats:
            self._records[path] = FileRecord(path, cycle_start_ts, digests.get(path))

        return sorted(to_upload)

    # ── contract B: after download ──────────────────────────────────────────

    def reconcile_after_download(self, cycle_start_ts: int, cycle_end_ts: int):
        """
        Refresh records for files touched by the download.

        rsync --times preserves mtime, so access time is what tells us a file
        was written during this cycle.
        """
        file_stats = list_folder_files(self.root, self.folder)
        touched = {p: st for p, st in file_stats.items() if st.atime >= cycle_start_ts}
        digests = self._required_digests(touched)
        for path in touched:
            self._records[path] = FileRecord(path, cycle_end_ts, digests.get(path))

    # ── persistence ─────────────────────────────────────────────────────────

    def persist(self):
        """Write the store to a temp file in .sync/ and rename it into place."""
        data = {path: self._records[path].to_yaml() for path in sorted(self._records)}
        dot_sync = get_dot_sync_dir(self.root)
        tmp_name = None
        try:
            dot_sync.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=str(dot_sync),
                prefix=f".{self.folder}_info.", suffix=".tmp", delete=False,
            ) as f:
                tmp_name = f.name
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.info_file)
        except BaseException as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            if isinstance(exc, OSError):
                raise StateFileError(f"could not save file sync db to {self.info_file}: {exc}") from exc
            raise
