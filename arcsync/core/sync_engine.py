"""
Main sync engine - per-folder up-then-down cycle and orchestration
"""
import threading
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional
from ..config import Settings, DOT_SYNC_FOLDER
from ..errors import ConfigError, FatalError
from ..operations import transfer
from ..operations.hasher import ContentHasher
from ..state.lock import FolderLock
from ..state.state_manager import FolderSyncState
from ..utils.logging import log, warn, error, is_verbose


class FolderOutcome(Enum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    UPLOAD_FAILED = "upload failed"
    DOWNLOAD_FAILED = "download failed"
    ERROR = "error"


@dataclass
class SyncReport:
    outcomes: dict = field(default_factory=dict)  # folder -> FolderOutcome

    @property
    def ok(self) -> bool:
        """True iff every folder that was not skipped completed both phases."""
        return all(o in (FolderOutcome.SYNCED, FolderOutcome.SKIPPED)
                   for o in self.outcomes.values())

    def failed(self) -> list[str]:
        return [f for f, o in self.outcomes.items()
                if o not in (FolderOutcome.SYNCED, FolderOutcome.SKIPPED)]


def select_folders(root: Path, folders: Optional[Iterable[str]] = None) -> list[str]:
    """
    Resolve the folders to sync.

    Explicit names are reduced to their basename and created if missing; a name
    that exists but is not a directory is fatal. Without names, every non-dot
    directory directly under root is used.
    """
    root = Path(root)
    if folders is None:
        names = [p.name for p in root.iterdir() if not p.name.startswith(".")]
    else:
        names = []
        for raw in folders:
            name = Path(raw.rstrip("/")).name
            if not name or name in (".", ".."):
                continue
            path = root / name
            if path.exists():
                if not path.is_dir():
                    raise ConfigError(f"passed {raw} on the commandline, which is not a folder")
            else:
                path.mkdir()
            names.append(name)
    return sorted({n for n in names if n != DOT_SYNC_FOLDER and (root / n).is_dir()})


class Syncer:
    """
    Syncs top-level folders of a sync root with the upstream endpoint, one at
    a time: upload changed files, then (only if that worked) download.
    """

    def __init__(self, settings: Settings, root: Path,
                 hasher: Optional[ContentHasher] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.root = Path(root)
        self.hasher = hasher or ContentHasher(settings.hash_command, self.root)
        self._sleep = sleep
        self._clock = clock

    # ── all folders ─────────────────────────────────────────────────────────

    def sync_all_folders(self, folders: Optional[Iterable[str]] = None) -> SyncReport:
        names = select_folders(self.root, folders)
        width = max([1] + [len(n) for n in names])
        report = SyncReport()
        for name in names:
            report.outcomes[name] = self.sync_folder(name, name.ljust(width))
        return report

    # ── one folder ──────────────────────────────────────────────────────────

    def sync_folder(self, folder: str, prefix: Optional[str] = None) -> FolderOutcome:
        """
        Run one cycle for folder under its lock marker.

        Fatal errors and interrupts propagate once the marker is removed; any
        other exception only fails this folder.
        """
        prefix = prefix or folder
        log(f"{prefix}:🔒  creating lockfile")
        lock = FolderLock(self.root, folder)
        if not lock.acquire():
            error(f"{prefix}: folder lockfile {lock.path} exists; not syncing this folder.")
            return FolderOutcome.SKIPPED
        cycle_start_ts = int(self._clock())

        outcome = FolderOutcome.ERROR
        try:
            state = FolderSyncState(self.settings, self.root, folder,
                                    hasher=self.hasher, prefix=prefix)
            if not self.sync_folder_up(prefix, state, cycle_start_ts):
                warn(f"{prefix}: rsync failed while up-syncing; not syncing this folder down.")
                outcome = FolderOutcome.UPLOAD_FAILED
            elif self.sync_folder_down(prefix, state, cycle_start_ts):
                log(f"{prefix}:✅  Down-sync succeeded; files are up-to-date.")
                outcome = FolderOutcome.SYNCED
            else:
                warn(f"{prefix}: there was an rsync error while down-syncing; "
                     f"files may not be up-to-date.")
                outcome = FolderOutcome.DOWNLOAD_FAILED
        except FatalError:
            raise
        except (KeyboardInterrupt, SystemExit):
            error(f"{prefix}: interrupted; exiting")
            raise
        except Exception as exc:
            error(f"{prefix}: canceling folder due to exception: {exc!r}")
            if is_verbose():
                traceback.print_exc()
        finally:
            log(f"{prefix}:🔓  deleting lockfile")
            lock.release()
        return outcome

    def sync_folder_up(self, prefix: str, state: FolderSyncState,
                       cycle_start_ts: int) -> bool:
        """Upload changed files; persist the state only if that succeeded."""
        files = state.compute_upload_set(cycle_start_ts)
        log(f"{prefix}: △ Up-syncing {len(files)} files")
        if not files:
            log(f"{prefix}: △ No new files; skipping")
            return True

        status = transfer.upload(self.settings, self.root, files, f"{prefix}: △ ")
        succeeded = status == 0

        def commit():
            if not succeeded:
                warn(f"{prefix}: rsync exited {status} while up-syncing; "
                     f"not saving the file info for this folder.")
            elif self.settings.dry_run:
                log(f"{prefix}:✅  Up-sync succeeded, but operating in rsync dry-run mode; "
                    f"not saving the file info for this folder.")
            else:
                log(f"{prefix}:✅  Up-sync succeeded; saving the file info for this folder.")
                state.persist()

        self._delay_while(prefix, commit)
        return succeeded

    def sync_folder_down(self, prefix: str, state: FolderSyncState,
                         cycle_start_ts: int) -> bool:
        """
        Download the folder, then record whatever arrived locally. The state
        is refreshed whatever rsync reported: files may have landed before
        an error.
        """
        status = transfer.download(self.settings, self.root, state.folder, f"{prefix}: ▼ ")
        cycle_end_ts = int(self._clock())

        def commit():
            state.reconcile_after_download(cycle_start_ts, cycle_end_ts)
            if not self.settings.dry_run:
                state.persist()

        self._delay_while(prefix, commit)
        return status == 0

    def _delay_while(self, prefix: str, work: Callable[[], None]):
        """
        Run work() while the inter-cycle delay elapses, so bookkeeping time
        counts toward the delay between transfers.
        """
        delay = self.settings.cycle_delay
        timer = threading.Thread(target=self._sleep, args=(delay,), name="cycle-delay", daemon=True)
        timer.start()
        try:
            work()
        finally:
            log(f"{prefix}:🌙  sleeping {delay} seconds")
            timer.join()
