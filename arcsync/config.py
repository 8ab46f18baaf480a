"""
Configuration for arcsync
"""
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError
from .utils.logging import log, warn

# ══════════════════════════════════════════════════════════════════════════════
#  CONSTANTS
# ══════════════════════════════════════════════════════════════════════════════

DOT_SYNC_FOLDER = ".sync"
SETTINGS_BASENAME = "sync_settings.txt"

DEFAULT_TRANSFER_COMMAND = "rsync"
DEFAULT_HASH_COMMAND = "shasum -b"

# max paths handed to the hashing tool per invocation (command-line length)
HASH_BATCH_SIZE = 100

# Retry settings (SSH operations of the self-test)
RETRY_MAX = 5
RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt

# Remote sub-path the connectivity self-test writes into
SELF_TEST_FOLDER = "_TEST"


# ══════════════════════════════════════════════════════════════════════════════
#  DYNAMIC PATHS  ── computed from the sync root at call time
# ══════════════════════════════════════════════════════════════════════════════

def get_dot_sync_dir(root: Path) -> Path:
    """Return the .sync folder holding settings, state stores and lock markers."""
    return Path(root) / DOT_SYNC_FOLDER


def get_settings_file(root: Path) -> Path:
    return get_dot_sync_dir(root) / SETTINGS_BASENAME


def get_info_file(root: Path, folder: str) -> Path:
    """Return the state store path for a top-level folder."""
    return get_dot_sync_dir(root) / f"{folder}_info.yaml"


def get_lock_file(root: Path, folder: str) -> Path:
    return get_dot_sync_dir(root) / f"{folder}.lock"


# ══════════════════════════════════════════════════════════════════════════════
#  SETTINGS
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Settings:
    """Immutable per-run settings, loaded from .sync/sync_settings.txt."""

    upstream_endpoint: str
    cycle_delay: int = 2
    dry_run: bool = True
    allow_delete: bool = False
    show_progress: bool = True
    fast_mode_enabled: bool = False
    fast_mode_include: frozenset = field(default_factory=frozenset)
    fast_mode_exclude: frozenset = field(default_factory=frozenset)
    transfer_command: tuple = tuple(shlex.split(DEFAULT_TRANSFER_COMMAND))
    hash_command: tuple = tuple(shlex.split(DEFAULT_HASH_COMMAND))
    ssh_port: int = 22
    ssh_key: Optional[str] = None

    def use_fast_mode_for_folder(self, folder_name: str) -> bool:
        return (
            self.fast_mode_enabled
            and (not self.fast_mode_include or folder_name in self.fast_mode_include)
            and folder_name not in self.fast_mode_exclude
        )

    def with_endpoint(self, endpoint: str, **changes) -> "Settings":
        """Copy of these settings pointing at another upstream endpoint."""
        return replace(self, upstream_endpoint=endpoint, **changes)


def _require_bool(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"please set {key} to Yes or No")
    return value


def _require_folder_set(data: dict, key: str) -> frozenset:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"please specify {key} as a list of folder names")
    return frozenset(value)


def _command(data: dict, key: str, default: str) -> tuple:
    value = data.get(key) or default
    if isinstance(value, str):
        parts = shlex.split(value)
    elif isinstance(value, list) and all(isinstance(v, str) for v in value):
        parts = list(value)
    else:
        raise ConfigError(f"please specify {key} as a command string")
    if not parts:
        raise ConfigError(f"please specify {key} as a command string")
    return tuple(parts)


def settings_from_mapping(data) -> Settings:
    """
    Validate a parsed settings document and build Settings from it.
    Raises ConfigError on the first problem found.
    """
    if not isinstance(data, dict):
        raise ConfigError("settings file does not contain a YAML mapping")

    if data.get("settings_are_set") is not True:
        raise ConfigError(
            "please edit the settings file with your sync settings, "
            "and set settings_are_set to Yes"
        )

    upstream = data.get("upstream_folder")
    if not isinstance(upstream, str) or not upstream:
        raise ConfigError("please specify upstream_folder")

    sleep_time = data.get("sleep_time", 2)
    if isinstance(sleep_time, bool) or not isinstance(sleep_time, int) or sleep_time < 0:
        raise ConfigError("please specify sleep_time >= 0")

    ssh_port = data.get("ssh_port", 22)
    if isinstance(ssh_port, bool) or not isinstance(ssh_port, int) or ssh_port <= 0:
        raise ConfigError("please specify ssh_port as a positive integer")

    ssh_key = data.get("ssh_key")
    if ssh_key is not None and not isinstance(ssh_key, str):
        raise ConfigError("please specify ssh_key as a path")

    return Settings(
        upstream_endpoint=upstream,
        cycle_delay=sleep_time,
        dry_run=_require_bool(data, "rsync_dry_run", True),
        allow_delete=_require_bool(data, "rsync_delete", False),
        show_progress=_require_bool(data, "rsync_progress", True),
        fast_mode_enabled=_require_bool(data, "fast_mode", False),
        fast_mode_include=_require_folder_set(data, "fast_mode_include_root_folders"),
        fast_mode_exclude=_require_folder_set(data, "fast_mode_exclude_root_folders"),
        transfer_command=_command(data, "rsync_command", DEFAULT_TRANSFER_COMMAND),
        hash_command=_command(data, "hash_command", DEFAULT_HASH_COMMAND),
        ssh_port=ssh_port,
        ssh_key=ssh_key or None,
    )


def load_settings(root: Path) -> Settings:
    """
    Load and validate the settings of the sync root.
    Creates the commented stub first if it is missing, so a fresh root fails
    with the "please edit" error rather than a missing-file one.
    """
    path = get_settings_file(root)
    ensure_settings_stub(root)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"could not load settings from {path}: {exc}") from exc

    try:
        settings = settings_from_mapping(data)
    except ConfigError as exc:
        raise ConfigError(f"{exc} in {path}") from exc

    if settings.dry_run:
        warn("executing in dry-run mode; not actually sync'ing anything")
    return settings


# ══════════════════════════════════════════════════════════════════════════════
#  STUB  ── first-run settings file
# ══════════════════════════════════════════════════════════════════════════════

def _yq(value: str) -> str:
    """Wrap a string in YAML single quotes, escaping embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def render_settings_stub(upstream_folder: str = "user@example.com:/Path/to/archive") -> str:
    return f"""\
# This file controls sync settings. It must be edited before sync will work.

# this defines the server you sync to
# - set it to an rsync-able path to sync to, generally an ssh-able path
# - every node you create should sync to the same upstream
upstream_folder: {_yq(upstream_folder)}

# this controls the delay between syncing servers, to avoid your server detecting a connection flood
# - set it to a larger value if you see connection failures
sleep_time: 2

# this determines whether rsync will be allowed to delete files locally
# - if set, moving files on the server will cause them to be moved locally on sync
# - if unset, moving files on the server will cause them to be duplicated
rsync_delete: No

# this will prevent any files actually being transferred
# - set it to No once you've done a test run or two
rsync_dry_run: Yes

# this controls whether or not rsync displays progress while syncing
rsync_progress: Yes

# fast mode checks modification times only, skipping content digests
fast_mode: No

# if fast mode is enabled, restrict it to (or exclude it from) some root folders
# - an empty include list means every root folder uses fast mode
# - the exclude list overrides the include list
# - e.g., [ "my_folder", "my_other_folder" ]
fast_mode_include_root_folders: []
fast_mode_exclude_root_folders: []

# this tells arcsync that you have configured this file
# - set it to Yes once you've configured this file
settings_are_set: No
"""


def ensure_settings_stub(root: Path, upstream_folder: Optional[str] = None,
                         force: bool = False) -> bool:
    """
    Create .sync/ and a stub settings file if none exists (or force is set).
    Returns True if a file was written.
    """
    path = get_settings_file(root)
    if path.is_file() and not force:
        return False
    try:
        dot_sync = get_dot_sync_dir(root)
        if not dot_sync.is_dir():
            log(f"creating {dot_sync}")
            dot_sync.mkdir(parents=True, exist_ok=True)
        content = render_settings_stub(upstream_folder) if upstream_folder else render_settings_stub()
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"could not create {path}: {exc}") from exc
    return True
