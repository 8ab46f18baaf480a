"""
Transfer tool (rsync) invocations: upload, download and settings fetch
"""
import subprocess
from pathlib import Path
from typing import Iterable, Optional
from ..config import Settings, DOT_SYNC_FOLDER, SETTINGS_BASENAME
from ..errors import TransferError
from ..utils.logging import log
from .relay import relay_process

UPLOAD_FLAGS = ["--update", "--compress", "--times", "--perms", "--links"]
DOWNLOAD_FLAGS = ["--update", "--exclude=.*", "--compress", "--recursive",
                  "--times", "--perms", "--links"]


def _common_flags(settings: Settings) -> list[str]:
    flags = []
    if settings.dry_run:
        flags.append("-n")
    if settings.show_progress:
        flags.append("--progress")
    return flags


def build_upload_command(settings: Settings) -> list[str]:
    """rsync reading the file list from stdin, relative to the sync root."""
    return [
        *settings.transfer_command,
        *_common_flags(settings),
        *UPLOAD_FLAGS,
        "--files-from=-",
        ".",
        settings.upstream_endpoint,
    ]


def build_download_command(settings: Settings, folder: str) -> list[str]:
    """rsync pulling <endpoint>/<folder> into the sync root."""
    flags = _common_flags(settings)
    if settings.allow_delete:
        flags.append("--delete")
    return [
        *settings.transfer_command,
        *flags,
        *DOWNLOAD_FLAGS,
        f"{settings.upstream_endpoint.rstrip('/')}/{folder}",
        ".",
    ]


def build_settings_fetch_command(settings: Settings) -> list[str]:
    return [
        *settings.transfer_command,
        "--times",
        f"{settings.upstream_endpoint.rstrip('/')}/{DOT_SYNC_FOLDER}/{SETTINGS_BASENAME}",
        f"{DOT_SYNC_FOLDER}/",
    ]


def run_transfer(cmd: list[str], root: Path, prefix: str,
                 stdin_lines: Optional[Iterable[str]] = None) -> int:
    """
    Run the transfer tool in root, relaying its output with prefix.
    Returns the exit status; raises TransferError if it cannot be started.
    """
    log(f"{prefix}{' '.join(cmd)}")
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(root),
            stdin=subprocess.PIPE if stdin_lines is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise TransferError(f"could not run transfer tool {cmd[0]!r}: {exc}") from exc
    return relay_process(proc, prefix, stdin_lines)


def upload(settings: Settings, root: Path, files: list[str], prefix: str) -> int:
    return run_transfer(build_upload_command(settings), root, prefix, files)


def download(settings: Settings, root: Path, folder: str, prefix: str) -> int:
    return run_transfer(build_download_command(settings, folder), root, prefix)


def fetch_settings(settings: Settings, root: Path, prefix: str = "") -> bool:
    """Copy .sync/sync_settings.txt down from the endpoint."""
    return run_transfer(build_settings_fetch_command(settings), root, prefix) == 0
