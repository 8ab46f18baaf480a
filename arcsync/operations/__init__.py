"""Operations (scan, hash, relay, transfer, self-test)"""
from .scanner import FileStat, list_folder_files
from .hasher import ContentHasher, parse_digest_lines
from .relay import StreamRelay, relay_process
from .transfer import (build_upload_command, build_download_command,
                       build_settings_fetch_command, run_transfer,
                       upload, download, fetch_settings)

__all__ = [
    "FileStat", "list_folder_files",
    "ContentHasher", "parse_digest_lines",
    "StreamRelay", "relay_process",
    "build_upload_command", "build_download_command",
    "build_settings_fetch_command", "run_transfer",
    "upload", "download", "fetch_settings",
]
