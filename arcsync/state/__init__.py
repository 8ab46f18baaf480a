"""State management (per-folder state stores and lock markers)"""
from .state_manager import FileRecord, FolderSyncState, load_records
from .lock import FolderLock

__all__ = [
    "FileRecord", "FolderSyncState", "load_records",
    "FolderLock",
]
