"""Core functionality"""
from .sync_engine import Syncer, SyncReport, FolderOutcome, select_folders

__all__ = ["Syncer", "SyncReport", "FolderOutcome", "select_folders"]
