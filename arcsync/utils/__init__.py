"""Utilities (logging, retry)"""
from .logging import log, vlog, warn, error, set_verbose, is_verbose

__all__ = [
    "log", "vlog", "warn", "error", "set_verbose", "is_verbose",
]
