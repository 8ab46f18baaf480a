"""
Error taxonomy: fatal errors abort the whole run, folder errors only the folder.
"""


class SyncError(Exception):
    """Base class for arcsync errors."""


class FatalError(SyncError):
    """Shared state is untrustworthy; the run must stop with a non-zero exit."""


class ConfigError(FatalError):
    """Settings are missing, unacknowledged or malformed."""


class StateFileError(FatalError):
    """A folder's state store is corrupted or could not be written."""


class HashToolError(FatalError):
    """The hashing tool is missing or produced output in an unexpected shape."""


class FolderError(SyncError):
    """Recoverable failure scoped to one folder."""


class TransferError(FolderError):
    """The transfer tool could not be started."""
