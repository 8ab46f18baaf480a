"""arcsync: keep local folder trees in sync with one rsync-able archive"""

__version__ = "0.3.0"
