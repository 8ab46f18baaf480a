#!/usr/bin/env python3
"""
arcsync  —  keep local folders in sync with one rsync-able archive
==================================================================

Subcommands:
  init      Create a stub .sync/sync_settings.txt in the sync root.
  sync      Up-sync then down-sync every folder (or the given ones).
  status    Show settings, tracked files per folder and stale lock files.
  connect   Test an archive, then fetch its settings into this sync root.

Run 'arcsync <subcommand> --help' for more details.
"""
import sys
import argparse
from pathlib import Path
from typing import NoReturn


def _root(args) -> Path:
    return Path(args.root).expanduser().resolve() if args.root else Path.cwd()


def _fatal(exc) -> NoReturn:
    print(f"💀  ERROR: {exc}", file=sys.stderr)
    sys.exit(1)


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args):
    """Create the stub settings file, unless one already exists."""
    from arcsync import config as _cfg
    from arcsync.errors import ConfigError

    root = _root(args)
    target = _cfg.get_settings_file(root)
    if target.exists() and not args.force:
        print(f"error: {target} already exists", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)
    try:
        _cfg.ensure_settings_stub(root, force=args.force)
    except ConfigError as exc:
        _fatal(exc)
    print(f"Created {target}")
    print("Edit it, then set settings_are_set to Yes.")


# ── sync ─────────────────────────────────────────────────────────────────────

def cmd_sync(args):
    """Run one up-then-down pass over the folders of the sync root."""
    from arcsync.config import load_settings
    from arcsync.core.sync_engine import Syncer
    from arcsync.errors import FatalError
    from arcsync.utils.logging import set_verbose, log, warn

    set_verbose(args.verbose)
    root = _root(args)
    try:
        settings = load_settings(root)
        report = Syncer(settings, root).sync_all_folders(args.folders or None)
    except FatalError as exc:
        _fatal(exc)

    print()
    print(f"{'─' * 64}")
    print(" SUMMARY")
    for folder, outcome in report.outcomes.items():
        print(f"  {folder:<24} : {outcome.value}")
    print(f"{'─' * 64}")
    if not report.outcomes:
        log("no folders to sync")
    if not report.ok:
        warn(f"failed folders: {', '.join(report.failed())}")
        sys.exit(1)


# ── status ────────────────────────────────────────────────────────────────────

def cmd_status(args):
    """Show settings and per-folder state."""
    from arcsync import config as _cfg
    from arcsync.core.sync_engine import select_folders
    from arcsync.errors import FatalError
    from arcsync.state.state_manager import load_records

    root = _root(args)
    try:
        settings = _cfg.load_settings(root)
        folders = select_folders(root)
        print(f"\nRoot     : {root}")
        print(f"Upstream : {settings.upstream_endpoint}")
        print(f"Dry run  : {'yes' if settings.dry_run else 'no'}")
        print(f"Delete   : {'yes' if settings.allow_delete else 'no'}")
        print()
        for folder in folders:
            records = load_records(_cfg.get_info_file(root, folder), folder)
            mode = "fast" if settings.use_fast_mode_for_folder(folder) else "digest"
            locked = "  🔒 LOCKED" if _cfg.get_lock_file(root, folder).exists() else ""
            print(f"  {folder:<24} {len(records):>7} tracked  ({mode}){locked}")
    except FatalError as exc:
        _fatal(exc)

    stale = sorted(p.name for p in _cfg.get_dot_sync_dir(root).glob("*.lock"))
    if stale:
        print(f"\n⚠  Lock files present: {', '.join(stale)}")
        print("   A sync is running or was interrupted; remove them once no sync is running.")


# ── connect ───────────────────────────────────────────────────────────────────

def cmd_connect(args):
    """Test an archive, then pull its settings into this sync root."""
    from arcsync import config as _cfg
    from arcsync.errors import FatalError
    from arcsync.operations.self_test import run_self_test
    from arcsync.operations.transfer import fetch_settings
    from arcsync.utils.logging import set_verbose, log, warn

    set_verbose(args.verbose)
    root = _root(args)
    settings = _cfg.Settings(upstream_endpoint=args.url, dry_run=False, cycle_delay=0)

    if not args.skip_test and not run_self_test(settings):
        print("Tests failed; not connecting", file=sys.stderr)
        sys.exit(1)

    try:
        _cfg.get_dot_sync_dir(root).mkdir(parents=True, exist_ok=True)
        if _cfg.get_settings_file(root).exists():
            warn(f"{_cfg.get_settings_file(root)} already exists; not replacing it")
        elif fetch_settings(settings, root, "[connect] "):
            log("[connect] fetched settings from the archive")
        else:
            _cfg.ensure_settings_stub(root, upstream_folder=args.url)
            warn(f"no settings on the archive; edit {_cfg.get_settings_file(root)} before syncing")
        _cfg.load_settings(root)
    except FatalError as exc:
        _fatal(exc)
    print("Connected.")


# ── main ──────────────────────────────────────────────────────────────────────

def main():
    """CLI entry point for arcsync"""
    parser = argparse.ArgumentParser(
        prog="arcsync",
        description="Keep local folders in sync with one rsync-able archive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--root", metavar="PATH",
                        help="Sync root holding the folders and .sync/ (default: cwd)")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    init_p = subparsers.add_parser(
        "init",
        help="Create a stub .sync/sync_settings.txt",
        description="Create a commented stub settings file in the sync root.",
    )
    init_p.add_argument("--force", action="store_true",
                        help="Overwrite an existing settings file")

    sync_p = subparsers.add_parser(
        "sync",
        help="Up-sync then down-sync folders",
        description="Sync every top-level folder of the root, or only FOLDER ...; "
                    "named folders are created if missing.",
    )
    sync_p.add_argument("folders", nargs="*", metavar="FOLDER",
                        help="Folders to sync (default: all)")
    sync_p.add_argument("-v", "--verbose", action="store_true",
                        help="Show tracebacks and extra output")

    subparsers.add_parser(
        "status",
        help="Show settings, tracked files and lock files",
        description="Show sync status for the sync root.",
    )

    connect_p = subparsers.add_parser(
        "connect",
        help="Test an archive and fetch its settings",
        description="Run a sync cycle against URL/_TEST/<uuid>, then fetch URL/.sync/sync_settings.txt.",
    )
    connect_p.add_argument("url", metavar="URL",
                           help="rsync-able archive path, e.g. user@host:/srv/archive")
    connect_p.add_argument("--skip-test", action="store_true",
                           help="Do not run the connectivity self-test")
    connect_p.add_argument("-v", "--verbose", action="store_true",
                           help="Show extra output")

    args = parser.parse_args()

    try:
        if args.command == "init":
            cmd_init(args)
        elif args.command == "sync":
            cmd_sync(args)
        elif args.command == "status":
            cmd_status(args)
        elif args.command == "connect":
            cmd_connect(args)
        else:
            parser.print_help()
            sys.exit(1)
    except KeyboardInterrupt:
        print("\ninterrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
