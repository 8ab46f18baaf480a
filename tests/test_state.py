"""
Tests for the per-folder state store, its scan contracts and the lock marker.
"""
import sys
import tempfile
import time
import unittest
from pathlib import Path
from unittest import mock

import yaml

from arcsync.config import get_dot_sync_dir, get_info_file, get_lock_file
from arcsync.errors import HashToolError, StateFileError, FatalError
from arcsync.operations.scanner import list_folder_files
from arcsync.state.lock import FolderLock
from arcsync.state.state_manager import FileRecord, FolderSyncState, load_records
from tests.support import make_settings, write_file

FOLDER = "Docs"


class _RootCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        (self.root / FOLDER).mkdir()

    def tearDown(self):
        self.tmpdir.cleanup()

    def state(self, **overrides) -> FolderSyncState:
        return FolderSyncState(make_settings(**overrides), self.root, FOLDER)

    def write_store(self, text: str):
        get_dot_sync_dir(self.root).mkdir(exist_ok=True)
        get_info_file(self.root, FOLDER).write_text(text, encoding="utf-8")


# ── Tests: scanner ────────────────────────────────────────────────────────────

class TestScanner(_RootCase):

    def test_dot_entries_are_skipped(self):
        write_file(self.root, "Docs/a.txt")
        write_file(self.root, "Docs/.hidden")
        write_file(self.root, "Docs/.git/config")
        write_file(self.root, "Docs/sub/b.txt")
        self.assertEqual(sorted(list_folder_files(self.root, FOLDER)),
                         ["Docs/a.txt", "Docs/sub/b.txt"])

    def test_stats_are_integers(self):
        write_file(self.root, "Docs/a.txt", mtime=1_600_000_000, atime=1_600_000_100)
        st = list_folder_files(self.root, FOLDER)["Docs/a.txt"]
        self.assertEqual(st.mtime, 1_600_000_000)
        self.assertEqual(st.atime, 1_600_000_100)
        self.assertEqual(st.size, len("hello there\n"))

    def test_missing_folder_is_empty(self):
        self.assertEqual(list_folder_files(self.root, "Nope"), {})


# ── Tests: contract A (before upload) ─────────────────────────────────────────

class TestComputeUploadSet(_RootCase):

    def test_empty_folder(self):
        state = self.state()
        self.assertEqual(state.compute_upload_set(1000), [])
        state.persist()
        self.assertEqual(load_records(get_info_file(self.root, FOLDER), FOLDER), {})

    def test_new_file_is_flagged_once(self):
        write_file(self.root, "Docs/a.txt")
        state = self.state()
        self.assertEqual(state.compute_upload_set(int(time.time())), ["Docs/a.txt"])
        state.persist()

        again = self.state()
        self.assertEqual(again.compute_upload_set(int(time.time())), [])

    def test_every_scanned_file_is_recorded(self):
        write_file(self.root, "Docs/a.txt")
        write_file(self.root, "Docs/b.txt", "b\n")
        state = self.state()
        state.compute_upload_set(4242)
        self.assertEqual(set(state.records), {"Docs/a.txt", "Docs/b.txt"})
        for rec in state.records.values():
            self.assertEqual(rec.sync_ts, 4242)
            self.assertIsNotNone(rec.digest)

    def test_touched_but_unchanged_is_not_uploaded(self):
        """With digests, a newer mtime alone does not trigger an upload."""
        write_file(self.root, "Docs/a.txt", mtime=1000)
        state = self.state()
        state.compute_upload_set(2000)
        write_file(self.root, "Docs/a.txt", mtime=5000)
        self.assertEqual(state.compute_upload_set(6000), [])

    def test_changed_content_with_old_mtime_is_uploaded(self):
        write_file(self.root, "Docs/a.txt", "one\n", mtime=1000)
        state = self.state()
        state.compute_upload_set(2000)
        write_file(self.root, "Docs/a.txt", "two\n", mtime=1000)
        self.assertEqual(state.compute_upload_set(3000), ["Docs/a.txt"])

    def test_fast_mode_uses_mtime(self):
        write_file(self.root, "Docs/a.txt", "one\n", mtime=1000)
        state = self.state(fast_mode_enabled=True)
        state.compute_upload_set(2000)
        write_file(self.root, "Docs/a.txt", "two\n", mtime=1500)
        self.assertEqual(state.compute_upload_set(3000), [])
        write_file(self.root, "Docs/a.txt", "three\n", mtime=3500)
        self.assertEqual(state.compute_upload_set(4000), ["Docs/a.txt"])

    def test_fast_mode_clears_digests(self):
        """A digest left over from before fast mode would otherwise be trusted later."""
        write_file(self.root, "Docs/a.txt", mtime=1000)
        state = self.state()
        state.compute_upload_set(2000)
        state.persist()

        fast = self.state(fast_mode_enabled=True)
        fast.compute_upload_set(3000)
        self.assertIsNone(fast.records["Docs/a.txt"].digest)
        fast.persist()

        slow = self.state()
        self.assertEqual(slow.compute_upload_set(4000), ["Docs/a.txt"])

    def test_broken_hash_tool_keeps_stored_digests(self):
        """A hashing tool that yields nothing must stop the scan, not fall back to mtimes."""
        write_file(self.root, "Docs/a.txt", "one\n", mtime=1000)
        state = self.state()
        state.compute_upload_set(2000)
        state.persist()
        stored = state.records["Docs/a.txt"]

        write_file(self.root, "Docs/a.txt", "two\n", mtime=1000)
        broken = self.state(hash_command=(sys.executable, "-c", "import sys; sys.exit(1)"))
        with self.assertRaises(HashToolError):
            broken.compute_upload_set(3000)
        self.assertEqual(broken.records["Docs/a.txt"], stored)
        self.assertEqual(self.state().compute_upload_set(4000), ["Docs/a.txt"])

    def test_vanished_files_stay_recorded(self):
        write_file(self.root, "Docs/a.txt")
        state = self.state()
        state.compute_upload_set(1000)
        (self.root / "Docs/a.txt").unlink()
        state.compute_upload_set(2000)
        self.assertEqual(state.records["Docs/a.txt"].sync_ts, 1000)


# ── Tests: contract B (after download) ────────────────────────────────────────

class TestReconcileAfterDownload(_RootCase):

    def test_only_accessed_files_are_refreshed(self):
        write_file(self.root, "Docs/old.txt", mtime=100, atime=100)
        state = self.state()
        state.compute_upload_set(500)
        write_file(self.root, "Docs/new.txt", "new\n", mtime=100, atime=1000)
        write_file(self.root, "Docs/old.txt", mtime=100, atime=100)

        state.reconcile_after_download(1000, 1010)
        self.assertEqual(state.records["Docs/new.txt"].sync_ts, 1010)
        self.assertIsNotNone(state.records["Docs/new.txt"].digest)
        self.assertEqual(state.records["Docs/old.txt"].sync_ts, 500)

    def test_downloaded_file_is_not_reuploaded(self):
        write_file(self.root, "Docs/new.txt", mtime=100, atime=1000)
        state = self.state()
        state.reconcile_after_download(1000, 1010)
        self.assertEqual(state.compute_upload_set(2000), [])


# ── Tests: persistence and validation ─────────────────────────────────────────

class TestPersistence(_RootCase):

    def test_round_trip(self):
        write_file(self.root, "Docs/a.txt")
        write_file(self.root, "Docs/sub/b c.txt", "b\n")
        state = self.state()
        state.compute_upload_set(1234)
        state.persist()
        loaded = load_records(get_info_file(self.root, FOLDER), FOLDER)
        self.assertEqual(loaded, dict(state.records))

    def test_absent_digest_is_omitted(self):
        self.assertEqual(FileRecord("Docs/a", 5).to_yaml(), {"sync_ts": 5})

    def test_persist_leaves_no_temp_files(self):
        write_file(self.root, "Docs/a.txt")
        state = self.state()
        state.compute_upload_set(1)
        state.persist()
        state.persist()
        self.assertEqual(sorted(p.name for p in get_dot_sync_dir(self.root).iterdir()),
                         ["Docs_info.yaml"])

    def test_failed_dump_leaves_no_temp_files(self):
        write_file(self.root, "Docs/a.txt")
        state = self.state()
        state.compute_upload_set(1)
        with mock.patch("arcsync.state.state_manager.yaml.safe_dump",
                        side_effect=yaml.representer.RepresenterError("cannot represent")):
            with self.assertRaises(yaml.representer.RepresenterError):
                state.persist()
        self.assertEqual(list(get_dot_sync_dir(self.root).iterdir()), [])

    def test_write_error_is_a_state_error(self):
        write_file(self.root, "Docs/a.txt")
        state = self.state()
        state.compute_upload_set(1)
        with mock.patch("arcsync.state.state_manager.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(StateFileError):
                state.persist()
        self.assertEqual(list(get_dot_sync_dir(self.root).iterdir()), [])

    def test_missing_store_is_empty(self):
        self.assertEqual(len(self.state()), 0)

    def test_invalid_stores_are_fatal(self):
        good = "a" * 40
        cases = {
            "outside folder": f"Other/a.txt:\n  sync_ts: 1\n",
            "parent segment": f"Docs/../Other/a.txt:\n  sync_ts: 1\n",
            "unknown field": f"Docs/a.txt:\n  sync_ts: 1\n  sha256: {good}\n",
            "not a mapping": "- Docs/a.txt\n",
            "record not a mapping": "Docs/a.txt: 1\n",
            "string sync_ts": "Docs/a.txt:\n  sync_ts: '1'\n",
            "bool sync_ts": "Docs/a.txt:\n  sync_ts: true\n",
            "missing sync_ts": f"Docs/a.txt:\n  digest: {good}\n",
            "short digest": "Docs/a.txt:\n  sync_ts: 1\n  digest: abc\n",
            "unparsable": "Docs/a.txt: [unclosed\n",
        }
        for name, text in cases.items():
            with self.subTest(name):
                self.write_store(text)
                with self.assertRaises(StateFileError):
                    self.state()

    def test_state_errors_are_fatal(self):
        self.assertTrue(issubclass(StateFileError, FatalError))

    def test_valid_store_loads(self):
        self.write_store(yaml.safe_dump({
            "Docs/a.txt": {"sync_ts": 7, "digest": "b" * 40},
            "Docs/b.txt": {"sync_ts": 8},
        }))
        records = self.state().records
        self.assertEqual(records["Docs/a.txt"], FileRecord("Docs/a.txt", 7, "b" * 40))
        self.assertIsNone(records["Docs/b.txt"].digest)


# ── Tests: FolderLock ─────────────────────────────────────────────────────────

class TestFolderLock(_RootCase):

    def test_acquire_and_release(self):
        lock = FolderLock(self.root, FOLDER)
        self.assertTrue(lock.acquire())
        self.assertTrue(get_lock_file(self.root, FOLDER).exists())
        self.assertTrue(lock.release())
        self.assertFalse(lock.exists())

    def test_second_acquire_fails(self):
        first = FolderLock(self.root, FOLDER)
        self.assertTrue(first.acquire())
        second = FolderLock(self.root, FOLDER)
        self.assertFalse(second.acquire())
        second.release()
        self.assertTrue(first.exists(), "a marker we did not create must not be removed")
        first.release()


if __name__ == "__main__":
    unittest.main()
