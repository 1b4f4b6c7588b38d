from __future__ import annotations

import contextlib
import os
import posixpath
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fakes import FakeRemoteSession, make_config, make_deep_local_tree
from sftpbridge import fileops
from sftpbridge.clipboard import (
    ClipboardManager,
    ClipboardOperation,
    Topology,
    classify_topology,
)
from sftpbridge.connection import ConnectionRegistry
from sftpbridge.errors import StaleSessionError, TransferCancelledException, TransferError, UnsupportedOperationError
from sftpbridge.fileops import local_item
from sftpbridge.progress import ProgressTracker
from sftpbridge.session import LOCAL_ENDPOINT_ID


class ClipboardTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.calls = []
        self.sessions = {
            "A": FakeRemoteSession("A", self.calls),
            "B": FakeRemoteSession("B", self.calls),
        }
        self.registry = ConnectionRegistry(
            [make_config("A"), make_config("B")],
            session_factory=lambda config: self.sessions[config.name],
        )
        self.registry.connect("A")
        self.registry.connect("B")
        self.calls.clear()
        self.manager = ClipboardManager(self.registry)
        self.a = self.sessions["A"]
        self.b = self.sessions["B"]

    def tearDown(self) -> None:
        self.registry.close()
        self._tmp.cleanup()

    def write(self, relative: str, data: bytes = b"payload") -> Path:
        path = self.tmp / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def data_calls(self, session: FakeRemoteSession):
        return [op for op in session.ops() if op in ("mkdir", "get", "put", "delete", "rename")]


class IntentTests(ClipboardTestCase):
    def test_second_copy_replaces_first(self) -> None:
        self.a.add_file("/x/one.txt")
        self.a.add_file("/x/two.txt")
        self.manager.copy([self.a.item("/x/one.txt")], "A")
        self.manager.copy([self.a.item("/x/two.txt")], "A")
        intent = self.manager.get_clipboard_data()
        self.assertEqual(intent.items, (self.a.item("/x/two.txt"),))
        self.assertIs(intent.operation, ClipboardOperation.COPY)

    def test_cut_replaces_copy(self) -> None:
        self.a.add_file("/x/one.txt")
        self.manager.copy([self.a.item("/x/one.txt")], "A")
        self.manager.cut([self.a.item("/x/one.txt")], "A")
        self.assertTrue(self.manager.get_clipboard_data().is_cut)

    def test_empty_selection_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.manager.copy([], "A")
        self.assertFalse(self.manager.has_clipboard_data())

    def test_items_must_belong_to_source_endpoint(self) -> None:
        self.a.add_file("/x/one.txt")
        with self.assertRaises(ValueError):
            self.manager.cut([self.a.item("/x/one.txt")], "B")

    def test_local_flags_and_clear(self) -> None:
        source = self.write("local.txt")
        self.manager.copy([local_item(str(source))], LOCAL_ENDPOINT_ID)
        self.assertTrue(self.manager.has_local_files())
        self.manager.clear_clipboard()
        self.assertFalse(self.manager.has_clipboard_data())
        self.assertFalse(self.manager.has_local_files())

    def test_paste_with_empty_clipboard(self) -> None:
        self.assertFalse(self.manager.paste("A", "/"))
        self.assertEqual(self.data_calls(self.a), [])

    def test_topology_classification(self) -> None:
        self.assertIs(classify_topology(LOCAL_ENDPOINT_ID, "A"), Topology.UPLOAD)
        self.assertIs(classify_topology("A", LOCAL_ENDPOINT_ID), Topology.DOWNLOAD)
        self.assertIs(classify_topology("A", "A"), Topology.SAME_ENDPOINT)
        self.assertIs(classify_topology("A", "B"), Topology.RELAY)
        self.assertIs(classify_topology(LOCAL_ENDPOINT_ID, LOCAL_ENDPOINT_ID), Topology.SAME_ENDPOINT)


class UploadDownloadTests(ClipboardTestCase):
    def test_upload_then_download_round_trip(self) -> None:
        content = os.urandom(70000)
        source = self.write("report.bin", content)
        self.a.add_dir("/up")

        self.manager.copy([local_item(str(source))], LOCAL_ENDPOINT_ID)
        self.assertTrue(self.manager.paste("A", "/up"))
        self.assertTrue(self.manager.has_clipboard_data())

        fresh = self.tmp / "fresh"
        self.manager.copy([self.a.item("/up/report.bin")], "A")
        self.assertTrue(self.manager.paste(LOCAL_ENDPOINT_ID, str(fresh)))

        downloaded = fresh / "report.bin"
        self.assertEqual(downloaded.read_bytes(), content)
        self.assertEqual(downloaded.stat().st_size, self.a.item("/up/report.bin").size)

    def test_cut_upload_deletes_local_file_after_put(self) -> None:
        source = self.write("move-me.txt")
        self.a.add_dir("/up")
        self.manager.cut([local_item(str(source))], LOCAL_ENDPOINT_ID)

        self.assertTrue(self.manager.paste("A", "/up"))
        self.assertFalse(source.exists())
        self.assertIn("/up/move-me.txt", self.a.files)
        self.assertFalse(self.manager.has_clipboard_data())

    def test_cut_upload_keeps_local_file_when_put_fails(self) -> None:
        source = self.write("move-me.txt")
        self.a.add_dir("/up")
        self.a.fail_on["put"] = {"/up/move-me.txt"}
        self.manager.cut([local_item(str(source))], LOCAL_ENDPOINT_ID)

        self.assertFalse(self.manager.paste("A", "/up"))
        self.assertTrue(source.exists())
        self.assertIsInstance(self.manager.last_error, TransferError)
        self.assertIn("Upload failed", str(self.manager.last_error))
        self.assertEqual(self.manager.last_error.path, local_item(str(source)).path)
        self.assertTrue(self.manager.has_clipboard_data())

    def test_cut_upload_of_tree_deeper_than_recursion_limit(self) -> None:
        depth = sys.getrecursionlimit() + 50
        root = str(self.tmp / "deep")
        make_deep_local_tree(root, depth)
        self.manager.cut([local_item(root)], LOCAL_ENDPOINT_ID)

        self.assertTrue(self.manager.paste("A", "/"), self.manager.last_error)
        self.assertFalse(os.path.exists(root))
        remote_leaf = posixpath.join("/deep", *(["d"] * depth), "leaf.txt")
        self.assertEqual(self.a.files[remote_leaf], b"leaf")

    def test_cut_upload_of_directory_removes_tree_after_push(self) -> None:
        self.write("tree/a.txt")
        self.write("tree/sub/b.txt")
        tree = self.tmp / "tree"
        self.a.add_dir("/up")
        self.manager.cut([local_item(str(tree))], LOCAL_ENDPOINT_ID)

        self.assertTrue(self.manager.paste("A", "/up"))
        self.assertFalse(tree.exists())
        self.assertEqual(set(self.a.files), {"/up/tree/a.txt", "/up/tree/sub/b.txt"})

    def test_failed_upload_is_not_rolled_back(self) -> None:
        first = self.write("first.txt")
        second = self.write("second.txt")
        self.a.add_dir("/up")
        self.a.fail_on["put"] = {"/up/second.txt"}
        self.manager.copy([local_item(str(first)), local_item(str(second))], LOCAL_ENDPOINT_ID)

        self.assertFalse(self.manager.paste("A", "/up"))
        self.assertIn("/up/first.txt", self.a.files)
        self.assertNotIn("/up/second.txt", self.a.files)

    def test_cut_download_scenario(self) -> None:
        self.a.add_file("/src/file1.txt", b"hello")
        home = self.tmp / "home" / "x"
        self.manager.cut([self.a.item("/src/file1.txt")], "A")

        self.assertTrue(self.manager.paste(LOCAL_ENDPOINT_ID, str(home)))

        self.assertEqual((home / "file1.txt").read_bytes(), b"hello")
        self.assertNotIn("/src/file1.txt", self.a.files)
        self.assertEqual(self.data_calls(self.a), ["get", "delete"])
        self.assertFalse(self.manager.has_clipboard_data())

    def test_cut_download_of_directory_deletes_remote_last(self) -> None:
        self.a.add_file("/src/dir/a.txt")
        self.a.add_file("/src/dir/nested/b.txt")
        self.manager.cut([self.a.item("/src/dir")], "A")

        self.assertTrue(self.manager.paste(LOCAL_ENDPOINT_ID, str(self.tmp)))
        self.assertTrue((self.tmp / "dir" / "nested" / "b.txt").exists())
        self.assertEqual(self.a.ops()[-1], "delete")
        self.assertEqual([c for c in self.calls if c[1] == "delete"], [("A", "delete", "/src/dir")])
        self.assertNotIn("/src/dir", self.a.dirs)

    def test_disconnected_source_is_reported_as_stale(self) -> None:
        self.a.add_file("/src/file1.txt")
        self.manager.cut([self.a.item("/src/file1.txt")], "A")
        self.registry.disconnect("A")

        self.assertFalse(self.manager.paste(LOCAL_ENDPOINT_ID, str(self.tmp)))
        self.assertIsInstance(self.manager.last_error, StaleSessionError)
        self.assertIn("connection not established", str(self.manager.last_error))
        self.assertTrue(self.manager.has_clipboard_data())

    def test_disconnect_mid_batch_is_detected(self) -> None:
        first = self.write("first.txt")
        second = self.write("second.txt")
        self.a.add_dir("/up")

        def drop_connection(operation, args) -> None:
            if operation == "put":
                self.registry.disconnect("A")

        self.a.after_call = drop_connection
        self.manager.copy([local_item(str(first)), local_item(str(second))], LOCAL_ENDPOINT_ID)

        self.assertFalse(self.manager.paste("A", "/up"))
        self.assertIsInstance(self.manager.last_error, StaleSessionError)
        self.assertEqual(self.a.ops().count("put"), 1)


class SameEndpointTests(ClipboardTestCase):
    def test_cut_is_a_single_rename(self) -> None:
        self.a.add_file("/a/f.txt")
        self.a.add_dir("/b")
        self.manager.cut([self.a.item("/a/f.txt")], "A")

        self.assertTrue(self.manager.paste("A", "/b"))
        self.assertIn("/b/f.txt", self.a.files)
        self.assertNotIn("/a/f.txt", self.a.files)
        self.assertEqual(self.data_calls(self.a), ["rename"])

    def test_copy_of_file_stages_through_temp_file(self) -> None:
        self.a.add_file("/a/f.txt", b"same bytes")
        self.a.add_dir("/b")
        self.manager.copy([self.a.item("/a/f.txt")], "A")

        self.assertTrue(self.manager.paste("A", "/b"))
        self.assertEqual(self.a.files["/b/f.txt"], b"same bytes")
        self.assertEqual(self.a.files["/a/f.txt"], b"same bytes")
        self.assertEqual(self.data_calls(self.a), ["get", "put"])
        temp_path = next(c[3] for c in self.calls if c[1] == "get")
        self.assertFalse(os.path.exists(temp_path))
        self.assertTrue(self.manager.has_clipboard_data())

    def test_copy_temp_file_removed_when_put_fails(self) -> None:
        self.a.add_file("/a/f.txt")
        self.a.add_dir("/b")
        self.a.fail_on["put"] = {"/b/f.txt"}
        self.manager.copy([self.a.item("/a/f.txt")], "A")

        self.assertFalse(self.manager.paste("A", "/b"))
        temp_path = next(c[3] for c in self.calls if c[1] == "get")
        self.assertFalse(os.path.exists(temp_path))

    def test_copy_of_directory_is_unsupported(self) -> None:
        self.a.add_file("/a/f.txt")
        self.a.add_file("/a/dir/g.txt")
        self.manager.copy([self.a.item("/a/f.txt"), self.a.item("/a/dir")], "A")

        self.assertFalse(self.manager.paste("A", "/b"))
        self.assertIsInstance(self.manager.last_error, UnsupportedOperationError)
        self.assertIn("use cut", str(self.manager.last_error))
        self.assertEqual(self.data_calls(self.a), [])

    def test_cut_of_directory_is_moved(self) -> None:
        self.a.add_file("/a/dir/g.txt")
        self.a.add_dir("/b")
        self.manager.cut([self.a.item("/a/dir")], "A")

        self.assertTrue(self.manager.paste("A", "/b"))
        self.assertIn("/b/dir/g.txt", self.a.files)
        self.assertEqual(self.data_calls(self.a), ["rename"])

    def test_dropped_connection_during_move_is_reported(self) -> None:
        self.a.add_file("/a/f.txt")
        self.a.add_dir("/b")

        def drop(operation, args) -> None:
            if operation == "rename":
                raise EOFError("Server connection dropped")

        self.a.after_call = drop
        self.manager.cut([self.a.item("/a/f.txt")], "A")

        self.assertFalse(self.manager.paste("A", "/b"))
        self.assertIsInstance(self.manager.last_error, TransferError)
        self.assertEqual(str(self.manager.last_error), "Move failed: Server connection dropped")
        self.assertTrue(self.manager.has_clipboard_data())


class RelayTests(ClipboardTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.a.add_file("/src/tree/top.txt", b"top")
        self.a.add_file("/src/tree/sub/one.txt", b"one")
        self.a.add_file("/src/tree/sub/two.txt", b"two")
        self.a.add_file("/src/single.txt", b"single")
        self.b.add_dir("/dst")
        self.staging_paths = []

        real_staging = fileops.staging_directory

        @contextlib.contextmanager
        def recording_staging(purpose: str = "relay"):
            with real_staging(purpose) as path:
                self.calls.append(("local", "staging", path))
                self.staging_paths.append(path)
                yield path

        patcher = mock.patch("sftpbridge.clipboard.staging_directory", recording_staging)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_relay_copies_tree_in_download_order(self) -> None:
        self.manager.copy([self.a.item("/src/tree"), self.a.item("/src/single.txt")], "A")
        self.assertTrue(self.manager.paste("B", "/dst"))

        self.assertEqual(self.calls[0][:2], ("local", "staging"))
        staging = self.staging_paths[0]
        self.assertFalse(os.path.exists(staging))

        self.assertEqual(self.b.files["/dst/tree/sub/two.txt"], b"two")
        self.assertEqual(self.b.files["/dst/single.txt"], b"single")
        self.assertIn("/src/tree", self.a.dirs)

        downloaded = [os.path.relpath(c[3], staging) for c in self.calls if c[1] == "get"]
        uploaded = [os.path.relpath(c[3], staging) for c in self.calls if c[1] == "put"]
        self.assertEqual(downloaded, uploaded)

        b_calls = [c for c in self.calls if c[0] == "B"]
        sub_created = b_calls.index(("B", "mkdir", "/dst/tree/sub"))
        first_child = next(i for i, c in enumerate(b_calls) if c[1] == "put" and c[2].startswith("/dst/tree/sub/"))
        self.assertLess(sub_created, first_child)

        last_get = max(i for i, c in enumerate(self.calls) if c[1] == "get")
        first_put = min(i for i, c in enumerate(self.calls) if c[1] == "put")
        self.assertLess(last_get, first_put)

    def test_relay_cleans_staging_after_mid_batch_failure(self) -> None:
        self.b.fail_on["put"] = {"/dst/tree/sub/one.txt"}
        self.manager.cut([self.a.item("/src/tree"), self.a.item("/src/single.txt")], "A")

        self.assertFalse(self.manager.paste("B", "/dst"))
        self.assertFalse(os.path.exists(self.staging_paths[0]))
        self.assertNotIn("delete", self.a.ops())
        self.assertIn("/src/tree/sub/one.txt", self.a.files)
        self.assertTrue(self.manager.has_clipboard_data())

    def test_relay_cut_deletes_sources_after_upload(self) -> None:
        self.manager.cut([self.a.item("/src/tree"), self.a.item("/src/single.txt")], "A")

        self.assertTrue(self.manager.paste("B", "/dst"))
        last_put = max(i for i, c in enumerate(self.calls) if c[1] == "put")
        deletes = [i for i, c in enumerate(self.calls) if c[1] == "delete"]
        self.assertEqual(len(deletes), 2)
        self.assertTrue(all(i > last_put for i in deletes))
        self.assertNotIn("/src/tree", self.a.dirs)
        self.assertNotIn("/src/single.txt", self.a.files)
        self.assertFalse(self.manager.has_clipboard_data())

    def test_relay_with_disconnected_destination(self) -> None:
        self.registry.disconnect("B")
        self.manager.copy([self.a.item("/src/single.txt")], "A")

        self.assertFalse(self.manager.paste("B", "/dst"))
        self.assertIsInstance(self.manager.last_error, StaleSessionError)
        self.assertFalse(os.path.exists(self.staging_paths[0]))
        self.assertEqual(self.data_calls(self.a), [])

    def test_relay_of_tree_deeper_than_recursion_limit(self) -> None:
        depth = sys.getrecursionlimit() + 50
        leaf = "/deep" + "/d" * depth + "/leaf.txt"
        self.a.add_file(leaf, b"leaf")
        self.manager.copy([self.a.item("/deep")], "A")

        self.assertTrue(self.manager.paste("B", "/dst"), self.manager.last_error)
        self.assertEqual(self.b.files["/dst" + leaf], b"leaf")
        self.assertFalse(os.path.exists(self.staging_paths[0]))


class SingleOperationTests(ClipboardTestCase):
    def test_delete_items_reports_partial_success(self) -> None:
        self.a.add_file("/x/keep.txt")
        self.a.add_file("/x/gone.txt")
        self.a.fail_on["delete"] = {"/x/keep.txt"}

        report = self.manager.delete_items("A", [self.a.item("/x/keep.txt"), self.a.item("/x/gone.txt")])

        self.assertTrue(report.partial)
        self.assertFalse(report.ok)
        self.assertEqual([item.path for item in report.succeeded], ["/x/gone.txt"])
        self.assertEqual(report.failed[0][0].path, "/x/keep.txt")
        self.assertIn("1 failed", report.summary())

    def test_delete_items_on_disconnected_endpoint(self) -> None:
        self.a.add_file("/x/one.txt")
        item = self.a.item("/x/one.txt")
        self.registry.disconnect("A")
        report = self.manager.delete_items("A", [item])
        self.assertFalse(report.ok)
        self.assertFalse(report.partial)

    def test_download_file_reports_progress(self) -> None:
        self.a.add_file("/x/big.bin", b"z" * 1000)
        tracker = ProgressTracker(total_files=1, total_bytes=1000)
        self.manager.download_file("A", "/x/big.bin", str(self.tmp / "big.bin"), tracker)
        self.assertEqual(tracker.completed_files, 1)
        self.assertEqual(tracker.transferred_bytes, 1000)
        self.assertEqual(tracker.get_progress()[0], 1.0)

    def test_download_file_cancelled_before_start(self) -> None:
        self.a.add_file("/x/big.bin")
        tracker = ProgressTracker(total_files=1)
        tracker.cancel()
        with self.assertRaises(TransferCancelledException):
            self.manager.download_file("A", "/x/big.bin", str(self.tmp / "big.bin"), tracker)
        self.assertNotIn("get", self.a.ops())

    def test_download_file_cancelled_mid_transfer(self) -> None:
        self.a.add_file("/x/big.bin")
        tracker = ProgressTracker(total_files=1)

        def cancel_on_get(operation, args) -> None:
            if operation == "get":
                tracker.cancel()

        self.a.after_call = cancel_on_get
        target = self.tmp / "big.bin"
        with self.assertRaises(TransferCancelledException):
            self.manager.download_file("A", "/x/big.bin", str(target), tracker)
        self.assertFalse(target.exists())

    def test_upload_file(self) -> None:
        source = self.write("up.txt", b"up")
        self.a.add_dir("/in")
        self.manager.upload_file("A", str(source), "/in/up.txt")
        self.assertEqual(self.a.files["/in/up.txt"], b"up")


if __name__ == "__main__":
    unittest.main()
