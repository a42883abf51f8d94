# Copyright Red Hat
#
# tests/snapshot/test_engine.py - Snapshot comparison engine tests.
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import tempfile
import json
import os

from fssnap import InvalidArgumentError, SameSnapshotNameError, SnapshotStateError
from fssnap.snapshot import FileAttribute, FileSystemSnapshot
from fssnap.snapshot.engine import (
    Comparator,
    DifferenceType,
    Discrepancy,
    FileSystemEqualityState,
)
from fssnap.snapshot.options import SnapshotConfiguration

from ._util import make_dir1, write_file


class TestDiscrepancy(unittest.TestCase):
    def test_file_only_in_one(self):
        diff = Discrepancy(
            DifferenceType.FILE_ONLY_IN_ONE, "F1", "a.txt", "S1", "S2", None, "/b/a.txt"
        )
        self.assertEqual(diff.present_in, "S2")
        self.assertEqual(diff.path, "/b/a.txt")
        self.assertEqual(str(diff), "File is present in [S2] snapshot only: /b/a.txt")

    def test_directory_only_in_one(self):
        diff = Discrepancy(
            DifferenceType.DIRECTORY_ONLY_IN_ONE, "F1", "d/", "S1", "S2", "/a/d/"
        )
        self.assertEqual(diff.present_in, "S1")
        self.assertEqual(
            str(diff), "Directory is present in [S1] snapshot only: /a/d/"
        )
        self.assertNotIn("differences", diff.to_dict())

    def test_different_files(self):
        diff = Discrepancy(
            DifferenceType.DIFFERENT_FILES, "F1", "f", "S1", "S2", "/a/f", "/b/f"
        )
        self.assertIsNone(diff.present_in)
        self.assertFalse(diff.has_differences())
        diff.add_difference("Size", "1", "2")
        diff.add_difference("Presence of a", "YES", "NO")
        diff.add_difference("Presence of a", "NO", "YES")
        self.assertEqual(
            str(diff),
            'Files are different in [S1] and [S2] snapshots: "/a/f"\n'
            "\tSize: 1 vs 2\n"
            "\tPresence of a: YES vs NO\n"
            "\tPresence of a (2): NO vs YES",
        )
        self.assertEqual(len(diff.to_dict()["differences"]), 3)


class TestFileSystemEqualityState(unittest.TestCase):
    def _state(self):
        state = FileSystemEqualityState("S1", "S2")
        state.add_difference(
            Discrepancy(
                DifferenceType.DIRECTORY_ONLY_IN_ONE, "F1", "d/", "S1", "S2", "/a/d/"
            )
        )
        state.add_difference(
            Discrepancy(
                DifferenceType.FILE_ONLY_IN_ONE, "F1", "g", "S1", "S2", None, "/b/g"
            )
        )
        changed = Discrepancy(
            DifferenceType.DIFFERENT_FILES, "F1", "f", "S1", "S2", "/a/f", "/b/f"
        )
        changed.add_difference("MD5 checksum", "x", "y")
        state.add_difference(changed)
        return state

    def test_equal(self):
        state = FileSystemEqualityState("S1", "S2")
        self.assertTrue(state.equal)
        self.assertEqual(str(state), "Snapshots [S1] and [S2] are equal")

    def test_accessors(self):
        state = self._state()
        self.assertFalse(state.equal)
        self.assertEqual(len(state), 3)
        self.assertEqual(state.directories_only_in("S1"), ["/a/d/"])
        self.assertEqual(state.directories_only_in("S2"), [])
        self.assertEqual(state.files_only_in("S2"), ["/b/g"])
        self.assertEqual(state.different_files(), ['"/a/f":\n\tMD5 checksum: x vs y'])
        self.assertIs(state[2].diff_type, DifferenceType.DIFFERENT_FILES)

    def test_str(self):
        lines = str(self._state()).splitlines()
        self.assertEqual(
            lines[0],
            "Comparing [S1] and [S2] produced the following unexpected differences:",
        )
        self.assertEqual(lines[1], "Directory is present in [S1] snapshot only: /a/d/")

    def test_json(self):
        out = json.loads(self._state().json(pretty=True))
        self.assertEqual(out["first_snapshot"], "S1")
        self.assertEqual(
            [diff["diff_type"] for diff in out["differences"]],
            ["directory_only_in_one", "file_only_in_one", "different_files"],
        )


class TestComparator(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def _snapshot(self, name, config=None, **trees):
        snapshot = FileSystemSnapshot(name, config)
        for alias, path in trees.items():
            snapshot.add_directory(alias, path)
        return snapshot

    def _compare(self, first, second):
        first.capture()
        second.capture()
        return Comparator().compare(first, second)

    def test_check_comparable(self):
        first = self._snapshot("S1")
        with self.assertRaises(InvalidArgumentError):
            Comparator.check_comparable(first, None)
        with self.assertRaises(SameSnapshotNameError):
            Comparator.check_comparable(first, self._snapshot("S1"))
        with self.assertRaises(SnapshotStateError) as cm:
            Comparator.check_comparable(first, self._snapshot("S2"))
        self.assertIn("[S1] snapshot is still not created", str(cm.exception))

    def test_alias_in_one_snapshot(self):
        dir1 = make_dir1(self.tmp)
        state = self._compare(
            self._snapshot("S1", F1=dir1, F2=dir1), self._snapshot("S2", F1=dir1)
        )
        self.assertEqual(len(state), 1)
        self.assertEqual(state[0].diff_type, DifferenceType.DIRECTORY_ONLY_IN_ONE)
        self.assertEqual(state.directories_only_in("S1"), [dir1 + "/"])

    def test_new_directory_reported_once(self):
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(self.tmp, "dir2")
        os.makedirs(os.path.join(dir2, "extra", "nested"))
        write_file(os.path.join(dir2, "extra", "nested", "f.txt"), "x\n")
        state = self._compare(
            self._snapshot("S1", F1=dir1), self._snapshot("S2", F1=dir2)
        )
        self.assertEqual(state.directories_only_in("S2"), [dir2 + "/extra/"])
        self.assertEqual(len(state), 1)

    def test_missing_file(self):
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(self.tmp, "dir2", {"sub-dir2/file4.txt": None})
        state = self._compare(
            self._snapshot("S1", F1=dir1), self._snapshot("S2", F1=dir2)
        )
        self.assertEqual(state.files_only_in("S1"), [dir1 + "/sub-dir2/file4.txt"])
        self.assertEqual(state.directories_only_in("S2"), [])

    def test_different_files_all_attributes(self):
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(self.tmp, "dir2", {"file1.txt": "changed content\n"})
        os.utime(os.path.join(dir2, "file1.txt"), (1700000000, 1700000000))
        state = self._compare(
            self._snapshot("S1", F1=dir1), self._snapshot("S2", F1=dir2)
        )
        self.assertEqual(len(state), 1)
        diff = state[0]
        self.assertEqual(diff.rel_path, "file1.txt")
        self.assertEqual(
            list(diff.first_values), ["MD5 checksum", "Size", "Modification time"]
        )
        self.assertEqual(diff.first_values["Modification time"], "1600000000000")

    def test_attribute_disabled_on_one_side(self):
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(self.tmp, "dir2")
        os.utime(os.path.join(dir2, "file1.txt"), (1700000000, 1700000000))
        no_mtime = SnapshotConfiguration(check_modification_time=False)
        state = self._compare(
            self._snapshot("S1", F1=dir1), self._snapshot("S2", no_mtime, F1=dir2)
        )
        self.assertTrue(state.equal)

    def test_skip_directory(self):
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(
            self.tmp, "dir2", {"sub-dir1/sub-sub-dir1/file3.txt": "changed\n"}
        )
        first = self._snapshot("S1", F1=dir1)
        first.skip_directory("F1", "sub-dir1/sub-sub-dir1")
        state = self._compare(first, self._snapshot("S2", F1=dir2))
        self.assertTrue(state.equal)

    def test_content_replaces_md5_and_size(self):
        config = SnapshotConfiguration(check_properties_content=True)
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(
            self.tmp,
            "dir2",
            {"file2.properties": "# reordered\nkey2 = value2\nkey1 = value1\n"},
        )
        state = self._compare(
            self._snapshot("S1", config, F1=dir1), self._snapshot("S2", config, F1=dir2)
        )
        self.assertTrue(state.equal)

    def test_content_differences(self):
        config = SnapshotConfiguration(check_properties_content=True)
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(
            self.tmp, "dir2", {"file2.properties": "key1=value1\nkey2=other\n"}
        )
        state = self._compare(
            self._snapshot("S1", config, F1=dir1), self._snapshot("S2", config, F1=dir2)
        )
        self.assertEqual(len(state), 1)
        self.assertEqual(
            state[0].description_lines(),
            ["\tproperty key 'key2': 'value2' vs 'other'"],
        )

    def test_content_check_ignores_md5_rule(self):
        config = SnapshotConfiguration(check_properties_content=True)
        dir1 = make_dir1(self.tmp)
        dir2 = make_dir1(
            self.tmp, "dir2", {"file2.properties": "key2=value2\nkey1=value1\n"}
        )
        first = self._snapshot("S1", config, F1=dir1)
        first.check_file("F1", "file2.properties", FileAttribute.MD5)
        state = self._compare(first, self._snapshot("S2", config, F1=dir2))
        self.assertTrue(state.equal)
