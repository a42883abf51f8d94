# Copyright Red Hat
#
# tests/test_fssnap.py - fssnap package unit tests
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from io import StringIO
from unittest.mock import MagicMock
import logging

import fssnap
from fssnap.snapshot.engine import (
    DifferenceType,
    Discrepancy,
    FileSystemEqualityState,
)

log = logging.getLogger()


def _make_state():
    state = FileSystemEqualityState("snap1", "snap2")
    state.add_difference(
        Discrepancy(
            DifferenceType.DIRECTORY_ONLY_IN_ONE,
            "F1",
            "sub-dir2/",
            "snap1",
            "snap2",
            "/tmp/a/sub-dir2/",
            None,
        )
    )
    state.add_difference(
        Discrepancy(
            DifferenceType.FILE_ONLY_IN_ONE,
            "F1",
            "file9.txt",
            "snap1",
            "snap2",
            None,
            "/tmp/b/file9.txt",
        )
    )
    diff = Discrepancy(
        DifferenceType.DIFFERENT_FILES,
        "F1",
        "file1.txt",
        "snap1",
        "snap2",
        "/tmp/a/file1.txt",
        "/tmp/b/file1.txt",
    )
    diff.add_difference("MD5 checksum", "abc", "def")
    state.add_difference(diff)
    return state


class FssnapTestsSimple(unittest.TestCase):
    """Test fssnap module"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down (%s)", self._testMethodName)
        fssnap.set_debug_mask(0)

    def test_set_debug_mask(self):
        fssnap.set_debug_mask(fssnap.FSSNAP_DEBUG_ALL)
        self.assertEqual(fssnap.get_debug_mask(), fssnap.FSSNAP_DEBUG_ALL)

    def test_set_debug_mask_bad_mask(self):
        with self.assertRaises(ValueError):
            fssnap.set_debug_mask(fssnap.FSSNAP_DEBUG_ALL + 1)

    def test_set_debug_mask_negative(self):
        with self.assertRaises(ValueError):
            fssnap.set_debug_mask(-1)

    def test_SubsystemFilter(self):
        fssnap.set_debug_mask(0)
        sf = fssnap.SubsystemFilter("fssnap")
        self.assertEqual(sf.enabled_subsystems, set())
        fssnap.set_debug_mask(fssnap.FSSNAP_DEBUG_SCAN | fssnap.FSSNAP_DEBUG_RULES)
        sf2 = fssnap.SubsystemFilter("fssnap")
        self.assertIn(fssnap.FSSNAP_SUBSYSTEM_SCAN, sf2.enabled_subsystems)
        self.assertIn(fssnap.FSSNAP_SUBSYSTEM_RULES, sf2.enabled_subsystems)
        self.assertNotIn(fssnap.FSSNAP_SUBSYSTEM_PERSIST, sf2.enabled_subsystems)

    def test_SubsystemFilter_filter(self):
        sf = fssnap.SubsystemFilter("fssnap")
        sf.set_debug_subsystems([fssnap.FSSNAP_SUBSYSTEM_COMPARE])

        record = logging.LogRecord("fssnap", logging.DEBUG, "", 0, "msg", None, None)
        # Untagged debug records always pass
        self.assertTrue(sf.filter(record))

        record.subsystem = fssnap.FSSNAP_SUBSYSTEM_COMPARE
        self.assertTrue(sf.filter(record))

        record.subsystem = fssnap.FSSNAP_SUBSYSTEM_SCAN
        self.assertFalse(sf.filter(record))

        record.levelno = logging.INFO
        self.assertTrue(sf.filter(record))

    def test_ProgressAwareHandler_notifies_progress(self):
        stream = StringIO()
        handler = fssnap.ProgressAwareHandler(stream=stream)
        handler.setFormatter(logging.Formatter("%(message)s"))
        record = logging.LogRecord("fssnap", logging.INFO, "", 0, "hello", None, None)
        handler.emit(record)
        self.assertEqual(stream.getvalue(), "hello\n")

    def test_register_unregister_progress(self):
        progress = MagicMock()
        fssnap.register_progress(progress)
        self.assertTrue(progress.registered)
        fssnap.unregister_progress(progress)
        self.assertFalse(progress.registered)

    def test_exception_hierarchy(self):
        for exc in (
            fssnap.FssnapSystemError,
            fssnap.ConfigurationError,
            fssnap.SameSnapshotNameError,
            fssnap.DirectoryNotFoundError,
            fssnap.SnapshotStateError,
            fssnap.SnapshotParseError,
            fssnap.ContentParseError,
            fssnap.FileSystemSnapshotError,
        ):
            self.assertTrue(issubclass(exc, fssnap.FssnapError))
        for exc in (
            fssnap.InvalidArgumentError,
            fssnap.InvalidRegexError,
            fssnap.DuplicateAliasError,
            fssnap.NoSuchDirectoryAliasError,
        ):
            self.assertTrue(issubclass(exc, fssnap.ConfigurationError))

    def test_exception_messages(self):
        self.assertEqual(
            str(fssnap.DuplicateAliasError("F1", "snap1")),
            "There is already a directory with alias 'F1' for snapshot 'snap1'",
        )
        self.assertEqual(
            str(fssnap.NoSuchDirectoryAliasError("X")),
            "There is no directory snapshot with alias 'X'",
        )
        self.assertEqual(
            str(fssnap.SameSnapshotNameError("snap1")),
            "You are trying to compare snapshots with same name: snap1",
        )
        self.assertEqual(
            str(fssnap.DirectoryNotFoundError("/nonexistent/")),
            "Directory '/nonexistent/' does not exist",
        )
        err = fssnap.InvalidRegexError("[", "unterminated character set")
        self.assertEqual(err.pattern, "[")
        self.assertIn("Invalid regular expression '['", str(err))

    def test_FileSystemSnapshotError_accessors(self):
        err = fssnap.FileSystemSnapshotError(_make_state())
        self.assertEqual(err.directories_only_in("snap1"), ["/tmp/a/sub-dir2/"])
        self.assertEqual(err.directories_only_in("snap2"), [])
        self.assertEqual(err.files_only_in("snap2"), ["/tmp/b/file9.txt"])
        self.assertEqual(err.files_only_in("snap1"), [])
        self.assertEqual(
            err.different_files(),
            ['"/tmp/a/file1.txt":\n\tMD5 checksum: abc vs def'],
        )

    def test_FileSystemSnapshotError_message(self):
        err = fssnap.FileSystemSnapshotError(_make_state())
        msg = str(err)
        self.assertIn(
            "Directory is present in [snap1] snapshot only: /tmp/a/sub-dir2/", msg
        )
        self.assertIn("File is present in [snap2] snapshot only: /tmp/b/file9.txt", msg)
        self.assertIn(
            'Files are different in [snap1] and [snap2] snapshots: "/tmp/a/file1.txt"',
            msg,
        )
