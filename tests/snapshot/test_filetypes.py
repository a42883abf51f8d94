# Copyright Red Hat
#
# tests/snapshot/test_filetypes.py - Content type detection tests.
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from fssnap.snapshot.filetypes import (
    ContentType,
    content_check_enabled,
    detect_content_type,
)
from fssnap.snapshot.options import SnapshotConfiguration


class TestDetectContentType(unittest.TestCase):
    def test_extensions(self):
        config = SnapshotConfiguration()
        self.assertEqual(detect_content_type(Path("a/b.xml"), config), ContentType.XML)
        self.assertEqual(
            detect_content_type(Path("app.properties"), config), ContentType.PROPERTIES
        )
        self.assertEqual(detect_content_type(Path("x.INI"), config), ContentType.INI)
        self.assertEqual(detect_content_type(Path("notes.txt"), config), ContentType.TEXT)
        self.assertEqual(detect_content_type(Path("blob.bin"), config), ContentType.REGULAR)

    def test_custom_extensions(self):
        config = SnapshotConfiguration(xml_extensions=(".xsd", ".xml"))
        self.assertEqual(detect_content_type(Path("s.xsd"), config), ContentType.XML)

    def test_xml_before_text(self):
        config = SnapshotConfiguration(text_extensions=(".xml",))
        self.assertEqual(detect_content_type(Path("a.xml"), config), ContentType.XML)

    def test_magic_not_used_by_default(self):
        with patch("fssnap.snapshot.filetypes.magic") as mock_magic:
            detect_content_type(Path("noext"), SnapshotConfiguration())
            mock_magic.detect_from_filename.assert_not_called()

    def test_magic_detects_xml(self):
        config = SnapshotConfiguration(use_magic_file_type=True)
        with patch("fssnap.snapshot.filetypes.magic") as mock_magic:
            mock_magic.detect_from_filename.return_value = MagicMock(
                mime_type="text/xml"
            )
            self.assertEqual(detect_content_type(Path("noext"), config), ContentType.XML)

    def test_magic_unknown_mime(self):
        config = SnapshotConfiguration(use_magic_file_type=True)
        with patch("fssnap.snapshot.filetypes.magic") as mock_magic:
            mock_magic.detect_from_filename.return_value = MagicMock(
                mime_type="application/octet-stream"
            )
            self.assertEqual(
                detect_content_type(Path("noext"), config), ContentType.REGULAR
            )

    def test_magic_error(self):
        config = SnapshotConfiguration(use_magic_file_type=True)
        with patch("fssnap.snapshot.filetypes.magic") as mock_magic:
            del mock_magic.error
            mock_magic.detect_from_filename.side_effect = OSError("magic failure")
            self.assertEqual(
                detect_content_type(Path("noext"), config), ContentType.REGULAR
            )


class TestContentCheckEnabled(unittest.TestCase):
    def test_disabled_by_default(self):
        config = SnapshotConfiguration()
        for content_type in ContentType:
            self.assertFalse(content_check_enabled(content_type, config))

    def test_enabled(self):
        config = SnapshotConfiguration(check_ini_content=True)
        self.assertTrue(content_check_enabled(ContentType.INI, config))
        self.assertFalse(content_check_enabled(ContentType.XML, config))
        self.assertFalse(content_check_enabled(ContentType.REGULAR, config))
