# Copyright Red Hat
#
# tests/snapshot/_util.py - File system snapshot test utilities.
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
import os

#: Fixed modification time for fixture files (epoch seconds)
FIXTURE_MTIME = 1600000000

#: The reference tree used by snapshot scenario tests
DIR1_FILES = {
    "file1.txt": "first file\n",
    "file2.properties": "key1=value1\nkey2=value2\n",
    "sub-dir1/file1.ini": "[section]\nkey=value\n",
    "sub-dir1/file2.xml": '<root><node attr="a">text</node></root>\n',
    "sub-dir1/sub-sub-dir1/file3.txt": "deep\n",
    "sub-dir2/file4.txt": "fourth\n",
}


def make_tree(root, files, mtime=FIXTURE_MTIME, dirs=()):
    """
    Populate ``root`` with ``files``, a dictionary mapping relative paths
    to text content, and the empty directories in ``dirs``. Every file is
    given the same modification time.

    :returns: ``root``
    """
    os.makedirs(root, exist_ok=True)
    for rel_dir in dirs:
        os.makedirs(os.path.join(root, rel_dir), exist_ok=True)
    for rel_path, content in files.items():
        path = os.path.join(root, rel_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        os.utime(path, (mtime, mtime))
    return root


def make_dir1(parent, name="dir1", changes=None):
    """
    Create a copy of the reference tree below ``parent``. ``changes`` maps
    relative paths to replacement content, or to ``None`` to remove a file.

    :returns: The path of the new tree.
    """
    files = dict(DIR1_FILES)
    for rel_path, value in (changes or {}).items():
        if value is None:
            files.pop(rel_path, None)
        else:
            files[rel_path] = value
    return make_tree(os.path.join(parent, name), files)


def write_file(path, content, mtime=FIXTURE_MTIME):
    """Write ``content`` to ``path`` with a fixed modification time."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    os.utime(path, (mtime, mtime))
