# Copyright Red Hat
#
# fssnap/snapshot/__init__.py - File system snapshot package
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
File system snapshot package.

Provides directory tree capture, persistence and rule-driven comparison.
The main entry points are ``FileSystemSnapshot`` and
``SnapshotConfiguration``.
"""
from .engine import Discrepancy, DifferenceType, FileSystemEqualityState
from .filetypes import ContentType
from .options import SnapshotConfiguration
from .rules import FileAttribute, MatchType
from .snapshot import FileSystemSnapshot

__all__ = [
    "ContentType",
    "DifferenceType",
    "Discrepancy",
    "FileAttribute",
    "FileSystemEqualityState",
    "FileSystemSnapshot",
    "MatchType",
    "SnapshotConfiguration",
]
