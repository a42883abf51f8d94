# Copyright Red Hat
#
# fssnap/snapshot/treewalk.py - File system snapshot tree walk
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Tree walking support for file system snapshots.
"""
from typing import Any, Dict, List, Optional, Set
from concurrent.futures import Future, ThreadPoolExecutor
from hashlib import md5
from pathlib import Path
from datetime import datetime
import logging
import stat
import os

from fssnap import (
    FSSNAP_SUBSYSTEM_SCAN,
    ContentParseError,
    DirectoryNotFoundError,
    FssnapSystemError,
)
from fssnap.progress import ProgressFactory

from .filetypes import ContentType, content_check_enabled, detect_content_type
from .inspectors import InspectorManager, StructuredContent
from .options import SnapshotConfiguration
from .rules import AliasRules, FileAttribute

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_scan(msg, *args, **kwargs):
    """A wrapper for scan subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": FSSNAP_SUBSYSTEM_SCAN}, **kwargs)


def normalize_root(path: str) -> str:
    """
    Return ``path`` as an absolute path using forward slashes and ending
    with a trailing slash.

    :param path: A directory path.
    :type path: ``str``
    :rtype: ``str``
    """
    path = os.path.abspath(os.path.expanduser(path.strip()))
    path = path.replace(os.sep, "/")
    return path if path.endswith("/") else path + "/"


def is_hidden(name: str) -> bool:
    """Return ``True`` if the file name ``name`` denotes a hidden entry."""
    return name.startswith(".")


class Entry:
    """
    A directory or file captured in a snapshot.
    """

    def __init__(
        self,
        path: str,
        is_dir: bool = False,
        size: Optional[int] = None,
        mtime: Optional[int] = None,
        md5sum: Optional[str] = None,
        permissions: Optional[str] = None,
        content_type: ContentType = ContentType.REGULAR,
        content: Optional[StructuredContent] = None,
    ):
        """
        Initialise a new ``Entry`` object.

        :param path: The relative path of this entry. Directory paths end
                     with ``/``.
        :type path: ``str``
        :param is_dir: ``True`` if this entry is a directory.
        :type is_dir: ``bool``
        :param size: The file size in bytes, if captured.
        :type size: ``Optional[int]``
        :param mtime: The modification time in epoch milliseconds, if
                      captured.
        :type mtime: ``Optional[int]``
        :param md5sum: The hex MD5 digest of the file content, if captured.
        :type md5sum: ``Optional[str]``
        :param permissions: The permission bits as three octal digits, if
                            captured.
        :type permissions: ``Optional[str]``
        :param content_type: The detected content type of a file.
        :type content_type: ``ContentType``
        :param content: Parsed structured content, if captured.
        :type content: ``Optional[StructuredContent]``
        """
        #: Relative path of this entry
        self.path: str = path
        #: ``True`` for directories
        self.is_dir: bool = is_dir
        #: File size in bytes
        self.size: Optional[int] = size
        #: Modification time in epoch milliseconds
        self.mtime: Optional[int] = mtime
        #: MD5 checksum as a hex string
        self.md5: Optional[str] = md5sum
        #: Permission bits as an octal string
        self.permissions: Optional[str] = permissions
        #: Detected content type
        self.content_type: ContentType = content_type
        #: Parsed structured content
        self.content: Optional[StructuredContent] = content

    @property
    def is_file(self) -> bool:
        """
        Return ``True`` if this entry is a file.

        :returns: ``True`` for files, ``False`` for directories.
        :rtype: ``bool``
        """
        return not self.is_dir

    def attribute(self, attribute: FileAttribute) -> Optional[Any]:
        """
        Return the captured value of ``attribute``, or ``None``.
        """
        return getattr(self, attribute.entry_field)

    def __str__(self):
        if self.is_dir:
            return f"dir {self.path}"
        values = ", ".join(
            f"{attr.description}={self.attribute(attr)}"
            for attr in FileAttribute
            if self.attribute(attr) is not None
        )
        return f"file {self.path} ({values})" if values else f"file {self.path}"

    def to_dict(self) -> Dict[str, Any]:
        """
        Return a dictionary representation of this ``Entry``.

        :rtype: ``Dict[str, Any]``
        """
        if self.is_dir:
            return {"path": self.path, "type": "directory"}
        return {
            "path": self.path,
            "type": "file",
            "size": self.size,
            "mtime": self.mtime,
            "md5": self.md5,
            "permissions": self.permissions,
            "content_type": self.content_type.value,
        }


class DirectoryCapture:
    """
    The captured contents of one aliased directory tree.
    """

    def __init__(self, alias: str, root: str, loaded: bool = False):
        #: The directory alias
        self.alias: str = alias
        #: Absolute root path ending with ``/``
        self.root: str = root
        #: Captured entries keyed by relative path
        self.entries: Dict[str, Entry] = {}
        #: ``True`` if this capture was restored from a snapshot file
        self.loaded: bool = loaded
        #: ``True`` once this directory has been captured or loaded
        self.captured: bool = loaded

    def __str__(self):
        return f"{self.alias}: {self.root} ({len(self.entries)} entries)"

    def full_path(self, rel_path: str) -> str:
        """Return the absolute path of the entry at ``rel_path``."""
        return self.root + rel_path


class TreeWalker:
    """
    Walk directory trees and build ``DirectoryCapture`` objects.
    """

    def __init__(
        self,
        config: SnapshotConfiguration,
        inspectors: Optional[InspectorManager] = None,
    ):
        """
        Initialise a new ``TreeWalker`` object.

        :param config: The capture configuration.
        :type config: ``SnapshotConfiguration``
        :param inspectors: An optional content inspector manager.
        :type inspectors: ``Optional[InspectorManager]``
        """
        self.config = config
        self.inspectors = inspectors or InspectorManager()

    def _gather(self, root: str) -> List[str]:
        """
        Return the relative paths below ``root``, directories first in
        each level, excluding hidden entries unless configured.
        """

        def _raise(err: OSError):
            raise err

        paths = []
        for dirpath, dirs, files in os.walk(root, onerror=_raise):
            if not self.config.support_hidden:
                dirs[:] = [d for d in dirs if not is_hidden(d)]
                files = [f for f in files if not is_hidden(f)]
            dirs.sort()
            rel_dir = os.path.relpath(dirpath, root).replace(os.sep, "/")
            rel_dir = "" if rel_dir == "." else rel_dir + "/"
            for name in dirs:
                paths.append(rel_dir + name + "/")
            for name in sorted(files):
                paths.append(rel_dir + name)
        return paths

    def _wanted(self, rules: AliasRules, rel_path: str) -> Set[FileAttribute]:
        """
        Return the attributes to capture for the file at ``rel_path``.
        """
        checked = rules.checked_attributes(rel_path)
        return {
            attr
            for attr in FileAttribute
            if getattr(self.config, attr.config_flag) or attr in checked
        }

    @staticmethod
    def _calculate_md5(file_path: str) -> str:
        """
        Calculate the MD5 checksum of a file.

        :param file_path: The path to the file to hash.
        :type file_path: ``str``
        :returns: The hex digest of the file content.
        :rtype: ``str``
        """
        hasher = md5(usedforsecurity=False)
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def _read_content(self, entry: Entry, full_path: str):
        if not content_check_enabled(entry.content_type, self.config):
            return
        with open(full_path, "rb") as f:
            source = f.read()
        try:
            entry.content = self.inspectors.parse(
                entry.content_type, source, self.config
            )
        except ContentParseError as err:
            _log_warn("Unable to parse content of '%s': %s", full_path, err)

    def _process_file(
        self,
        rel_path: str,
        full_path: str,
        path_stat: os.stat_result,
        wanted: Set[FileAttribute],
    ) -> Entry:
        entry = Entry(rel_path)
        if FileAttribute.SIZE in wanted:
            entry.size = path_stat.st_size
        if FileAttribute.MODIFICATION_TIME in wanted:
            entry.mtime = path_stat.st_mtime_ns // 1000000
        if FileAttribute.PERMISSIONS in wanted:
            entry.permissions = f"{stat.S_IMODE(path_stat.st_mode) & 0o777:03o}"
        entry.content_type = detect_content_type(Path(full_path), self.config)
        self._read_content(entry, full_path)
        return entry

    def walk_tree(
        self, alias: str, root: str, rules: Optional[AliasRules] = None
    ) -> DirectoryCapture:
        """
        Walk the directory tree at ``root`` and return its capture.

        :param alias: The directory alias.
        :type alias: ``str``
        :param root: The normalized root directory path.
        :type root: ``str``
        :param rules: The rules registered for ``alias`` in the capturing
                      snapshot. Only check rules are used, to force the
                      capture of attributes disabled in the configuration.
        :type rules: ``Optional[AliasRules]``
        :returns: The captured directory.
        :rtype: ``DirectoryCapture``
        :raises DirectoryNotFoundError: If ``root`` is not a directory.
        :raises FssnapSystemError: If the tree cannot be read.
        """
        rules = rules or AliasRules()
        if not os.path.isdir(root):
            raise DirectoryNotFoundError(root)

        _log_info("Capturing directory '%s' (%s)", alias, root)
        capture = DirectoryCapture(alias, root)

        try:
            to_visit = self._gather(root)
        except OSError as err:
            raise FssnapSystemError(f"Error reading directory tree {root}: {err}") from err

        total = len(to_visit)
        progress = ProgressFactory.get_progress(
            f"Capturing {alias}", quiet=self.config.quiet
        )
        start_time = datetime.now()
        if total:
            progress.start(total)

        hashes: Dict[str, Future] = {}
        with ThreadPoolExecutor(max_workers=self.config.hash_workers) as executor:
            try:
                for i, rel_path in enumerate(to_visit):
                    if total:
                        progress.progress(i, f"Scanning {rel_path}")
                    full_path = root + rel_path
                    if rel_path.endswith("/"):
                        capture.entries[rel_path] = Entry(rel_path, is_dir=True)
                        continue
                    try:
                        path_stat = os.stat(full_path)
                    except FileNotFoundError:
                        if os.path.islink(full_path):
                            _log_warn("Ignoring dangling symbolic link '%s'", full_path)
                            continue
                        raise
                    wanted = self._wanted(rules, rel_path)
                    entry = self._process_file(rel_path, full_path, path_stat, wanted)
                    capture.entries[rel_path] = entry
                    if FileAttribute.MD5 in wanted:
                        hashes[rel_path] = executor.submit(self._calculate_md5, full_path)

                for rel_path, future in hashes.items():
                    capture.entries[rel_path].md5 = future.result()
            except OSError as err:
                executor.shutdown(cancel_futures=True)
                if total:
                    progress.cancel("Error.")
                raise FssnapSystemError(
                    f"Error capturing directory {root}: {err}"
                ) from err
            except (KeyboardInterrupt, SystemExit):
                executor.shutdown(cancel_futures=True)
                if total:
                    progress.cancel("Quit!")
                raise

        end_time = datetime.now()
        if total:
            progress.end(f"Captured {total} paths in {end_time - start_time}")
        capture.captured = True
        _log_debug_scan(
            "Captured %d entries (%d hashed) from %s", total, len(hashes), root
        )
        return capture
