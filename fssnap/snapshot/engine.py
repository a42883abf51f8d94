# Copyright Red Hat
#
# fssnap/snapshot/engine.py - File system snapshot comparison engine
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
File system snapshot comparison engine
"""
from typing import Any, Dict, Iterator, List, Optional, TYPE_CHECKING
from enum import Enum
import logging
import json

from fssnap import (
    FSSNAP_SUBSYSTEM_COMPARE,
    InvalidArgumentError,
    SameSnapshotNameError,
    SnapshotStateError,
)

from .inspectors import InspectorManager
from .rules import FileAttribute, RuleAction, RuleUnion
from .treewalk import DirectoryCapture, Entry

if TYPE_CHECKING:
    from .snapshot import FileSystemSnapshot

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_compare(msg, *args, **kwargs):
    """A wrapper for compare subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": FSSNAP_SUBSYSTEM_COMPARE}, **kwargs)


class DifferenceType(Enum):
    """
    Kinds of difference found when comparing two snapshots.
    """

    DIRECTORY_ONLY_IN_ONE = "directory_only_in_one"
    FILE_ONLY_IN_ONE = "file_only_in_one"
    DIFFERENT_FILES = "different_files"


class Discrepancy:
    """
    A single difference between two snapshots.
    """

    def __init__(
        self,
        diff_type: DifferenceType,
        alias: str,
        rel_path: str,
        first_snapshot: str,
        second_snapshot: str,
        first_path: Optional[str] = None,
        second_path: Optional[str] = None,
    ):
        """
        Initialise a new ``Discrepancy`` object.

        :param diff_type: The kind of difference.
        :type diff_type: ``DifferenceType``
        :param alias: The directory alias the entity belongs to.
        :type alias: ``str``
        :param rel_path: The entity path relative to the alias root.
        :type rel_path: ``str``
        :param first_snapshot: The name of the first snapshot.
        :type first_snapshot: ``str``
        :param second_snapshot: The name of the second snapshot.
        :type second_snapshot: ``str``
        :param first_path: The absolute path in the first snapshot or
                           ``None`` if absent there.
        :type first_path: ``Optional[str]``
        :param second_path: The absolute path in the second snapshot or
                            ``None`` if absent there.
        :type second_path: ``Optional[str]``
        """
        self.diff_type = diff_type
        self.alias = alias
        self.rel_path = rel_path
        self.first_snapshot = first_snapshot
        self.second_snapshot = second_snapshot
        self.first_path = first_path
        self.second_path = second_path
        #: Description to value for the first snapshot
        self.first_values: Dict[str, str] = {}
        #: Description to value for the second snapshot
        self.second_values: Dict[str, str] = {}

    @property
    def present_in(self) -> Optional[str]:
        """
        The name of the snapshot holding an entity that is missing from the
        other snapshot, or ``None`` for ``DIFFERENT_FILES``.
        """
        if self.diff_type == DifferenceType.DIFFERENT_FILES:
            return None
        return self.first_snapshot if self.first_path else self.second_snapshot

    @property
    def path(self) -> str:
        """The absolute path of the entity, preferring the first snapshot."""
        return self.first_path or self.second_path

    def add_difference(self, description: str, first: str, second: str):
        """
        Record a differing value. A repeated description gets a numeric
        suffix.
        """
        key = description
        count = 2
        while key in self.first_values:
            key = f"{description} ({count})"
            count += 1
        self.first_values[key] = first
        self.second_values[key] = second

    def has_differences(self) -> bool:
        """Return ``True`` if any differing values were recorded."""
        return bool(self.first_values)

    def description_lines(self) -> List[str]:
        """Return one rendered line per differing value."""
        return [
            f"\t{desc}: {self.first_values[desc]} vs {self.second_values[desc]}"
            for desc in self.first_values
        ]

    def __str__(self):
        if self.diff_type == DifferenceType.FILE_ONLY_IN_ONE:
            return f"File is present in [{self.present_in}] snapshot only: {self.path}"
        if self.diff_type == DifferenceType.DIRECTORY_ONLY_IN_ONE:
            return (
                f"Directory is present in [{self.present_in}] snapshot only: "
                f"{self.path}"
            )
        header = (
            f'Files are different in [{self.first_snapshot}] and '
            f'[{self.second_snapshot}] snapshots: "{self.first_path}"'
        )
        return "\n".join([header] + self.description_lines())

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``Discrepancy`` into a dictionary representation
        suitable for encoding as JSON.

        :rtype: ``Dict[str, Any]``
        """
        out = {
            "diff_type": self.diff_type.value,
            "alias": self.alias,
            "path": self.rel_path,
            "first_snapshot": self.first_snapshot,
            "second_snapshot": self.second_snapshot,
            "first_path": self.first_path,
            "second_path": self.second_path,
        }
        if self.diff_type == DifferenceType.DIFFERENT_FILES:
            out["differences"] = [
                {
                    "description": desc,
                    "first": self.first_values[desc],
                    "second": self.second_values[desc],
                }
                for desc in self.first_values
            ]
        return out


class FileSystemEqualityState:
    """
    The ordered list of differences found when comparing two snapshots.
    """

    def __init__(self, first_snapshot: str, second_snapshot: str):
        self.first_snapshot = first_snapshot
        self.second_snapshot = second_snapshot
        self._differences: List[Discrepancy] = []

    def __iter__(self) -> Iterator[Discrepancy]:
        return iter(self._differences)

    def __len__(self):
        return len(self._differences)

    def __getitem__(self, index: int) -> Discrepancy:
        return self._differences[index]

    @property
    def differences(self) -> List[Discrepancy]:
        """The recorded differences in report order."""
        return list(self._differences)

    @property
    def equal(self) -> bool:
        """``True`` if no differences were found."""
        return not self._differences

    def add_difference(self, discrepancy: Discrepancy):
        """Append a difference to this report."""
        self._differences.append(discrepancy)

    def _only_in(self, snapshot_name: str, diff_type: DifferenceType) -> List[str]:
        return [
            diff.path
            for diff in self._differences
            if diff.diff_type == diff_type and diff.present_in == snapshot_name
        ]

    def directories_only_in(self, snapshot_name: str) -> List[str]:
        """
        Return the absolute paths of directories present only in
        ``snapshot_name``.
        """
        return self._only_in(snapshot_name, DifferenceType.DIRECTORY_ONLY_IN_ONE)

    def files_only_in(self, snapshot_name: str) -> List[str]:
        """
        Return the absolute paths of files present only in ``snapshot_name``.
        """
        return self._only_in(snapshot_name, DifferenceType.FILE_ONLY_IN_ONE)

    def different_files(self) -> List[str]:
        """
        Return one multi-line description per file that differs. The first
        line is the quoted path in the first snapshot followed by a colon.
        """
        return [
            "\n".join([f'"{diff.first_path}":'] + diff.description_lines())
            for diff in self._differences
            if diff.diff_type == DifferenceType.DIFFERENT_FILES
        ]

    def __str__(self):
        if not self._differences:
            return (
                f"Snapshots [{self.first_snapshot}] and [{self.second_snapshot}] "
                "are equal"
            )
        lines = [
            f"Comparing [{self.first_snapshot}] and [{self.second_snapshot}] "
            "produced the following unexpected differences:"
        ]
        lines.extend(str(diff) for diff in self._differences)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this report into a dictionary representation suitable for
        encoding as JSON.

        :rtype: ``Dict[str, Any]``
        """
        return {
            "first_snapshot": self.first_snapshot,
            "second_snapshot": self.second_snapshot,
            "differences": [diff.to_dict() for diff in self._differences],
        }

    def json(self, pretty: bool = False) -> str:
        """
        Return a JSON representation of this report.

        :param pretty: Indent JSON to be human readable.
        :type pretty: ``bool``
        :rtype: ``str``
        """
        return json.dumps(self.to_dict(), indent=4 if pretty else None)


class Comparator:
    """
    Compare two captured snapshots under the union of their rules.
    """

    def __init__(self, inspectors: Optional[InspectorManager] = None):
        self.inspectors = inspectors or InspectorManager()

    @staticmethod
    def check_comparable(first: "FileSystemSnapshot", second: "FileSystemSnapshot"):
        """
        Validate that ``first`` and ``second`` can be compared.

        :raises InvalidArgumentError: If ``second`` is ``None``.
        :raises SameSnapshotNameError: If both snapshots have the same name.
        :raises SnapshotStateError: If a snapshot was not captured or loaded.
        """
        if second is None:
            raise InvalidArgumentError("Cannot compare with a 'None' snapshot")
        if first.name == second.name:
            raise SameSnapshotNameError(first.name)
        for snap in (first, second):
            if not snap.is_captured:
                raise SnapshotStateError(
                    "You are trying to compare snapshots but "
                    f"[{snap.name}] snapshot is still not created"
                )

    def compare(
        self, first: "FileSystemSnapshot", second: "FileSystemSnapshot"
    ) -> FileSystemEqualityState:
        """
        Compare two snapshots.

        :param first: The first snapshot.
        :type first: ``FileSystemSnapshot``
        :param second: The second snapshot.
        :type second: ``FileSystemSnapshot``
        :returns: The comparison report, possibly empty.
        :rtype: ``FileSystemEqualityState``
        """
        self.check_comparable(first, second)
        _log_info("Comparing snapshots [%s] and [%s]", first.name, second.name)

        state = FileSystemEqualityState(first.name, second.name)
        first_dirs = first.directories
        second_dirs = second.directories

        for alias in sorted(set(first_dirs) | set(second_dirs)):
            this_dir = first_dirs.get(alias)
            that_dir = second_dirs.get(alias)
            if this_dir is None or that_dir is None:
                _log_debug_compare("Directory alias '%s' is in one snapshot only", alias)
                state.add_difference(
                    Discrepancy(
                        DifferenceType.DIRECTORY_ONLY_IN_ONE,
                        alias,
                        "",
                        first.name,
                        second.name,
                        this_dir.root if this_dir else None,
                        that_dir.root if that_dir else None,
                    )
                )
                continue
            union = RuleUnion(
                first.rules.for_alias(alias), second.rules.for_alias(alias)
            )
            self._compare_directory(first, second, this_dir, that_dir, union, state)

        if state.equal:
            _log_debug_compare(
                "Successful verification of [%s] and [%s]", first.name, second.name
            )
        else:
            _log_debug_compare(
                "Found %d differences between [%s] and [%s]",
                len(state),
                first.name,
                second.name,
            )
        return state

    def _compare_directory(
        self,
        first: "FileSystemSnapshot",
        second: "FileSystemSnapshot",
        this_dir: DirectoryCapture,
        that_dir: DirectoryCapture,
        union: RuleUnion,
        state: FileSystemEqualityState,
    ):
        # pylint: disable=too-many-arguments
        reported_dirs: List[str] = []
        for rel_path in sorted(set(this_dir.entries) | set(that_dir.entries)):
            if any(rel_path.startswith(d) for d in reported_dirs):
                continue
            if union.is_dir_skipped(rel_path):
                continue

            this_entry = this_dir.entries.get(rel_path)
            that_entry = that_dir.entries.get(rel_path)

            if this_entry is not None and that_entry is not None:
                if this_entry.is_file:
                    if union.is_entity_skipped(rel_path):
                        _log_debug_compare("Skipping file '%s'", rel_path)
                        continue
                    self._compare_files(
                        first, second, this_dir, that_dir, this_entry, that_entry, union, state
                    )
                continue

            entry = this_entry or that_entry
            if entry.is_file and union.is_entity_skipped(rel_path):
                _log_debug_compare("Skipping file '%s'", rel_path)
                continue
            if entry.is_dir:
                reported_dirs.append(rel_path)
                diff_type = DifferenceType.DIRECTORY_ONLY_IN_ONE
            else:
                diff_type = DifferenceType.FILE_ONLY_IN_ONE
            state.add_difference(
                Discrepancy(
                    diff_type,
                    this_dir.alias,
                    rel_path,
                    first.name,
                    second.name,
                    this_dir.full_path(rel_path) if this_entry else None,
                    that_dir.full_path(rel_path) if that_entry else None,
                )
            )

    def _compare_files(
        self,
        first: "FileSystemSnapshot",
        second: "FileSystemSnapshot",
        this_dir: DirectoryCapture,
        that_dir: DirectoryCapture,
        this_entry: Entry,
        that_entry: Entry,
        union: RuleUnion,
        state: FileSystemEqualityState,
    ):
        # pylint: disable=too-many-arguments
        rel_path = this_entry.path
        discrepancy = Discrepancy(
            DifferenceType.DIFFERENT_FILES,
            this_dir.alias,
            rel_path,
            first.name,
            second.name,
            this_dir.full_path(rel_path),
            that_dir.full_path(rel_path),
        )

        same_content = (
            this_entry.content is not None
            and that_entry.content is not None
            and this_entry.content.content_type == that_entry.content.content_type
        )

        for attr in FileAttribute:
            if same_content and attr in (FileAttribute.MD5, FileAttribute.SIZE):
                continue
            action = union.attribute_action(rel_path, attr)
            if action == RuleAction.SKIP:
                continue
            if action is None and not (
                getattr(first.configuration, attr.config_flag)
                and getattr(second.configuration, attr.config_flag)
            ):
                continue
            this_value = this_entry.attribute(attr)
            that_value = that_entry.attribute(attr)
            if this_value != that_value:
                discrepancy.add_difference(
                    attr.description, str(this_value), str(that_value)
                )

        if same_content:
            for desc, this_value, that_value in self.inspectors.diff(
                this_entry.content, that_entry.content, union.content_rules(rel_path)
            ):
                discrepancy.add_difference(desc, this_value, that_value)

        if discrepancy.has_differences():
            state.add_difference(discrepancy)
        else:
            _log_debug_compare("Same files: %s", rel_path)
