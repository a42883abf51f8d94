# Copyright Red Hat
#
# fssnap/snapshot/snapshot.py - File system snapshots
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
The public file system snapshot interface.

A ``FileSystemSnapshot`` records the structure and content fingerprint of
one or more aliased directory trees. Two snapshots are compared with
``FileSystemSnapshot.compare()``, which raises ``FileSystemSnapshotError``
carrying a report of every difference that is not suppressed by the skip
rules registered with either snapshot.
"""
from typing import Any, Dict, Optional
from datetime import datetime
import logging
import json
import time
import os

from lxml import etree

from fssnap import (
    DuplicateAliasError,
    FileSystemSnapshotError,
    InvalidArgumentError,
    NoSuchDirectoryAliasError,
)

from .engine import Comparator
from .inspectors import InspectorManager
from .options import SnapshotConfiguration
from .persist import load_snapshot, save_snapshot
from .rules import (
    ContentRule,
    ContentRuleKind,
    FileAttribute,
    MatchType,
    RuleAction,
    RuleStore,
    check_token,
)
from .treewalk import DirectoryCapture, TreeWalker, normalize_root

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Snapshot property names
SNAPSHOT_NAME = "SnapshotName"
SNAPSHOT_TIME = "Time"
SNAPSHOT_DIRECTORIES = "Directories"
SNAPSHOT_RULES = "Rules"
SNAPSHOT_ENTRIES = "Entries"


def _check_name(name: Optional[str]) -> str:
    if name is None or not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError(f"Invalid snapshot name '{name}'")
    return name


class FileSystemSnapshot:
    """
    A named snapshot of a set of aliased directory trees.
    """

    def __init__(
        self, name: str, configuration: Optional[SnapshotConfiguration] = None
    ):
        """
        Initialise a new, empty, ``FileSystemSnapshot``.

        :param name: The snapshot name.
        :type name: ``str``
        :param configuration: The configuration used to capture and compare
                              this snapshot. Defaults to
                              ``SnapshotConfiguration()``.
        :type configuration: ``Optional[SnapshotConfiguration]``
        :raises InvalidArgumentError: If ``name`` is ``None`` or empty.
        """
        self._name = _check_name(name)
        #: The configuration in effect for this snapshot
        self.configuration: SnapshotConfiguration = (
            configuration or SnapshotConfiguration()
        )
        #: Registered directories by alias
        self.directories: Dict[str, DirectoryCapture] = {}
        #: Skip and check rules registered with this snapshot
        self.rules: RuleStore = RuleStore()
        #: Capture time in epoch milliseconds, or -1
        self.timestamp: int = -1
        self._inspectors = InspectorManager()
        self.properties = PropertiesRules(self)
        self.ini = IniRules(self)
        self.text = TextRules(self)
        self.xml = XmlRules(self)

    def __str__(self):
        """
        Return a human readable string representation of this snapshot.

        :returns: A human readable string.
        :rtype: ``str``
        """
        when = (
            str(datetime.fromtimestamp(self.timestamp / 1000))
            if self.timestamp >= 0
            else "not captured"
        )
        out = f"{SNAPSHOT_NAME}:   {self.name}\n{SNAPSHOT_TIME}:           {when}\n"
        out += f"{SNAPSHOT_DIRECTORIES}:"
        for capture in self.directories.values():
            out += f"\n  {capture.alias}: {capture.root}"
            if capture.captured:
                out += f" ({len(capture.entries)} entries)"
        rules = [
            (alias, rules) for alias, rules in self.rules if alias in self.directories
        ]
        if rules:
            out += f"\n{SNAPSHOT_RULES}:"
            for alias, alias_rules in rules:
                for dir_rule in alias_rules.dir_rules:
                    regex = " (regex)" if dir_rule.is_regex else ""
                    out += f"\n  {alias}: skip directory {dir_rule.path}{regex}"
                for file_rule in alias_rules.file_rules.values():
                    out += f"\n  {alias}: {_describe_file_rule(file_rule)}"
                for path, content_rules in alias_rules.content_rules.items():
                    for rule in content_rules.values():
                        out += (
                            f"\n  {alias}: skip {rule.kind.value} "
                            f"{rule.match_type.value} '{rule.token}' in {path}"
                        )
        return out

    def to_dict(self) -> Dict[str, Any]:
        """
        Return a dictionary representation of this snapshot.

        :rtype: ``Dict[str, Any]``
        """
        return {
            SNAPSHOT_NAME: self.name,
            SNAPSHOT_TIME: self.timestamp,
            SNAPSHOT_DIRECTORIES: {
                capture.alias: {
                    "path": capture.root,
                    SNAPSHOT_ENTRIES: len(capture.entries),
                }
                for capture in self.directories.values()
            },
        }

    def json(self, pretty: bool = False) -> str:
        """
        Return a string representation of this snapshot in JSON notation.
        """
        return json.dumps(self.to_dict(), indent=4 if pretty else None)

    @property
    def name(self) -> str:
        """The name of this snapshot."""
        return self._name

    @property
    def is_captured(self) -> bool:
        """
        ``True`` if every registered directory of this snapshot has been
        captured or loaded.
        """
        if self.timestamp < 0:
            return False
        return all(capture.captured for capture in self.directories.values())

    def new_snapshot(self, name: str) -> "FileSystemSnapshot":
        """
        Return a new, uncaptured, snapshot named ``name`` with the same
        directory registrations and configuration as this snapshot. Rules
        are not copied.

        :param name: The name of the new snapshot.
        :type name: ``str``
        :rtype: ``FileSystemSnapshot``
        """
        snapshot = FileSystemSnapshot(name, self.configuration)
        for capture in self.directories.values():
            snapshot.add_directory(capture.alias, capture.root)
        return snapshot

    def add_directory(self, alias: str, path: str):
        """
        Register the directory at ``path`` under ``alias``.

        :param alias: The directory alias used to pair trees of two
                      snapshots.
        :type alias: ``str``
        :param path: The directory path.
        :type path: ``str``
        :raises DuplicateAliasError: If ``alias`` is already registered.
        :raises InvalidArgumentError: If ``alias`` or ``path`` is empty.
        """
        check_token("directory alias", alias)
        check_token("directory path", path)
        if alias in self.directories:
            raise DuplicateAliasError(alias, self.name)
        root = normalize_root(path)
        _log_debug("Adding directory '%s' (%s) to snapshot [%s]", alias, root, self.name)
        self.directories[alias] = DirectoryCapture(alias, root)

    def _capture_for(self, alias: str) -> DirectoryCapture:
        if alias not in self.directories:
            raise NoSuchDirectoryAliasError(alias)
        return self.directories[alias]

    def _relative_path(self, alias: str, path: str, kind: str = "file path") -> str:
        """
        Return ``path`` relative to the root of ``alias``.
        """
        check_token(kind, path)
        capture = self._capture_for(alias)
        path = path.strip().replace(os.sep, "/")
        if path.startswith(capture.root):
            path = path[len(capture.root) :]
        elif path + "/" == capture.root:
            path = ""
        return path.lstrip("/")

    def _relative_dir(self, alias: str, path: str) -> str:
        path = self._relative_path(alias, path, "directory path")
        path = path.rstrip("/")
        if not path:
            raise InvalidArgumentError(
                f"Cannot skip the root directory of alias '{alias}'"
            )
        return path + "/"

    def skip_directory(self, alias: str, path: str):
        """
        Skip the directory at ``path``, and everything below it, when
        comparing.

        :param alias: The directory alias.
        :type alias: ``str``
        :param path: The directory path, relative to the alias root or
                     absolute below it.
        :type path: ``str``
        """
        self.rules.skip_directory(alias, self._relative_dir(alias, path))

    def skip_directory_by_regex(self, alias: str, path: str):
        """
        Skip directories whose name matches the regular expression in the
        last component of ``path``. The leading components are literal.

        :param alias: The directory alias.
        :type alias: ``str``
        :param path: The directory path ending in a regular expression.
        :type path: ``str``
        :raises InvalidRegexError: If the expression is invalid.
        """
        self.rules.skip_directory(alias, self._relative_dir(alias, path), is_regex=True)

    def skip_file(self, alias: str, path: str, *attributes: FileAttribute):
        """
        Skip ``attributes`` of the file at ``path`` when comparing, or the
        whole file if no attributes are given.

        Skipping ``FileAttribute.SIZE`` also skips ``FileAttribute.MD5``.

        :param alias: The directory alias.
        :type alias: ``str``
        :param path: The file path.
        :type path: ``str``
        :param attributes: The attributes to skip.
        :type attributes: ``FileAttribute``
        """
        rel_path = self._relative_path(alias, path)
        self.rules.file_rule(alias, rel_path, RuleAction.SKIP, attributes)

    def skip_file_by_regex(self, alias: str, path: str, *attributes: FileAttribute):
        """
        Like ``skip_file()``, for every file whose name fully matches the
        regular expression in the last component of ``path``.

        :raises InvalidRegexError: If the expression is invalid.
        """
        rel_path = self._relative_path(alias, path)
        self.rules.file_rule(
            alias, rel_path, RuleAction.SKIP, attributes, is_regex=True
        )

    def check_file(self, alias: str, path: str, *attributes: FileAttribute):
        """
        Always capture and compare ``attributes`` of the file at ``path``,
        or all attributes if none are given. A check overrides both the
        configuration and any skip rule for the same attribute.

        When both snapshots hold parsed structured content for the file the
        content comparison replaces the MD5 checksum and size comparisons,
        and a check of ``FileAttribute.MD5`` or ``FileAttribute.SIZE`` has
        no effect.

        :param alias: The directory alias.
        :type alias: ``str``
        :param path: The file path.
        :type path: ``str``
        :param attributes: The attributes to check.
        :type attributes: ``FileAttribute``
        """
        rel_path = self._relative_path(alias, path)
        self.rules.file_rule(alias, rel_path, RuleAction.CHECK, attributes)

    def add_content_rule(self, alias: str, path: str, rule: ContentRule):
        """
        Register a structured content rule for the file at ``path``.
        """
        rel_path = self._relative_path(alias, path)
        self.rules.content_rule(alias, rel_path, rule)

    def capture(self, configuration: Optional[SnapshotConfiguration] = None, **overrides):
        """
        Capture every registered directory that has not been captured from
        disk or loaded from a file. On a loaded snapshot only directories
        registered after loading are scanned.

        :param configuration: An optional configuration replacing the
                              configuration of this snapshot.
        :type configuration: ``Optional[SnapshotConfiguration]``
        :param overrides: Configuration fields to override.
        :raises DirectoryNotFoundError: If a registered directory does not
                                        exist.
        :raises FssnapSystemError: If a directory tree cannot be read.
        """
        config = configuration or self.configuration
        if overrides:
            config = config.with_overrides(**overrides)

        pending = [c for c in self.directories.values() if not c.loaded]
        if not pending:
            _log_debug("Nothing to capture for snapshot [%s]", self.name)
            return

        walker = TreeWalker(config, self._inspectors)
        captured = {}
        for capture in pending:
            captured[capture.alias] = walker.walk_tree(
                capture.alias, capture.root, self.rules.for_alias(capture.alias)
            )

        self.configuration = config
        self.directories.update(captured)
        self.timestamp = int(time.time() * 1000)
        _log_info(
            "Captured snapshot [%s] (%d directories)", self.name, len(captured)
        )

    def compare(self, other: "FileSystemSnapshot"):
        """
        Compare this snapshot with ``other``.

        :param other: The snapshot to compare with.
        :type other: ``FileSystemSnapshot``
        :raises InvalidArgumentError: If ``other`` is ``None``.
        :raises SameSnapshotNameError: If both snapshots share a name.
        :raises SnapshotStateError: If either snapshot was not captured.
        :raises FileSystemSnapshotError: If the snapshots differ.
        """
        state = Comparator(self._inspectors).compare(self, other)
        if not state.equal:
            raise FileSystemSnapshotError(state)

    def save_to_file(self, path: str):
        """
        Save this snapshot to ``path``. Names ending in ``.zst`` or ``.xz``
        are compressed.

        :param path: The destination file path.
        :type path: ``str``
        :raises FssnapSystemError: If the file cannot be written.
        """
        check_token("snapshot file path", path)
        save_snapshot(self, path)

    def load_from_file(self, new_name: Optional[str], path: str):
        """
        Replace the contents of this snapshot with the snapshot saved in
        ``path``.

        :param new_name: A new name for this snapshot, or ``None`` to keep
                         the current name.
        :type new_name: ``Optional[str]``
        :param path: The snapshot file path.
        :type path: ``str``
        :raises SnapshotParseError: If the file cannot be loaded.
        """
        check_token("snapshot file path", path)
        loaded = load_snapshot(path, self._inspectors)
        if new_name:
            self._name = _check_name(new_name)
        self._restore(loaded, path)

    @classmethod
    def from_file(cls, path: str) -> "FileSystemSnapshot":
        """
        Load a new snapshot from ``path``, named as it was when saved.

        :param path: The snapshot file path.
        :type path: ``str``
        :rtype: ``FileSystemSnapshot``
        :raises SnapshotParseError: If the file cannot be loaded.
        """
        check_token("snapshot file path", path)
        loaded = load_snapshot(path)
        snapshot = cls(loaded.name or os.path.basename(path))
        snapshot._restore(loaded, path)
        return snapshot

    def _restore(self, loaded, path: str):
        self.directories = loaded.directories
        self.rules = loaded.rules
        self.configuration = loaded.configuration
        self.timestamp = loaded.timestamp
        _log_info(
            "Loaded snapshot [%s] as [%s] from %s", loaded.name, self.name, path
        )


def _describe_file_rule(rule) -> str:
    what = "files matching" if rule.is_regex else "file"
    if rule.skip_entity:
        return f"skip {what} {rule.path}"
    parts = []
    if rule.skip:
        names = ", ".join(a.description for a in FileAttribute if a in rule.skip)
        parts.append(f"skip {names}")
    if rule.check:
        names = ", ".join(a.description for a in FileAttribute if a in rule.check)
        parts.append(f"check {names}")
    return f"{'; '.join(parts)} of {what} {rule.path}"


class _ContentRules:
    """
    Base class for the structured content rule interfaces of a snapshot.
    """

    def __init__(self, snapshot: FileSystemSnapshot):
        self._snapshot = snapshot

    def _add(
        self,
        alias: str,
        path: str,
        kind: ContentRuleKind,
        token: str,
        match_type: MatchType,
        **locator,
    ):
        rule = ContentRule(kind, token, match_type, **locator)
        self._snapshot.add_content_rule(alias, path, rule)


class PropertiesRules(_ContentRules):
    """
    Skip rules for Java-style properties files.
    """

    def _key(self, alias, path, key, match_type):
        check_token("property key", key)
        self._add(alias, path, ContentRuleKind.PROPERTY_KEY, key, match_type)

    def _value(self, alias, path, value, match_type):
        check_token("property value", value)
        self._add(alias, path, ContentRuleKind.PROPERTY_VALUE, value, match_type)

    def skip_property_by_key_equals_text(self, alias: str, path: str, key: str):
        """Skip properties whose key equals ``key``, ignoring case."""
        self._key(alias, path, key, MatchType.EQUALS)

    def skip_property_by_key_containing_text(self, alias: str, path: str, key: str):
        """Skip properties whose key contains ``key``, ignoring case."""
        self._key(alias, path, key, MatchType.CONTAINS)

    def skip_property_by_key_matching_text(self, alias: str, path: str, key: str):
        """Skip properties whose key fully matches the regular expression ``key``."""
        self._key(alias, path, key, MatchType.MATCHES)

    def skip_property_by_value_equals_text(self, alias: str, path: str, value: str):
        """Skip properties whose value equals ``value``, ignoring case."""
        self._value(alias, path, value, MatchType.EQUALS)

    def skip_property_by_value_containing_text(self, alias: str, path: str, value: str):
        """Skip properties whose value contains ``value``, ignoring case."""
        self._value(alias, path, value, MatchType.CONTAINS)

    def skip_property_by_value_matching_text(self, alias: str, path: str, value: str):
        """Skip properties whose value fully matches the regular expression ``value``."""
        self._value(alias, path, value, MatchType.MATCHES)


class IniRules(_ContentRules):
    """
    Skip rules for INI files. Sections are named by their full section
    line, for example ``[languages]``.
    """

    def _section(self, alias, path, section, match_type):
        check_token("INI section", section)
        self._add(alias, path, ContentRuleKind.INI_SECTION, section, match_type)

    def _scoped(self, alias, path, section, token, kind, match_type):
        # pylint: disable=too-many-arguments
        check_token("INI section", section)
        name = "INI key" if kind == ContentRuleKind.INI_KEY else "INI value"
        check_token(name, token)
        self._add(alias, path, kind, token, match_type, section=section.strip())

    def skip_ini_section_equals_text(self, alias: str, path: str, section: str):
        """Skip sections equal to ``section``, ignoring case."""
        self._section(alias, path, section, MatchType.EQUALS)

    def skip_ini_section_containing_text(self, alias: str, path: str, section: str):
        """Skip sections containing ``section``, ignoring case."""
        self._section(alias, path, section, MatchType.CONTAINS)

    def skip_ini_section_matching_text(self, alias: str, path: str, section: str):
        """Skip sections fully matching the regular expression ``section``."""
        self._section(alias, path, section, MatchType.MATCHES)

    def skip_ini_property_by_key_equals_text(
        self, alias: str, path: str, section: str, key: str
    ):
        """Skip keys of ``section`` equal to ``key``, ignoring case."""
        self._scoped(
            alias, path, section, key, ContentRuleKind.INI_KEY, MatchType.EQUALS
        )

    def skip_ini_property_by_key_containing_text(
        self, alias: str, path: str, section: str, key: str
    ):
        """Skip keys of ``section`` containing ``key``, ignoring case."""
        self._scoped(
            alias, path, section, key, ContentRuleKind.INI_KEY, MatchType.CONTAINS
        )

    def skip_ini_property_by_key_matching_text(
        self, alias: str, path: str, section: str, key: str
    ):
        """Skip keys of ``section`` fully matching the regular expression ``key``."""
        self._scoped(
            alias, path, section, key, ContentRuleKind.INI_KEY, MatchType.MATCHES
        )

    def skip_ini_property_by_value_equals_text(
        self, alias: str, path: str, section: str, value: str
    ):
        """Skip properties of ``section`` whose value equals ``value``."""
        self._scoped(
            alias, path, section, value, ContentRuleKind.INI_VALUE, MatchType.EQUALS
        )

    def skip_ini_property_by_value_containing_text(
        self, alias: str, path: str, section: str, value: str
    ):
        """Skip properties of ``section`` whose value contains ``value``."""
        self._scoped(
            alias, path, section, value, ContentRuleKind.INI_VALUE, MatchType.CONTAINS
        )

    def skip_ini_property_by_value_matching_text(
        self, alias: str, path: str, section: str, value: str
    ):
        """
        Skip properties of ``section`` whose value fully matches the
        regular expression ``value``.
        """
        self._scoped(
            alias, path, section, value, ContentRuleKind.INI_VALUE, MatchType.MATCHES
        )


class TextRules(_ContentRules):
    """
    Skip rules for plain text files.
    """

    def _line(self, alias, path, line, match_type):
        check_token("text line", line)
        self._add(alias, path, ContentRuleKind.TEXT_LINE, line, match_type)

    def skip_text_line_equals_text(self, alias: str, path: str, line: str):
        """Skip lines equal to ``line``, ignoring case and surrounding space."""
        self._line(alias, path, line, MatchType.EQUALS)

    def skip_text_line_containing_text(self, alias: str, path: str, line: str):
        """Skip lines containing ``line``, ignoring case."""
        self._line(alias, path, line, MatchType.CONTAINS)

    def skip_text_line_matching_text(self, alias: str, path: str, line: str):
        """Skip lines fully matching the regular expression ``line``."""
        self._line(alias, path, line, MatchType.MATCHES)


def _check_xpath(xpath: Optional[str]) -> str:
    check_token("XPath", xpath)
    try:
        etree.XPath(xpath)
    except etree.XPathSyntaxError as err:
        raise InvalidArgumentError(f"Invalid XPath '{xpath}': {err}") from err
    return xpath


class XmlRules(_ContentRules):
    """
    Skip rules for XML files. Nodes are selected with an XPath expression
    and removed from both documents when their attribute value or text
    matches.
    """

    def _attribute(self, alias, path, xpath, attribute, value, match_type):
        # pylint: disable=too-many-arguments
        _check_xpath(xpath)
        check_token("XML attribute", attribute)
        check_token("XML attribute value", value)
        self._add(
            alias,
            path,
            ContentRuleKind.XML_ATTRIBUTE,
            value,
            match_type,
            xpath=xpath,
            attribute=attribute,
        )

    def _value(self, alias, path, xpath, value, match_type):
        # pylint: disable=too-many-arguments
        _check_xpath(xpath)
        check_token("XML node value", value)
        self._add(
            alias, path, ContentRuleKind.XML_VALUE, value, match_type, xpath=xpath
        )

    def skip_node_by_attribute_value_equals_text(
        self, alias: str, path: str, xpath: str, attribute: str, value: str
    ):
        """
        Skip nodes selected by ``xpath`` whose ``attribute`` equals
        ``value``, ignoring case.
        """
        # pylint: disable=too-many-arguments
        self._attribute(alias, path, xpath, attribute, value, MatchType.EQUALS)

    def skip_node_by_attribute_value_containing_text(
        self, alias: str, path: str, xpath: str, attribute: str, value: str
    ):
        """
        Skip nodes selected by ``xpath`` whose ``attribute`` contains
        ``value``, ignoring case.
        """
        # pylint: disable=too-many-arguments
        self._attribute(alias, path, xpath, attribute, value, MatchType.CONTAINS)

    def skip_node_by_attribute_value_matching_text(
        self, alias: str, path: str, xpath: str, attribute: str, value: str
    ):
        """
        Skip nodes selected by ``xpath`` whose ``attribute`` fully matches
        the regular expression ``value``.
        """
        # pylint: disable=too-many-arguments
        self._attribute(alias, path, xpath, attribute, value, MatchType.MATCHES)

    def skip_node_by_value_equals_text(
        self, alias: str, path: str, xpath: str, value: str
    ):
        """Skip nodes selected by ``xpath`` whose text equals ``value``."""
        self._value(alias, path, xpath, value, MatchType.EQUALS)

    def skip_node_by_value_containing_text(
        self, alias: str, path: str, xpath: str, value: str
    ):
        """Skip nodes selected by ``xpath`` whose text contains ``value``."""
        self._value(alias, path, xpath, value, MatchType.CONTAINS)

    def skip_node_by_value_matching_text(
        self, alias: str, path: str, xpath: str, value: str
    ):
        """
        Skip nodes selected by ``xpath`` whose text fully matches the
        regular expression ``value``.
        """
        self._value(alias, path, xpath, value, MatchType.MATCHES)
