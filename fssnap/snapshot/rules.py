# Copyright Red Hat
#
# fssnap/snapshot/rules.py - File system snapshot comparison rules
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Skip and check rules that control how file system snapshots are compared.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Pattern, Set, Tuple
from enum import Enum
import logging
import re

from fssnap import (
    FSSNAP_SUBSYSTEM_RULES,
    InvalidArgumentError,
    InvalidRegexError,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_rules(msg, *args, **kwargs):
    """A wrapper for rules subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": FSSNAP_SUBSYSTEM_RULES}, **kwargs)


class FileAttribute(Enum):
    """
    File attributes that may be captured and compared. Members are listed
    in the order in which they are compared and reported.
    """

    MD5 = "MD5 checksum"
    SIZE = "Size"
    MODIFICATION_TIME = "Modification time"
    PERMISSIONS = "Permissions"

    @property
    def description(self) -> str:
        """
        The description used for this attribute in comparison reports.

        :rtype: ``str``
        """
        return self.value

    @property
    def config_flag(self) -> str:
        """
        The name of the ``SnapshotConfiguration`` flag that enables this
        attribute globally.

        :rtype: ``str``
        """
        return _ATTRIBUTE_CONFIG_FLAGS[self]

    @property
    def entry_field(self) -> str:
        """
        The name of the ``Entry`` field that holds this attribute.

        :rtype: ``str``
        """
        return _ATTRIBUTE_ENTRY_FIELDS[self]


_ATTRIBUTE_CONFIG_FLAGS = {
    FileAttribute.MD5: "check_md5",
    FileAttribute.SIZE: "check_size",
    FileAttribute.MODIFICATION_TIME: "check_modification_time",
    FileAttribute.PERMISSIONS: "check_permissions",
}

_ATTRIBUTE_ENTRY_FIELDS = {
    FileAttribute.MD5: "md5",
    FileAttribute.SIZE: "size",
    FileAttribute.MODIFICATION_TIME: "mtime",
    FileAttribute.PERMISSIONS: "permissions",
}


class RuleAction(Enum):
    """
    Rule actions for file attributes.
    """

    SKIP = "skip"
    CHECK = "check"


class MatchType(Enum):
    """
    How a content rule token is matched against a value.
    """

    #: Trimmed, case-insensitive equality
    EQUALS = "equals"
    #: Trimmed, case-insensitive substring
    CONTAINS = "contains"
    #: Regular expression matching the whole value
    MATCHES = "matches"


def compile_regex(pattern: str) -> Pattern:
    """
    Compile ``pattern``, converting compilation failures to
    ``InvalidRegexError``.

    :param pattern: The regular expression to compile.
    :type pattern: ``str``
    :returns: The compiled expression.
    :rtype: ``Pattern``
    """
    try:
        return re.compile(pattern)
    except re.error as err:
        raise InvalidRegexError(pattern, str(err)) from err


def check_token(kind: str, value: Optional[str]) -> str:
    """
    Validate that ``value`` is a non-empty string.

    :param kind: A description of the value for error messages.
    :param value: The value to check.
    :returns: ``value``
    :raises InvalidArgumentError: If ``value`` is ``None`` or empty.
    """
    if value is None or not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"Invalid {kind} '{value}'")
    return value


def check_attributes(attributes: Iterable) -> Tuple[FileAttribute, ...]:
    """
    Validate a sequence of file attributes, removing duplicates.

    :param attributes: Values that must be ``FileAttribute`` members.
    :returns: The attributes in the order given, without duplicates.
    :rtype: ``Tuple[FileAttribute, ...]``
    :raises InvalidArgumentError: If a value is not a ``FileAttribute``.
    """
    seen = []
    for attr in attributes:
        if not isinstance(attr, FileAttribute):
            names = ", ".join(f"FileAttribute.{a.name}" for a in FileAttribute)
            raise InvalidArgumentError(
                f"Invalid file attribute: {attr!r}. Please use one of {names}"
            )
        if attr not in seen:
            seen.append(attr)
    return tuple(seen)


def split_path(path: str) -> Tuple[str, str]:
    """
    Split a relative path into its directory part (with a trailing slash,
    or empty) and its final component.
    """
    path = path.rstrip("/")
    idx = path.rfind("/")
    if idx < 0:
        return "", path
    return path[: idx + 1], path[idx + 1 :]


class Matcher:
    """
    A compiled match type and token pair.
    """

    def __init__(self, token: str, match_type: MatchType):
        """
        Initialise a new ``Matcher``.

        :param token: The text, substring or regular expression to match.
        :type token: ``str``
        :param match_type: How ``token`` is matched.
        :type match_type: ``MatchType``
        """
        self.token = token
        self.match_type = match_type
        self._regex = compile_regex(token) if match_type == MatchType.MATCHES else None
        self._folded = token.strip().lower()

    def __repr__(self):
        return f"Matcher({self.token!r}, {self.match_type})"

    def matches(self, value: Optional[str]) -> bool:
        """
        Test ``value`` against this matcher.

        :param value: The value to test.
        :type value: ``Optional[str]``
        :returns: ``True`` if ``value`` matches.
        :rtype: ``bool``
        """
        if value is None:
            return False
        if self.match_type == MatchType.MATCHES:
            return self._regex.fullmatch(value) is not None
        if self.match_type == MatchType.CONTAINS:
            return self._folded in value.strip().lower()
        return self._folded == value.strip().lower()


class ContentRuleKind(Enum):
    """
    The kind of structured content item a content rule selects.
    """

    PROPERTY_KEY = "property_key"
    PROPERTY_VALUE = "property_value"
    INI_SECTION = "ini_section"
    INI_KEY = "ini_key"
    INI_VALUE = "ini_value"
    TEXT_LINE = "text_line"
    XML_ATTRIBUTE = "xml_attribute"
    XML_VALUE = "xml_value"


@dataclass
class ContentRule:
    """
    A rule skipping items of structured content that match a locator.
    """

    #: The kind of content item this rule selects
    kind: ContentRuleKind
    #: The token matched against item values
    token: str
    #: How ``token`` is matched
    match_type: MatchType
    #: The INI section a key or value rule is scoped to
    section: Optional[str] = None
    #: The XPath selecting candidate XML nodes
    xpath: Optional[str] = None
    #: The XML attribute compared by attribute rules
    attribute: Optional[str] = None
    #: Compiled matcher for ``token``
    matcher: Matcher = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self.matcher = Matcher(self.token, self.match_type)

    @property
    def locator(self) -> Tuple:
        """
        The identity of this rule, ignoring its match type.
        """
        return (self.kind, self.section, self.xpath, self.attribute, self.token)

    def matches(self, value: Optional[str]) -> bool:
        """Test ``value`` against this rule's token."""
        return self.matcher.matches(value)

    def to_dict(self) -> Dict[str, Optional[str]]:
        """
        Return a dictionary representation of this rule.

        :rtype: ``Dict[str, Optional[str]]``
        """
        return {
            "kind": self.kind.value,
            "token": self.token,
            "match_type": self.match_type.value,
            "section": self.section,
            "xpath": self.xpath,
            "attribute": self.attribute,
        }


@dataclass
class FileRule:
    """
    Attribute rules for a file, or for files whose name matches a regular
    expression.
    """

    #: Relative path of the file, or of its directory followed by a name regex
    path: str
    #: ``True`` if the final path component is a regular expression
    is_regex: bool = False
    #: Skip the whole file during comparison
    skip_entity: bool = False
    #: Attributes that are not compared
    skip: Set[FileAttribute] = field(default_factory=set)
    #: Attributes that are always captured and compared
    check: Set[FileAttribute] = field(default_factory=set)

    def __post_init__(self):
        self._dir, name = split_path(self.path)
        self._name_regex = compile_regex(name) if self.is_regex else None

    def matches(self, rel_path: str) -> bool:
        """
        Test whether this rule applies to the file at ``rel_path``.

        :param rel_path: A normalized relative file path.
        :type rel_path: ``str``
        :rtype: ``bool``
        """
        if not self.is_regex:
            return rel_path == self.path
        dir_part, name = split_path(rel_path)
        return dir_part == self._dir and self._name_regex.fullmatch(name) is not None

    def apply(self, action: RuleAction, attributes: Tuple[FileAttribute, ...]):
        """
        Merge a new rule into this one. The most recent rule wins for each
        attribute.

        :param action: Skip or check.
        :param attributes: The attributes affected, or an empty tuple for
                           the whole entity.
        """
        if action == RuleAction.SKIP:
            if not attributes:
                self.skip_entity = True
                return
            if FileAttribute.SIZE in attributes and FileAttribute.MD5 not in attributes:
                attributes = attributes + (FileAttribute.MD5,)
            for attr in attributes:
                self.skip.add(attr)
                self.check.discard(attr)
        else:
            self.skip_entity = False
            for attr in attributes or tuple(FileAttribute):
                self.check.add(attr)
                self.skip.discard(attr)


@dataclass
class DirectoryRule:
    """
    A rule skipping a directory, and everything below it.
    """

    #: Relative directory path ending with ``/``
    path: str
    #: ``True`` if the final path component is a regular expression
    is_regex: bool = False

    def __post_init__(self):
        self._dir, name = split_path(self.path)
        self._name_regex = compile_regex(name) if self.is_regex else None

    def matches(self, rel_dir: str) -> bool:
        """
        Test whether this rule skips the directory at ``rel_dir``.

        :param rel_dir: A normalized relative directory path ending with
                        ``/``.
        :type rel_dir: ``str``
        :rtype: ``bool``
        """
        if not self.is_regex:
            return rel_dir == self.path
        dir_part, name = split_path(rel_dir)
        return dir_part == self._dir and self._name_regex.search(name + "/") is not None


def _ancestors(rel_path: str) -> List[str]:
    """
    Return every directory path enclosing ``rel_path``, including
    ``rel_path`` itself if it is a directory.
    """
    parts = rel_path.split("/")
    if rel_path.endswith("/"):
        parts = parts[:-1]
        count = len(parts)
    else:
        count = len(parts) - 1
    return ["/".join(parts[: i + 1]) + "/" for i in range(count)]


class AliasRules:
    """
    All rules registered for one directory alias of a snapshot.
    """

    def __init__(self):
        self.file_rules: Dict[Tuple[str, bool], FileRule] = {}
        self.dir_rules: List[DirectoryRule] = []
        self.content_rules: Dict[str, Dict[Tuple, ContentRule]] = {}

    def __bool__(self):
        return bool(self.file_rules or self.dir_rules or self.content_rules)

    def add_directory_rule(self, path: str, is_regex: bool = False):
        """Add a directory skip rule, ignoring duplicates."""
        rule = DirectoryRule(path, is_regex=is_regex)
        if rule not in self.dir_rules:
            self.dir_rules.append(rule)

    def add_file_rule(
        self,
        path: str,
        is_regex: bool,
        action: RuleAction,
        attributes: Tuple[FileAttribute, ...],
    ) -> FileRule:
        """Add or merge a file rule and return the merged rule."""
        key = (path, is_regex)
        if key not in self.file_rules:
            self.file_rules[key] = FileRule(path, is_regex=is_regex)
        rule = self.file_rules[key]
        rule.apply(action, attributes)
        return rule

    def add_content_rule(self, path: str, rule: ContentRule):
        """Add a content rule for the file at ``path``, last write wins."""
        rules = self.content_rules.setdefault(path, {})
        old = rules.get(rule.locator)
        if old is not None and old.match_type != rule.match_type:
            _log_warn(
                "Replacing %s rule '%s' for '%s': match type changed from %s to %s",
                rule.kind.value,
                rule.token,
                path,
                old.match_type.value,
                rule.match_type.value,
            )
        rules[rule.locator] = rule

    def matching_file_rules(self, rel_path: str) -> List[FileRule]:
        """Return the file rules that apply to ``rel_path``."""
        return [r for r in self.file_rules.values() if r.matches(rel_path)]

    def is_dir_skipped(self, rel_path: str) -> bool:
        """
        Return ``True`` if ``rel_path`` is, or lies within, a skipped
        directory.
        """
        if not self.dir_rules:
            return False
        for ancestor in _ancestors(rel_path):
            if any(rule.matches(ancestor) for rule in self.dir_rules):
                return True
        return False

    def checked_attributes(self, rel_path: str) -> Set[FileAttribute]:
        """Return attributes with an explicit check rule for ``rel_path``."""
        checked = set()
        for rule in self.matching_file_rules(rel_path):
            checked |= rule.check
        return checked


_EMPTY_RULES = AliasRules()


class RuleStore:
    """
    Rules registered with a snapshot, indexed by directory alias.
    """

    def __init__(self):
        self._aliases: Dict[str, AliasRules] = {}

    def __iter__(self):
        return iter(self._aliases.items())

    def for_alias(self, alias: str) -> AliasRules:
        """
        Return the rules for ``alias``. The result must not be modified
        unless the alias has rules registered.
        """
        return self._aliases.get(alias, _EMPTY_RULES)

    def _rules(self, alias: str) -> AliasRules:
        return self._aliases.setdefault(alias, AliasRules())

    def skip_directory(self, alias: str, path: str, is_regex: bool = False):
        """Register a directory skip rule."""
        _log_debug_rules(
            "Skipping directory '%s' (regex=%s) in alias '%s'", path, is_regex, alias
        )
        self._rules(alias).add_directory_rule(path, is_regex=is_regex)

    def file_rule(
        self,
        alias: str,
        path: str,
        action: RuleAction,
        attributes: Iterable = (),
        is_regex: bool = False,
    ):
        """Register a file skip or check rule."""
        attributes = check_attributes(attributes)
        rule = self._rules(alias).add_file_rule(path, is_regex, action, attributes)
        _log_debug_rules(
            "File rule for '%s' in alias '%s': %s %s -> skip_entity=%s skip=%s check=%s",
            path,
            alias,
            action.value,
            ",".join(a.name for a in attributes) or "entity",
            rule.skip_entity,
            ",".join(sorted(a.name for a in rule.skip)),
            ",".join(sorted(a.name for a in rule.check)),
        )

    def restore_file_rule(self, alias: str, rule: FileRule):
        """Register a previously saved file rule, replacing any existing one."""
        self._rules(alias).file_rules[(rule.path, rule.is_regex)] = rule

    def content_rule(self, alias: str, path: str, rule: ContentRule):
        """Register a structured content rule."""
        _log_debug_rules("Content rule for '%s' in alias '%s': %s", path, alias, rule)
        self._rules(alias).add_content_rule(path, rule)

    def drop_alias(self, alias: str):
        """Remove all rules registered for ``alias``."""
        self._aliases.pop(alias, None)

    def clear(self):
        """Remove all rules."""
        self._aliases.clear()


class RuleUnion:
    """
    The union of the rules of two snapshots for one directory alias, as
    applied during comparison.
    """

    def __init__(self, first: AliasRules, second: AliasRules):
        self.sides = (first, second)

    def is_dir_skipped(self, rel_path: str) -> bool:
        """Return ``True`` if either side skips ``rel_path`` by directory."""
        return any(side.is_dir_skipped(rel_path) for side in self.sides)

    def is_entity_skipped(self, rel_path: str) -> bool:
        """Return ``True`` if either side skips the file at ``rel_path``."""
        if self.is_dir_skipped(rel_path):
            return True
        return any(
            rule.skip_entity
            for side in self.sides
            for rule in side.matching_file_rules(rel_path)
        )

    def attribute_action(
        self, rel_path: str, attribute: FileAttribute
    ) -> Optional[RuleAction]:
        """
        Return the rule action for ``attribute`` of ``rel_path``: a check
        from either side beats a skip from either side. Returns ``None``
        when no rule names the attribute.
        """
        action = None
        for side in self.sides:
            for rule in side.matching_file_rules(rel_path):
                if attribute in rule.check:
                    return RuleAction.CHECK
                if attribute in rule.skip:
                    action = RuleAction.SKIP
        return action

    def content_rules(self, rel_path: str) -> List[ContentRule]:
        """
        Return the content rules of both sides for ``rel_path`` without
        duplicates.
        """
        merged: Dict[Tuple, ContentRule] = {}
        for side in self.sides:
            for locator, rule in side.content_rules.get(rel_path, {}).items():
                merged.setdefault(locator + (rule.match_type,), rule)
        return list(merged.values())
