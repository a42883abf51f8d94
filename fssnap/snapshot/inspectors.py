# Copyright Red Hat
#
# fssnap/snapshot/inspectors.py - Structured content inspectors
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Content-aware parsing and comparison of properties, INI, text and XML
files.
"""
from typing import Dict, List, Optional, Tuple
from abc import ABC, abstractmethod
from copy import deepcopy
import logging
import difflib

from lxml import etree

from fssnap import FSSNAP_SUBSYSTEM_COMPARE, ContentParseError

from .filetypes import ContentType
from .options import SnapshotConfiguration
from .rules import ContentRule, ContentRuleKind
from .xmlnode import XmlNode, compare_trees

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_compare(msg, *args, **kwargs):
    """A wrapper for compare subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": FSSNAP_SUBSYSTEM_COMPARE}, **kwargs)


#: Section name for INI properties that appear before the first section
DEFAULT_INI_SECTION = "[FSSNAP_DEFAULT_INI_SECTION]"

#: A single content difference: (description, first value, second value)
ContentDifference = Tuple[str, str, str]

_YES = "YES"
_NO = "NO"


class StructuredContent:
    """
    Base class for parsed file content. The raw file data is kept so that
    content can be persisted and parsed again.
    """

    content_type = ContentType.REGULAR

    def __init__(self, source: bytes):
        self.source = source

    def __repr__(self):
        return f"{self.__class__.__name__}({len(self.source)} bytes)"


class PropertiesContent(StructuredContent):
    """Parsed Java-style properties."""

    content_type = ContentType.PROPERTIES

    def __init__(self, source: bytes, properties: Dict[str, str]):
        super().__init__(source)
        self.properties = properties


class IniContent(StructuredContent):
    """Parsed INI sections, keyed by the full section line."""

    content_type = ContentType.INI

    def __init__(self, source: bytes, sections: Dict[str, Dict[str, str]]):
        super().__init__(source)
        self.sections = sections


class TextContent(StructuredContent):
    """The lines of a plain text file."""

    content_type = ContentType.TEXT

    def __init__(self, source: bytes, lines: List[str]):
        super().__init__(source)
        self.lines = lines


class XmlContent(StructuredContent):
    """A parsed XML document."""

    content_type = ContentType.XML

    def __init__(self, source: bytes, root):
        super().__init__(source)
        self.root = root


def _decode(source: bytes) -> str:
    try:
        return source.decode("utf-8")
    except UnicodeDecodeError as err:
        raise ContentParseError(f"File is not valid UTF-8 text: {err}") from err


def _rules_of(rules: List[ContentRule], *kinds: ContentRuleKind) -> List[ContentRule]:
    return [rule for rule in rules if rule.kind in kinds]


class ContentInspectorBase(ABC):
    """
    Base class for structured content inspectors.
    """

    @abstractmethod
    def can_handle(self, content_type: ContentType) -> bool:
        """
        Return True if this inspector can handle the given content type.

        :param content_type: The detected content type of a file.
        :type content_type: ``ContentType``
        :rtype: ``bool``
        """

    @abstractmethod
    def parse(self, source: bytes, config: SnapshotConfiguration) -> StructuredContent:
        """
        Parse raw file data.

        :param source: The file data.
        :type source: ``bytes``
        :param config: The configuration in effect at capture time.
        :type config: ``SnapshotConfiguration``
        :returns: The parsed content.
        :rtype: ``StructuredContent``
        :raises ContentParseError: If ``source`` cannot be parsed.
        """

    @abstractmethod
    def diff(
        self,
        first: StructuredContent,
        second: StructuredContent,
        rules: List[ContentRule],
    ) -> List[ContentDifference]:
        """
        Compare two parsed files, ignoring items selected by ``rules``.

        :param first: Content from the first snapshot.
        :param second: Content from the second snapshot.
        :param rules: Content rules from both snapshots.
        :returns: A list of ``(description, first, second)`` tuples.
        :rtype: ``List[ContentDifference]``
        """

    @property
    def priority(self) -> int:
        """
        Priority for selection when multiple inspectors match (higher =
        preferred)
        """
        return 10


class PropertiesInspector(ContentInspectorBase):
    """
    Inspector for Java-style ``.properties`` files.
    """

    def can_handle(self, content_type: ContentType) -> bool:
        return content_type == ContentType.PROPERTIES

    @staticmethod
    def _logical_lines(text: str) -> List[str]:
        """
        Join continuation lines and drop blank lines and comments.
        """
        lines = []
        pending = None
        for raw in text.splitlines():
            line = raw.lstrip()
            if pending is None:
                if not line or line[0] in "#!":
                    continue
                pending = ""
            # An odd number of trailing backslashes continues the line.
            stripped = line.rstrip("\\")
            if (len(line) - len(stripped)) % 2 == 1:
                pending += line[:-1]
                continue
            lines.append(pending + line)
            pending = None
        if pending:
            lines.append(pending)
        return lines

    @staticmethod
    def _unescape(text: str) -> str:
        out = []
        i = 0
        while i < len(text):
            char = text[i]
            if char != "\\" or i + 1 >= len(text):
                out.append(char)
                i += 1
                continue
            nxt = text[i + 1]
            if nxt == "u" and i + 6 <= len(text):
                try:
                    out.append(chr(int(text[i + 2 : i + 6], 16)))
                    i += 6
                    continue
                except ValueError as err:
                    raise ContentParseError(
                        f"Malformed \\uxxxx encoding: {text[i:i + 6]}"
                    ) from err
            out.append({"t": "\t", "n": "\n", "r": "\r", "f": "\f"}.get(nxt, nxt))
            i += 2
        return "".join(out)

    def _split(self, line: str) -> Tuple[str, str]:
        key_end = len(line)
        i = 0
        while i < len(line):
            char = line[i]
            if char == "\\":
                i += 2
                continue
            if char in "=: \t\f":
                key_end = i
                break
            i += 1
        value_start = key_end
        while value_start < len(line) and line[value_start] in " \t\f":
            value_start += 1
        if value_start < len(line) and line[value_start] in "=:":
            value_start += 1
            while value_start < len(line) and line[value_start] in " \t\f":
                value_start += 1
        return (
            self._unescape(line[:key_end]),
            self._unescape(line[value_start:]),
        )

    def parse(self, source: bytes, config: SnapshotConfiguration) -> PropertiesContent:
        text = _decode(source)
        properties = {}
        for line in self._logical_lines(text):
            key, value = self._split(line)
            properties[key] = value
        return PropertiesContent(source, properties)

    def diff(self, first, second, rules):
        key_rules = _rules_of(rules, ContentRuleKind.PROPERTY_KEY)
        value_rules = _rules_of(rules, ContentRuleKind.PROPERTY_VALUE)

        def filtered(props: Dict[str, str]) -> Dict[str, str]:
            return {
                key: val
                for key, val in props.items()
                if not any(rule.matches(key) for rule in key_rules)
                and not any(rule.matches(val) for rule in value_rules)
            }

        this_props = filtered(first.properties)
        that_props = filtered(second.properties)

        diffs = []
        keys = list(this_props) + [k for k in that_props if k not in this_props]
        for key in keys:
            if key not in this_props:
                diffs.append((f"Presence of {key}", _NO, _YES))
            elif key not in that_props:
                diffs.append((f"Presence of {key}", _YES, _NO))
            else:
                this_value = this_props[key].strip()
                that_value = that_props[key].strip()
                if this_value.lower() != that_value.lower():
                    diffs.append(
                        (f"property key '{key}'", f"'{this_value}'", f"'{that_value}'")
                    )
        return diffs


class IniInspector(ContentInspectorBase):
    """
    Inspector for INI files using the configured section, comment and
    delimiter characters.
    """

    def can_handle(self, content_type: ContentType) -> bool:
        return content_type == ContentType.INI

    def parse(self, source: bytes, config: SnapshotConfiguration) -> IniContent:
        text = _decode(source)
        sections: Dict[str, Dict[str, str]] = {}
        current: Optional[Dict[str, str]] = None
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            if line[0] == config.ini_section_start:
                current = sections.setdefault(line, {})
                continue
            if line[0] == config.ini_comment_start:
                continue
            if current is None:
                _log_warn(
                    "No INI section is defined: line '%s' is stored in section %s",
                    line,
                    DEFAULT_INI_SECTION,
                )
                current = sections.setdefault(DEFAULT_INI_SECTION, {})
            idx = line.find(config.ini_delimiter)
            if idx < 1:
                current[line] = ""
            else:
                current[line[:idx].strip()] = line[idx + 1 :].strip()
        return IniContent(source, sections)

    def diff(self, first, second, rules):
        section_rules = _rules_of(rules, ContentRuleKind.INI_SECTION)
        key_rules = _rules_of(rules, ContentRuleKind.INI_KEY)
        value_rules = _rules_of(rules, ContentRuleKind.INI_VALUE)

        def section_match(scoped: List[ContentRule], section: str) -> List[ContentRule]:
            return [rule for rule in scoped if rule.section.strip() == section]

        def filtered(sections: Dict[str, Dict[str, str]]):
            result = {}
            for section, props in sections.items():
                if any(rule.matches(section) for rule in section_rules):
                    continue
                keys = section_match(key_rules, section)
                values = section_match(value_rules, section)
                result[section] = {
                    key: val
                    for key, val in props.items()
                    if not any(rule.matches(key) for rule in keys)
                    and not any(rule.matches(val) for rule in values)
                }
            return result

        this_map = filtered(first.sections)
        that_map = filtered(second.sections)

        diffs = []
        sections = list(this_map) + [s for s in that_map if s not in this_map]
        for section in sections:
            if section not in this_map:
                diffs.append((f"Presence of section {section}", _NO, _YES))
            elif section not in that_map:
                diffs.append((f"Presence of section {section}", _YES, _NO))
            else:
                diffs.extend(
                    self._diff_section(section, this_map[section], that_map[section])
                )
        return diffs

    @staticmethod
    def _diff_section(section, this_props, that_props) -> List[ContentDifference]:
        diffs = []
        keys = list(this_props) + [k for k in that_props if k not in this_props]
        for key in keys:
            if key not in this_props:
                diffs.append((f"Section {section}, presence of key '{key}'", _NO, _YES))
            elif key not in that_props:
                diffs.append((f"Section {section}, presence of key '{key}'", _YES, _NO))
            else:
                this_value = this_props[key].strip()
                that_value = that_props[key].strip()
                if this_value.lower() != that_value.lower():
                    diffs.append(
                        (
                            f"Section {section}, key '{key}'",
                            f"'{this_value}'",
                            f"'{that_value}'",
                        )
                    )
        return diffs


class TextInspector(ContentInspectorBase):
    """
    Inspector for plain text files compared line by line.
    """

    def can_handle(self, content_type: ContentType) -> bool:
        return content_type == ContentType.TEXT

    def parse(self, source: bytes, config: SnapshotConfiguration) -> TextContent:
        return TextContent(source, _decode(source).splitlines())

    def diff(self, first, second, rules):
        line_rules = _rules_of(rules, ContentRuleKind.TEXT_LINE)

        def numbered(lines: List[str]) -> List[Tuple[int, str]]:
            return [
                (lineno, line)
                for lineno, line in enumerate(lines, start=1)
                if not any(rule.matches(line) for rule in line_rules)
            ]

        this_lines = numbered(first.lines)
        that_lines = numbered(second.lines)
        matcher = difflib.SequenceMatcher(
            None,
            [line for _, line in this_lines],
            [line for _, line in that_lines],
            autojunk=False,
        )

        diffs = []
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == "equal":
                continue
            for lineno, line in this_lines[i1:i2]:
                diffs.append((f"Presence of line {lineno}: '{line}'", _YES, _NO))
            for lineno, line in that_lines[j1:j2]:
                diffs.append((f"Presence of line {lineno}: '{line}'", _NO, _YES))
        return diffs


class XmlInspector(ContentInspectorBase):
    """
    Inspector for XML documents. External entities and network access are
    disabled while parsing.
    """

    def can_handle(self, content_type: ContentType) -> bool:
        return content_type == ContentType.XML

    @staticmethod
    def _parser():
        return etree.XMLParser(
            resolve_entities=False,
            no_network=True,
            load_dtd=False,
            remove_comments=True,
            remove_pis=True,
        )

    def parse(self, source: bytes, config: SnapshotConfiguration) -> XmlContent:
        try:
            root = etree.fromstring(source, parser=self._parser())
        except (etree.XMLSyntaxError, ValueError) as err:
            raise ContentParseError(f"Error parsing XML content: {err}") from err
        return XmlContent(source, root)

    @staticmethod
    def _remove(element):
        """Remove ``element`` from its parent, keeping its tail text."""
        parent = element.getparent()
        if element.tail:
            previous = element.getprevious()
            if previous is not None:
                previous.tail = (previous.tail or "") + element.tail
            else:
                parent.text = (parent.text or "") + element.tail
        parent.remove(element)

    def _apply_rules(self, root, rules: List[ContentRule]):
        """
        Remove the elements selected by ``rules`` from a copy of ``root``.

        :returns: The pruned copy, or ``None`` if the root element itself
                  was removed.
        """
        root = deepcopy(root)
        for rule in rules:
            try:
                found = root.xpath(rule.xpath)
            except etree.XPathError as err:
                _log_warn("Error evaluating XPath '%s': %s", rule.xpath, err)
                continue
            if not isinstance(found, list):
                continue
            for element in found:
                if not isinstance(element, etree._Element):
                    continue
                if rule.kind == ContentRuleKind.XML_ATTRIBUTE:
                    value = element.get(rule.attribute)
                else:
                    value = "".join(element.itertext()).strip()
                if not rule.matches(value):
                    continue
                _log_debug_compare(
                    "Removing XML node %s matched by %s",
                    XmlNode(element).signature(""),
                    rule,
                )
                if element is root:
                    return None
                self._remove(element)
        return root

    def diff(self, first, second, rules):
        xml_rules = _rules_of(
            rules, ContentRuleKind.XML_ATTRIBUTE, ContentRuleKind.XML_VALUE
        )
        this_root = self._apply_rules(first.root, xml_rules)
        that_root = self._apply_rules(second.root, xml_rules)
        return compare_trees(
            XmlNode(this_root) if this_root is not None else None,
            XmlNode(that_root) if that_root is not None else None,
        )


class InspectorManager:
    """
    Manager for structured content inspectors.
    """

    def __init__(self):
        """
        Initialise a new ``InspectorManager`` instance.
        """
        self.inspectors: List[ContentInspectorBase] = []
        self._register_default_inspectors()

    def _register_default_inspectors(self):
        """
        Register built-in content inspectors.
        """
        self.register_inspector(XmlInspector())
        self.register_inspector(PropertiesInspector())
        self.register_inspector(IniInspector())
        self.register_inspector(TextInspector())

    def register_inspector(self, inspector: ContentInspectorBase):
        """
        Register a new content inspector.
        """
        self.inspectors.append(inspector)
        self.inspectors.sort(key=lambda i: i.priority, reverse=True)

    def get_inspector(self, content_type: ContentType) -> Optional[ContentInspectorBase]:
        """
        Get the inspector for a content type.

        :param content_type: The content type to find an inspector for.
        :type content_type: ``ContentType``
        :returns: An inspector or ``None`` if no inspector handles
                  ``content_type``.
        :rtype: ``Optional[ContentInspectorBase]``
        """
        for inspector in self.inspectors:
            if inspector.can_handle(content_type):
                return inspector
        return None

    def parse(
        self,
        content_type: ContentType,
        source: bytes,
        config: SnapshotConfiguration,
    ) -> Optional[StructuredContent]:
        """
        Parse ``source`` with the inspector for ``content_type``.

        :returns: The parsed content, or ``None`` if no inspector handles
                  ``content_type``.
        :raises ContentParseError: If the content cannot be parsed.
        """
        inspector = self.get_inspector(content_type)
        if inspector is None:
            return None
        return inspector.parse(source, config)

    def diff(
        self,
        first: StructuredContent,
        second: StructuredContent,
        rules: List[ContentRule],
    ) -> List[ContentDifference]:
        """
        Compare two parsed files of the same content type.

        :returns: A list of differences, empty if the files are equal or if
                  their content types differ.
        """
        if first.content_type != second.content_type:
            return []
        inspector = self.get_inspector(first.content_type)
        if inspector is None:
            return []
        return inspector.diff(first, second, rules)
