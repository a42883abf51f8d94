# Copyright Red Hat
#
# fssnap/snapshot/xmlnode.py - Normalized XML node trees
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Normalized XML element trees used to compare XML documents independently
of sibling order and attribute order.
"""
from typing import Dict, List, Optional, Tuple

from lxml import etree


def _local_name(tag: str) -> str:
    return etree.QName(tag).localname


def _text_trim(element) -> str:
    """
    Return the text directly contained in ``element``, excluding the text
    of child elements, with surrounding whitespace removed.
    """
    parts = [element.text or ""]
    for child in element:
        parts.append(child.tail or "")
    return "".join(parts).strip()


class XmlNode:
    """
    A node in a normalized XML tree.
    """

    def __init__(self, element, parent: Optional["XmlNode"] = None):
        """
        Initialise a new ``XmlNode`` from an lxml element and its children.

        :param element: The element to wrap.
        :type element: ``lxml.etree._Element``
        :param parent: The parent node or ``None`` for the document root.
        :type parent: ``Optional[XmlNode]``
        """
        self.element = element
        self.name: str = _local_name(element.tag)
        self.attributes: Dict[str, str] = dict(
            sorted((_local_name(k), v) for k, v in element.attrib.items())
        )
        self.value: str = _text_trim(element)
        self.parent = parent
        self.children: List["XmlNode"] = [
            XmlNode(child, self) for child in element if isinstance(child.tag, str)
        ]
        self.checked = False

    def __str__(self):
        return self.content("").lstrip("\n")

    def signature(self, indent: str = "") -> str:
        """
        Return the opening tag of this node with sorted attributes. The
        text value is appended for nodes without attributes.

        :param indent: A prefix for the signature.
        :type indent: ``str``
        :rtype: ``str``
        """
        attrs = "".join(f' {key}="{val}"' for key, val in self.attributes.items())
        sig = f"{indent}<{self.name}{attrs}>"
        if not self.attributes and self.value:
            sig += self.value
        return sig

    def full_signature(self) -> str:
        """
        Return the signatures of this node and all of its ancestors, one per
        line, with increasing indentation.

        :rtype: ``str``
        """
        ancestors = []
        parent = self.parent
        while parent is not None:
            ancestors.append(parent.signature(""))
            parent = parent.parent

        indent = "\t"
        lines = []
        for sig in reversed(ancestors):
            lines.append("\n" + indent + sig)
            indent += "\t"

        lines.append("\n" + self.signature(indent))
        if self.attributes:
            lines.append(self.value)
        lines.append(f"</{self.name}>")
        return "".join(lines)

    def content(self, indent: str = "") -> str:
        """
        Return a rendering of this node and its whole subtree.

        :param indent: The indentation of this node.
        :type indent: ``str``
        :rtype: ``str``
        """
        out = ["\n" + self.signature(indent)]
        for child in self.children:
            out.append(child.content(indent + "\t"))
        if self.children:
            out.append("\n" + indent)
        out.append(f"</{self.name}>")
        return "".join(out)

    def set_checked_including_children(self):
        """Mark this node and its whole subtree as matched."""
        self.checked = True
        for child in self.children:
            child.set_checked_including_children()


def match_children(first: List[XmlNode], second: List[XmlNode]):
    """
    Pair nodes from ``first`` and ``second`` with equal signatures,
    ignoring case, and descend into pairs whose content differs. Paired
    nodes are marked as checked.
    """
    for this_child in first:
        this_sig = this_child.signature("").strip().lower()
        for that_child in second:
            if that_child.checked:
                continue
            if this_sig != that_child.signature("").strip().lower():
                continue
            this_child.checked = True
            that_child.checked = True
            this_content = this_child.content("").strip().lower()
            if this_content == that_child.content("").strip().lower():
                this_child.set_checked_including_children()
                that_child.set_checked_including_children()
            else:
                match_children(this_child.children, that_child.children)
            break


def unmatched_nodes(nodes: List[XmlNode]) -> List[XmlNode]:
    """
    Return the top-most unchecked nodes in ``nodes`` and their subtrees,
    in document order.
    """
    found = []
    for node in nodes:
        if node.checked:
            found.extend(unmatched_nodes(node.children))
        else:
            found.append(node)
    return found


def compare_trees(
    first: Optional[XmlNode], second: Optional[XmlNode]
) -> List[Tuple[str, str, str]]:
    """
    Compare two normalized XML trees.

    :param first: The root of the first tree, or ``None`` if empty.
    :param second: The root of the second tree, or ``None`` if empty.
    :returns: A list of ``(description, first_value, second_value)``
              tuples, one per unmatched node.
    :rtype: ``List[Tuple[str, str, str]]``
    """
    first_nodes = [first] if first is not None else []
    second_nodes = [second] if second is not None else []
    match_children(first_nodes, second_nodes)

    diffs = []
    for node in unmatched_nodes(first_nodes):
        diffs.append((f"Presence of XML node {node.full_signature()}", "YES", "NO"))
    for node in unmatched_nodes(second_nodes):
        diffs.append((f"Presence of XML node {node.full_signature()}", "NO", "YES"))
    return diffs
