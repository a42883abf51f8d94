# Copyright Red Hat
#
# fssnap/snapshot/filetypes.py - File system snapshot content types
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Content type detection for structured file comparison.
"""
from typing import Dict, Optional
from pathlib import Path
from enum import Enum
import logging
import magic

from fssnap import FSSNAP_SUBSYSTEM_SCAN

from .options import SnapshotConfiguration

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_scan(msg, *args, **kwargs):
    """A wrapper for scan subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": FSSNAP_SUBSYSTEM_SCAN}, **kwargs)


class ContentType(Enum):
    """
    Content types that select a structured content inspector.
    """

    REGULAR = "regular"
    XML = "xml"
    PROPERTIES = "properties"
    INI = "ini"
    TEXT = "text"


#: Configuration flag enabling content checks for each content type
CONTENT_CHECK_FLAGS: Dict[ContentType, str] = {
    ContentType.XML: "check_xml_content",
    ContentType.PROPERTIES: "check_properties_content",
    ContentType.INI: "check_ini_content",
    ContentType.TEXT: "check_text_content",
}

_EXTENSION_FIELDS = (
    (ContentType.XML, "xml_extensions"),
    (ContentType.PROPERTIES, "properties_extensions"),
    (ContentType.INI, "ini_extensions"),
    (ContentType.TEXT, "text_extensions"),
)

_MIME_CONTENT_TYPES = {
    "text/xml": ContentType.XML,
    "application/xml": ContentType.XML,
    "text/plain": ContentType.TEXT,
}


def _detect_from_magic(path: Path) -> Optional[ContentType]:
    """
    Detect a content type using libmagic.

    :param path: The file to inspect.
    :type path: ``Path``
    :returns: The detected type, or ``None`` if the MIME type does not map
              to a structured content type.
    :rtype: ``Optional[ContentType]``
    """
    # c9s magic does not have magic.error
    if hasattr(magic, "error"):
        magic_errors = (magic.error, OSError, ValueError)
    else:
        magic_errors = (OSError, ValueError)

    try:
        fm = magic.detect_from_filename(str(path))
    except magic_errors as err:
        _log_warn("Error detecting file type for %s: %s", str(path), err)
        return None

    _log_debug_scan("Detected MIME type %s for %s", fm.mime_type, str(path))
    return _MIME_CONTENT_TYPES.get(fm.mime_type.lower())


def detect_content_type(path: Path, config: SnapshotConfiguration) -> ContentType:
    """
    Select the content type of the file at ``path``.

    Configured extensions are tried first, in the order XML, properties,
    INI and text. If no extension matches and ``use_magic_file_type`` is
    set, libmagic is used to recognise XML and plain text files.

    :param path: The file to inspect.
    :type path: ``Path``
    :param config: The configuration in effect.
    :type config: ``SnapshotConfiguration``
    :returns: The selected content type.
    :rtype: ``ContentType``
    """
    name = path.name.lower()
    for content_type, extensions_field in _EXTENSION_FIELDS:
        extensions = getattr(config, extensions_field)
        if any(name.endswith(ext.lower()) for ext in extensions):
            return content_type

    if config.use_magic_file_type:
        detected = _detect_from_magic(path)
        if detected is not None:
            return detected

    return ContentType.REGULAR


def content_check_enabled(content_type: ContentType, config: SnapshotConfiguration):
    """
    Return ``True`` if structured comparison of ``content_type`` is
    enabled in ``config``.
    """
    flag = CONTENT_CHECK_FLAGS.get(content_type)
    return flag is not None and getattr(config, flag)
