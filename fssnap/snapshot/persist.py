# Copyright Red Hat
#
# fssnap/snapshot/persist.py - File system snapshot persistence
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Save and load file system snapshots as (optionally compressed) XML
documents.
"""
from typing import BinaryIO, Dict, Iterator, Optional, Tuple, TYPE_CHECKING
from contextlib import contextmanager
from datetime import datetime
from io import RawIOBase
import logging
import tempfile
import base64
import lzma
import os
import re

try:
    import zstandard as zstd

    _HAVE_ZSTD = True
except ModuleNotFoundError:
    _HAVE_ZSTD = False

from lxml import etree

from fssnap import (
    FSSNAP_SUBSYSTEM_PERSIST,
    ContentParseError,
    FssnapError,
    FssnapSystemError,
    SnapshotParseError,
)
from fssnap.progress import ProgressFactory

from .filetypes import ContentType
from .inspectors import InspectorManager
from .options import SnapshotConfiguration
from .rules import (
    ContentRule,
    ContentRuleKind,
    FileAttribute,
    FileRule,
    MatchType,
    RuleStore,
)
from .treewalk import DirectoryCapture, Entry

if TYPE_CHECKING:
    from .snapshot import FileSystemSnapshot

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_persist(msg, *args, **kwargs):
    """A wrapper for persist subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": FSSNAP_SUBSYSTEM_PERSIST}, **kwargs)


#: Snapshot file format version
SNAPSHOT_FORMAT_VERSION = "1"

#: Root element of a snapshot file
_ROOT = "fssnap_snapshot"
_CONFIGURATION = "configuration"
_DIRECTORY = "directory"
_SKIPPED_DIRECTORY = "skipped_directory"
_FILE_RULE = "file_rule"
_CONTENT_RULE = "content_rule"
_DIR = "dir"
_FILE = "file"
_CONTENT = "content"

#: Value of the ``path_encoding`` attribute for base64 encoded paths
_PATH_BASE64 = "base64"

#: Characters that are not allowed in XML 1.0 documents
_XML_UNSAFE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")

#: Mode of saved snapshot files
_SNAPSHOT_FILE_MODE = 0o644

#: Map of compression type to file name extension
_COMPRESSION_EXTENSIONS = {
    "zstd": "zst",
    "lzma": "xz",
}


def _compress_type(path: str) -> Tuple[Optional[str], Tuple[Exception, ...]]:
    """
    Select the compression type for ``path`` by its file name extension.

    :param path: The snapshot file path.
    :type path: ``str``
    :returns: A ``(compress, compress_errors)`` tuple. ``compress`` is
              ``None`` for uncompressed files.
    :raises FssnapSystemError: If zstd compression is requested but
                               unavailable.
    """
    if path.endswith("." + _COMPRESSION_EXTENSIONS["zstd"]):
        if not _HAVE_ZSTD:
            raise FssnapSystemError(
                f"Cannot use {path}: zstd support not available"
            )
        return "zstd", (zstd.ZstdError,)
    if path.endswith("." + _COMPRESSION_EXTENSIONS["lzma"]):
        return "lzma", (lzma.LZMAError,)
    return None, ()


@contextmanager
def _open_writer(fc: BinaryIO, compress: Optional[str]) -> Iterator[RawIOBase]:
    """
    Wrap the open file ``fc`` in a compressing writer. The writer does not
    close ``fc``.
    """
    if compress == "zstd":
        cctx = zstd.ZstdCompressor()
        with cctx.stream_writer(fc, closefd=False) as compressor:
            yield compressor
    elif compress == "lzma":
        with lzma.LZMAFile(filename=fc, mode="wb") as compressor:
            yield compressor
    else:
        yield fc


@contextmanager
def _open_reader(path: str, compress: Optional[str]) -> Iterator[RawIOBase]:
    if compress == "zstd":
        dctx = zstd.ZstdDecompressor()
        with open(path, "rb") as fp:
            with dctx.stream_reader(fp) as reader:
                yield reader
    elif compress == "lzma":
        with lzma.LZMAFile(filename=path, mode="rb") as reader:
            yield reader
    else:
        with open(path, "rb") as fp:
            yield fp


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _attributes(attributes) -> str:
    return " ".join(attr.name for attr in FileAttribute if attr in attributes)


def _attrib(**kwargs) -> Dict[str, str]:
    """Build an attribute dictionary, dropping ``None`` values."""
    return {key: str(val) for key, val in kwargs.items() if val is not None}


def _path_attrib(path: str) -> Dict[str, str]:
    """
    Return the attributes storing ``path``. Paths that cannot be held in an
    XML attribute (control characters, or undecodable bytes carried as
    surrogate escapes) are stored as base64 encoded file system bytes.
    """
    try:
        path.encode("utf-8")
        xml_safe = not _XML_UNSAFE_RE.search(path)
    except UnicodeEncodeError:
        xml_safe = False
    if xml_safe:
        return {"path": path}
    return {
        "path": base64.b64encode(os.fsencode(path)).decode("ascii"),
        "path_encoding": _PATH_BASE64,
    }


def _element_path(element) -> Optional[str]:
    """Return the path stored in ``element`` by ``_path_attrib()``."""
    path = element.get("path")
    if path is None:
        return None
    encoding = element.get("path_encoding")
    if encoding is None:
        return path
    if encoding != _PATH_BASE64:
        raise ValueError(f"unknown path encoding '{encoding}'")
    return os.fsdecode(base64.b64decode(path, validate=True))


def _entry_element(entry: Entry):
    if entry.is_dir:
        return etree.Element(_DIR, _path_attrib(entry.path))
    element = etree.Element(
        _FILE,
        _attrib(
            **_path_attrib(entry.path),
            size=entry.size,
            mtime=entry.mtime,
            md5=entry.md5,
            permissions=entry.permissions,
            content_type=entry.content_type.value,
        ),
    )
    if entry.content is not None:
        content = etree.SubElement(element, _CONTENT)
        content.text = base64.b64encode(entry.content.source).decode("ascii")
    return element


def _write_directory(
    xf, capture: DirectoryCapture, rules_store: RuleStore, progress, done: int
) -> int:
    """
    Write one ``<directory>`` element and return the updated count of
    entries written.
    """
    rules = rules_store.for_alias(capture.alias)
    with xf.element(_DIRECTORY, alias=capture.alias, **_path_attrib(capture.root)):
        for dir_rule in rules.dir_rules:
            xf.write(
                etree.Element(
                    _SKIPPED_DIRECTORY,
                    _path_attrib(dir_rule.path),
                    regex=_bool(dir_rule.is_regex),
                )
            )
        for file_rule in rules.file_rules.values():
            xf.write(
                etree.Element(
                    _FILE_RULE,
                    _path_attrib(file_rule.path),
                    regex=_bool(file_rule.is_regex),
                    skip_entity=_bool(file_rule.skip_entity),
                    skip=_attributes(file_rule.skip),
                    check=_attributes(file_rule.check),
                )
            )
        for path, content_rules in rules.content_rules.items():
            for rule in content_rules.values():
                xf.write(
                    etree.Element(
                        _CONTENT_RULE,
                        _attrib(**_path_attrib(path), **rule.to_dict()),
                    )
                )
        for entry in capture.entries.values():
            if progress.total:
                progress.progress(done, f"Saving {entry.path}")
            xf.write(_entry_element(entry))
            done += 1
    return done


def _remove_tmp(tmp_path: Optional[str]):
    if tmp_path is None:
        return
    try:
        os.unlink(tmp_path)
    except OSError as err:
        _log_warn("Error removing temporary file %s: %s", tmp_path, err)


def save_snapshot(snapshot: "FileSystemSnapshot", path: str):
    """
    Write ``snapshot`` to the file at ``path``. Files ending with ``.zst``
    are compressed with zstd and files ending with ``.xz`` with lzma.
    The file is written to a temporary file in the same directory and
    renamed over ``path``, so a failed save leaves any existing file at
    ``path`` unchanged.

    :param snapshot: The snapshot to save.
    :type snapshot: ``FileSystemSnapshot``
    :param path: The destination file path.
    :type path: ``str``
    :raises FssnapSystemError: If the file cannot be written.
    """
    compress, compress_errors = _compress_type(path)

    parent = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(parent, exist_ok=True)
    except OSError as err:
        raise FssnapSystemError(f"Error creating directory {parent}: {err}") from err

    count = sum(len(d.entries) for d in snapshot.directories.values())
    progress = ProgressFactory.get_progress(
        f"Saving {snapshot.name}", quiet=snapshot.configuration.quiet
    )
    start_time = datetime.now()
    if count:
        progress.start(count)

    _log_info("Saving snapshot [%s] to %s", snapshot.name, path)
    tmp_path = None
    try:
        # Write the snapshot file atomically
        fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".tmp_")
        with os.fdopen(fd, "wb") as fc:
            with _open_writer(fc, compress) as writer:
                with etree.xmlfile(writer, encoding="utf-8") as xf:
                    xf.write_declaration()
                    with xf.element(
                        _ROOT,
                        name=snapshot.name,
                        time=str(snapshot.timestamp),
                        version=SNAPSHOT_FORMAT_VERSION,
                    ):
                        xf.write(
                            etree.Element(
                                _CONFIGURATION,
                                _config_attrib(snapshot.configuration),
                            )
                        )
                        done = 0
                        for capture in snapshot.directories.values():
                            done = _write_directory(
                                xf, capture, snapshot.rules, progress, done
                            )
            fc.flush()
            os.fdatasync(fc.fileno())
        os.rename(tmp_path, path)
        tmp_path = None
        os.chmod(path, _SNAPSHOT_FILE_MODE)
    except (OSError, ValueError, etree.LxmlError, *compress_errors) as err:
        _log_error("Error saving snapshot: %s", err)
        _remove_tmp(tmp_path)
        if progress.total:
            progress.cancel("Error.")
        raise FssnapSystemError(f"Error saving snapshot file {path}: {err}") from err
    except (KeyboardInterrupt, SystemExit):
        _remove_tmp(tmp_path)
        if progress.total:
            progress.cancel("Quit!")
        raise

    end_time = datetime.now()
    if progress.total:
        progress.end(f"Saved {count} entries to {path} in {end_time - start_time}")
    _log_debug_persist("Saved %d entries for [%s] to %s", count, snapshot.name, path)


def _config_attrib(config: SnapshotConfiguration) -> Dict[str, str]:
    out = {}
    for key, val in config.to_dict().items():
        if isinstance(val, bool):
            out[key] = _bool(val)
        elif isinstance(val, tuple):
            out[key] = " ".join(val)
        else:
            out[key] = str(val)
    return out


class LoadedSnapshot:
    """
    The contents of a snapshot file.
    """

    def __init__(self, name: str, timestamp: int):
        self.name = name
        self.timestamp = timestamp
        self.configuration = SnapshotConfiguration()
        self.directories: Dict[str, DirectoryCapture] = {}
        self.rules = RuleStore()


def _parse_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _parse_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


def _parse_attributes(value: Optional[str]) -> Tuple[FileAttribute, ...]:
    return tuple(FileAttribute[name] for name in (value or "").split())


def _restore_file_rule(loaded: LoadedSnapshot, alias: str, element):
    rule = FileRule(
        _element_path(element),
        is_regex=_parse_bool(element.get("regex")),
        skip_entity=_parse_bool(element.get("skip_entity")),
        skip=set(_parse_attributes(element.get("skip"))),
        check=set(_parse_attributes(element.get("check"))),
    )
    loaded.rules.restore_file_rule(alias, rule)


def _restore_content_rule(loaded: LoadedSnapshot, alias: str, element):
    rule = ContentRule(
        kind=ContentRuleKind(element.get("kind")),
        token=element.get("token"),
        match_type=MatchType(element.get("match_type")),
        section=element.get("section"),
        xpath=element.get("xpath"),
        attribute=element.get("attribute"),
    )
    loaded.rules.content_rule(alias, _element_path(element), rule)


def _restore_file(
    capture: DirectoryCapture,
    element,
    config: SnapshotConfiguration,
    inspectors: InspectorManager,
):
    entry = Entry(
        _element_path(element),
        size=_parse_int(element.get("size")),
        mtime=_parse_int(element.get("mtime")),
        md5sum=element.get("md5"),
        permissions=element.get("permissions"),
        content_type=ContentType(element.get("content_type", "regular")),
    )
    content = element.find(_CONTENT)
    if content is not None and content.text:
        source = base64.b64decode(content.text)
        try:
            entry.content = inspectors.parse(entry.content_type, source, config)
        except ContentParseError as err:
            _log_warn(
                "Unable to parse stored content of '%s': %s",
                capture.full_path(entry.path),
                err,
            )
    capture.entries[entry.path] = entry


def load_snapshot(
    path: str, inspectors: Optional[InspectorManager] = None
) -> LoadedSnapshot:
    """
    Read a snapshot file written by ``save_snapshot()``.

    :param path: The snapshot file path.
    :type path: ``str``
    :param inspectors: An optional content inspector manager used to parse
                       stored structured content.
    :type inspectors: ``Optional[InspectorManager]``
    :returns: The loaded snapshot data.
    :rtype: ``LoadedSnapshot``
    :raises SnapshotParseError: If the file cannot be read or is not a
                                snapshot file.
    """
    inspectors = inspectors or InspectorManager()
    try:
        compress, compress_errors = _compress_type(path)
    except FssnapSystemError as err:
        raise SnapshotParseError(f"Error reading snapshot file {path}: {err}") from err

    _log_info("Loading snapshot from %s", path)
    loaded: Optional[LoadedSnapshot] = None
    capture: Optional[DirectoryCapture] = None
    try:
        with _open_reader(path, compress) as reader:
            events = etree.iterparse(
                reader,
                events=("start", "end"),
                resolve_entities=False,
                no_network=True,
            )
            for event, element in events:
                tag = element.tag
                if loaded is None:
                    if tag != _ROOT:
                        raise SnapshotParseError(
                            f"Bad snapshot file {path}: root node name is expected "
                            f"to be '{_ROOT}', but it is '{tag}'"
                        )
                    loaded = LoadedSnapshot(
                        element.get("name", ""), int(element.get("time", "-1"))
                    )
                    continue
                if event == "start":
                    if tag == _DIRECTORY:
                        capture = DirectoryCapture(
                            element.get("alias"), _element_path(element), loaded=True
                        )
                        loaded.directories[capture.alias] = capture
                    continue
                if tag == _DIRECTORY:
                    capture = None
                    continue
                _load_element(loaded, capture, element, inspectors)
    except SnapshotParseError:
        raise
    except (OSError, EOFError, etree.LxmlError, KeyError, ValueError, FssnapError,
            *compress_errors) as err:
        raise SnapshotParseError(f"Error reading snapshot file {path}: {err}") from err

    if loaded is None:
        raise SnapshotParseError(f"Error reading snapshot file {path}: empty file")

    _log_debug_persist(
        "Loaded snapshot [%s] with %d directories from %s",
        loaded.name,
        len(loaded.directories),
        path,
    )
    return loaded


def _load_element(
    loaded: LoadedSnapshot,
    capture: Optional[DirectoryCapture],
    element,
    inspectors: InspectorManager,
):
    tag = element.tag
    if tag == _CONFIGURATION:
        loaded.configuration = SnapshotConfiguration.from_strings(dict(element.attrib))
        element.clear()
        return
    if tag not in (_SKIPPED_DIRECTORY, _FILE_RULE, _CONTENT_RULE, _DIR, _FILE):
        return
    if capture is None:
        raise SnapshotParseError(f"Element <{tag}> found outside of <{_DIRECTORY}>")
    if tag == _SKIPPED_DIRECTORY:
        loaded.rules.skip_directory(
            capture.alias, _element_path(element), _parse_bool(element.get("regex"))
        )
    elif tag == _FILE_RULE:
        _restore_file_rule(loaded, capture.alias, element)
    elif tag == _CONTENT_RULE:
        _restore_content_rule(loaded, capture.alias, element)
    elif tag == _DIR:
        rel_path = _element_path(element)
        capture.entries[rel_path] = Entry(rel_path, is_dir=True)
    else:
        _restore_file(capture, element, loaded.configuration, inspectors)

    # Drop processed elements so memory use does not grow with the file
    element.clear()
    while element.getprevious() is not None:
        del element.getparent()[0]
