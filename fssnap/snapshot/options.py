# Copyright Red Hat
#
# fssnap/snapshot/options.py - File system snapshot configuration
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
File system snapshot configuration.
"""
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Tuple, Union
from configparser import ConfigParser, Error as ConfigParserError
from argparse import Namespace
from os.path import exists, join
import logging

from fssnap import InvalidArgumentError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Base directory for fssnap configuration
_FSSNAP_CFG_DIR = "/etc/fssnap"

#: Main configuration file path
FSSNAP_CFG_PATH = join(_FSSNAP_CFG_DIR, "fssnap.conf")

#: Main configuration file section
_FSSNAP_CFG_GLOBAL = "Global"


@dataclass(frozen=True)
class SnapshotConfiguration:
    """
    Capture and comparison options for a file system snapshot.
    """

    #: Capture and compare file sizes
    check_size: bool = True
    #: Capture and compare file modification times
    check_modification_time: bool = True
    #: Capture and compare MD5 checksums of file content
    check_md5: bool = True
    #: Capture and compare file permission bits
    check_permissions: bool = False
    #: Include hidden files and directories
    support_hidden: bool = False
    #: Parse and compare Java properties file content
    check_properties_content: bool = False
    #: Parse and compare XML file content
    check_xml_content: bool = False
    #: Parse and compare INI file content
    check_ini_content: bool = False
    #: Parse and compare plain text file content
    check_text_content: bool = False
    #: File name extensions treated as properties files
    properties_extensions: Tuple[str, ...] = (".properties",)
    #: File name extensions treated as XML files
    xml_extensions: Tuple[str, ...] = (".xml",)
    #: File name extensions treated as INI files
    ini_extensions: Tuple[str, ...] = (".ini",)
    #: File name extensions treated as plain text files
    text_extensions: Tuple[str, ...] = (".txt",)
    #: Comment start character for INI files
    ini_comment_start: str = "#"
    #: Section start character for INI files
    ini_section_start: str = "["
    #: Key/value delimiter for INI files
    ini_delimiter: str = "="
    #: Detect content types using libmagic rather than file extensions
    use_magic_file_type: bool = False
    #: Number of worker threads used to compute MD5 checksums
    hash_workers: int = 4
    #: Do not output progress or status updates
    quiet: bool = True

    def __post_init__(self):
        for name in ("ini_comment_start", "ini_section_start", "ini_delimiter"):
            if len(getattr(self, name)) != 1:
                raise InvalidArgumentError(
                    f"Invalid {name} value '{getattr(self, name)}': "
                    "expected a single character"
                )
        if self.hash_workers < 1:
            raise InvalidArgumentError(
                f"Invalid hash_workers value: {self.hash_workers}"
            )

    def __str__(self):
        """
        Return a human readable string representation of this
        ``SnapshotConfiguration`` instance.

        :returns: A human readable string.
        :rtype: ``str``
        """
        items = [
            (key, val) if not isinstance(val, tuple) else (key, " ".join(val))
            for key, val in self.__dict__.items()
        ]
        return "\n".join(f"{key}={val}" for key, val in items)

    def to_dict(self) -> Dict[str, Any]:
        """
        Return a dictionary representation of this configuration.

        :returns: A dictionary mapping field names to values.
        :rtype: ``Dict[str, Any]``
        """
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def with_overrides(self, **overrides) -> "SnapshotConfiguration":
        """
        Return a copy of this configuration with ``overrides`` applied.

        :param overrides: Field values to replace.
        :returns: A new ``SnapshotConfiguration``.
        :rtype: ``SnapshotConfiguration``
        :raises InvalidArgumentError: If an override names an unknown field.
        """
        field_names = {f.name for f in fields(self)}
        for name in overrides:
            if name not in field_names:
                raise InvalidArgumentError(f"Unknown configuration option '{name}'")
        return replace(self, **overrides)

    @classmethod
    def from_strings(
        cls, values: Dict[str, str], base: "SnapshotConfiguration" = None
    ) -> "SnapshotConfiguration":
        """
        Initialise a ``SnapshotConfiguration`` from string values, as found
        in configuration files and persisted snapshots.

        :param values: A dictionary mapping field names to string values.
                       Unknown names are ignored.
        :type values: ``Dict[str, str]``
        :param base: Optional configuration supplying values not found in
                     ``values``.
        :type base: ``SnapshotConfiguration``
        :returns: A new ``SnapshotConfiguration``.
        :rtype: ``SnapshotConfiguration``
        """
        kwargs = {}
        for f in fields(cls):
            if f.name not in values:
                continue
            kwargs[f.name] = _convert_value(f.name, f.default, values[f.name])
        if base is not None:
            return replace(base, **kwargs)
        return cls(**kwargs)

    @classmethod
    def from_file(
        cls, config_file: str = FSSNAP_CFG_PATH, base: "SnapshotConfiguration" = None
    ) -> "SnapshotConfiguration":
        """
        Load ``SnapshotConfiguration`` from an INI-style configuration file
        located at ``config_file``.

        Option names in the ``[Global]`` section match the field names of
        this class, for example ``check_permissions = yes``.

        :param config_file: path to fssnap.conf
        :type config_file: ``str``.
        :param base: Optional configuration supplying values not set in
                     ``config_file``.
        :type base: ``SnapshotConfiguration``
        :returns: A ``SnapshotConfiguration`` initialised from ``config_file``.
        :rtype: ``SnapshotConfiguration``
        """
        base = base or cls()
        if not exists(config_file):
            return base

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise InvalidArgumentError(
                f"Error reading configuration file {config_file}: {err}"
            ) from err

        if not cfg.has_section(_FSSNAP_CFG_GLOBAL):
            return base

        values = {}
        for f in fields(cls):
            if cfg.has_option(_FSSNAP_CFG_GLOBAL, f.name):
                values[f.name] = cfg[_FSSNAP_CFG_GLOBAL][f.name]
        return cls.from_strings(values, base=base)

    @classmethod
    def from_cmd_args(
        cls, cmd_args: Namespace, base: "SnapshotConfiguration" = None
    ) -> "SnapshotConfiguration":
        """
        Initialise SnapshotConfiguration from command line arguments.

        Arguments that are absent or ``None`` in ``cmd_args`` keep the value
        from ``base``, or the defaults if ``base`` is not given.

        :param cmd_args: The command line selection arguments.
        :type cmd_args: ``Namespace``
        :param base: An optional configuration to layer arguments over.
        :type base: ``SnapshotConfiguration``
        :returns: A new ``SnapshotConfiguration`` instance
        :rtype: ``SnapshotConfiguration``
        """

        def get_value(name: str) -> Union[bool, int, str, Tuple[str, ...]]:
            attr = getattr(cmd_args, name)
            if isinstance(attr, list):
                return tuple(attr)
            return attr

        base = base or cls()
        field_names = {f.name for f in fields(cls)}
        kwargs = {
            name: get_value(name)
            for name in field_names
            if getattr(cmd_args, name, None) is not None
        }
        options = replace(base, **kwargs)
        _log_debug("Initialised SnapshotConfiguration from arguments: %s", repr(options))
        return options


_TRUE_VALUES = ("1", "yes", "true", "on")
_FALSE_VALUES = ("0", "no", "false", "off")


def _convert_value(name: str, default: Any, value: str) -> Any:
    """
    Convert string ``value`` to the type of ``default``.

    :param name: The option name, for error reporting.
    :param default: The default value of the option.
    :param value: The string value to convert.
    :returns: The converted value.
    :raises InvalidArgumentError: If the value cannot be converted.
    """
    value = value.strip()
    if isinstance(default, bool):
        if value.lower() in _TRUE_VALUES:
            return True
        if value.lower() in _FALSE_VALUES:
            return False
        raise InvalidArgumentError(f"Invalid boolean value for {name}: '{value}'")
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as err:
            raise InvalidArgumentError(
                f"Invalid integer value for {name}: '{value}'"
            ) from err
    if isinstance(default, tuple):
        return tuple(v.strip() for v in value.replace(",", " ").split() if v.strip())
    return value
