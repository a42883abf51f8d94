# Copyright Red Hat
#
# fssnap/_fssnap.py - File system snapshot global definitions
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level fssnap package.
"""
from typing import List, Optional, TextIO, TYPE_CHECKING
import logging
import weakref
import sys

if TYPE_CHECKING:
    from .progress import ProgressBase
    from .snapshot.engine import FileSystemEqualityState

_log = logging.getLogger("fssnap")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Fssnap debugging subsystem mask
FSSNAP_DEBUG_SCAN = 1
FSSNAP_DEBUG_COMPARE = 2
FSSNAP_DEBUG_PERSIST = 4
FSSNAP_DEBUG_RULES = 8
FSSNAP_DEBUG_COMMAND = 16
FSSNAP_DEBUG_ALL = (
    FSSNAP_DEBUG_SCAN
    | FSSNAP_DEBUG_COMPARE
    | FSSNAP_DEBUG_PERSIST
    | FSSNAP_DEBUG_RULES
    | FSSNAP_DEBUG_COMMAND
)

# Fssnap debugging subsystem names
FSSNAP_SUBSYSTEM_SCAN = "fssnap.scan"
FSSNAP_SUBSYSTEM_COMPARE = "fssnap.compare"
FSSNAP_SUBSYSTEM_PERSIST = "fssnap.persist"
FSSNAP_SUBSYSTEM_RULES = "fssnap.rules"
FSSNAP_SUBSYSTEM_COMMAND = "fssnap.command"

_DEBUG_MASK_TO_SUBSYSTEM = {
    FSSNAP_DEBUG_SCAN: FSSNAP_SUBSYSTEM_SCAN,
    FSSNAP_DEBUG_COMPARE: FSSNAP_SUBSYSTEM_COMPARE,
    FSSNAP_DEBUG_PERSIST: FSSNAP_SUBSYSTEM_PERSIST,
    FSSNAP_DEBUG_RULES: FSSNAP_SUBSYSTEM_RULES,
    FSSNAP_DEBUG_COMMAND: FSSNAP_SUBSYSTEM_COMMAND,
}

_debug_subsystems = set()

# Registry of active progress instances: uses a WeakSet so we don't prevent
# garbage collection.
_active_progress: weakref.WeakSet = weakref.WeakSet()


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        # Always pass non-DEBUG messages.
        if record.levelno != logging.DEBUG:
            return True

        # Always pass DEBUG messages that aren't for a specific subsystem.
        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``fssnap`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    fssnap_log = logging.getLogger("fssnap")

    for handler in fssnap_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``fssnap`` package.

    :param mask: the logical OR of the ``FSSNAP_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > FSSNAP_DEBUG_ALL:
        raise ValueError(f"Invalid fssnap debug mask: {mask}")

    enabled_subsystems = [
        name for flag, name in _DEBUG_MASK_TO_SUBSYSTEM.items() if mask & flag
    ]

    fssnap_log = logging.getLogger("fssnap")
    for handler in fssnap_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


def register_progress(progress: "ProgressBase"):
    """Register a progress instance for log coordination."""
    _active_progress.add(progress)
    progress.registered = True


def unregister_progress(progress: "ProgressBase"):
    """Unregister a progress instance."""
    _active_progress.discard(progress)
    progress.registered = False


def notify_log_output(stream: TextIO):
    """
    Notify progress instances that log output occurred on stream.

    Called by ProgressAwareHandler after emitting a record.

    :param stream: The stream that received output.
    :type stream: ``TextIO``
    """
    if stream not in (sys.stdout, sys.stderr):
        return
    for progress in list(_active_progress):
        if hasattr(progress, "reset_position"):
            progress.reset_position()


class ProgressAwareHandler(logging.StreamHandler):
    """
    A logging handler that coordinates with active Progress instances.

    After emitting a log record, notifies any Progress instances writing
    to the same stream so they can avoid erasing the log message.
    """

    def __init__(self, stream: Optional[TextIO] = None, **kwargs):
        super().__init__(stream=stream or sys.stderr, **kwargs)

    def emit(self, record):
        try:
            msg = self.format(record)
            self.stream.write(msg + "\n")
            self.stream.flush()
            notify_log_output(self.stream)
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)


#
# Fssnap exception types
#


class FssnapError(Exception):
    """
    Base class for file system snapshot errors.
    """


class FssnapSystemError(FssnapError):
    """
    An error when calling the operating system.
    """


class ConfigurationError(FssnapError):
    """
    A snapshot was configured with invalid arguments or rules.
    """


class InvalidArgumentError(ConfigurationError):
    """
    An invalid argument was passed to a snapshot API call.
    """


class InvalidRegexError(ConfigurationError):
    """
    A rule was registered with a regular expression that does not compile.
    """

    def __init__(self, pattern: str, reason: str):
        """
        Initialise a new `InvalidRegexError` exception.

        :param pattern: The regular expression that failed to compile.
        :param reason: The error reported by the ``re`` module.
        """
        self.pattern, self.reason = pattern, reason
        super().__init__(f"Invalid regular expression '{pattern}': {reason}")


class DuplicateAliasError(ConfigurationError):
    """
    A directory alias is already registered with this snapshot.
    """

    def __init__(self, alias: str, snapshot: str):
        """
        Initialise a new `DuplicateAliasError` exception.

        :param alias: The alias that was registered twice.
        :param snapshot: The name of the snapshot it was registered with.
        """
        self.alias, self.snapshot = alias, snapshot
        msg = f"There is already a directory with alias '{alias}' for snapshot '{snapshot}'"
        super().__init__(msg)


class NoSuchDirectoryAliasError(ConfigurationError):
    """
    A rule names a directory alias that was never registered.
    """

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"There is no directory snapshot with alias '{alias}'")


class SameSnapshotNameError(FssnapError):
    """
    Two snapshots with the same name were passed to a comparison.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"You are trying to compare snapshots with same name: {name}")


class DirectoryNotFoundError(FssnapError):
    """
    A registered directory root does not exist at capture time.
    """

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Directory '{path}' does not exist")


class SnapshotStateError(FssnapError):
    """
    The state of a snapshot does not allow an operation to proceed.
    """


class SnapshotParseError(FssnapError):
    """
    A persisted snapshot file could not be read.
    """


class ContentParseError(FssnapError):
    """
    The structured content of a file could not be parsed.
    """


class FileSystemSnapshotError(FssnapError):
    """
    Two snapshots were compared and found to differ.

    The complete comparison report is available as ``equality_state``.
    """

    def __init__(self, equality_state: "FileSystemEqualityState"):
        """
        Initialise a new `FileSystemSnapshotError` exception.

        :param equality_state: The report describing every difference.
        """
        self.equality_state = equality_state
        super().__init__(str(equality_state))

    def directories_only_in(self, snapshot_name: str) -> List[str]:
        """
        Return the absolute paths of directories present only in
        ``snapshot_name``.

        :param snapshot_name: The name of one of the compared snapshots.
        :returns: A list of directory paths ending with ``/``.
        :rtype: ``List[str]``
        """
        return self.equality_state.directories_only_in(snapshot_name)

    def files_only_in(self, snapshot_name: str) -> List[str]:
        """
        Return the absolute paths of files present only in ``snapshot_name``.

        :param snapshot_name: The name of one of the compared snapshots.
        :returns: A list of file paths.
        :rtype: ``List[str]``
        """
        return self.equality_state.files_only_in(snapshot_name)

    def different_files(self) -> List[str]:
        """
        Return a rendered description of each file that is present in
        both snapshots but differs.

        :returns: A list of multi-line strings, one per file.
        :rtype: ``List[str]``
        """
        return self.equality_state.different_files()


__all__ = [
    # Debug masks and subsystems
    "FSSNAP_DEBUG_SCAN",
    "FSSNAP_DEBUG_COMPARE",
    "FSSNAP_DEBUG_PERSIST",
    "FSSNAP_DEBUG_RULES",
    "FSSNAP_DEBUG_COMMAND",
    "FSSNAP_DEBUG_ALL",
    "FSSNAP_SUBSYSTEM_SCAN",
    "FSSNAP_SUBSYSTEM_COMPARE",
    "FSSNAP_SUBSYSTEM_PERSIST",
    "FSSNAP_SUBSYSTEM_RULES",
    "FSSNAP_SUBSYSTEM_COMMAND",
    "SubsystemFilter",
    "get_debug_mask",
    "set_debug_mask",
    # Progress coordination
    "register_progress",
    "unregister_progress",
    "notify_log_output",
    "ProgressAwareHandler",
    # Exceptions
    "FssnapError",
    "FssnapSystemError",
    "ConfigurationError",
    "InvalidArgumentError",
    "InvalidRegexError",
    "DuplicateAliasError",
    "NoSuchDirectoryAliasError",
    "SameSnapshotNameError",
    "DirectoryNotFoundError",
    "SnapshotStateError",
    "SnapshotParseError",
    "ContentParseError",
    "FileSystemSnapshotError",
]
