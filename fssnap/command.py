# Copyright Red Hat
#
# fssnap/command.py - File system snapshot command interface
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``fssnap.command`` module provides both the fssnap command line
interface infrastructure, and a simple procedural interface to the
``fssnap`` library modules.

The procedural interface is used by the ``fssnap`` command line tool,
and may be used by application programs, or interactively in the
Python shell by users who do not require all the features present
in the fssnap object API.
"""
from argparse import ArgumentParser
from typing import Dict, List, Optional, Tuple
from os.path import basename
import logging

from fssnap import (
    FSSNAP_DEBUG_SCAN,
    FSSNAP_DEBUG_COMPARE,
    FSSNAP_DEBUG_PERSIST,
    FSSNAP_DEBUG_RULES,
    FSSNAP_DEBUG_COMMAND,
    FSSNAP_DEBUG_ALL,
    FSSNAP_SUBSYSTEM_COMMAND,
    FileSystemSnapshotError,
    InvalidArgumentError,
    SubsystemFilter,
    set_debug_mask,
    ProgressAwareHandler,
    __version__,
)
from .snapshot import FileSystemEqualityState, FileSystemSnapshot, SnapshotConfiguration
from .snapshot.options import FSSNAP_CFG_PATH

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": FSSNAP_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None


def _split_pair(arg: str, sep: str, what: str) -> Tuple[str, str]:
    """
    Split a command line ``KEY<sep>VALUE`` argument.

    :raises InvalidArgumentError: If ``arg`` is malformed.
    """
    key, found, value = arg.partition(sep)
    if not found or not key or not value:
        raise InvalidArgumentError(f"Invalid {what} '{arg}': expected NAME{sep}PATH")
    return key, value


def capture_snapshot(
    name: str,
    directories: Dict[str, str],
    output: str,
    config: Optional[SnapshotConfiguration] = None,
    skip_dirs: Optional[List[Tuple[str, str]]] = None,
    skip_files: Optional[List[Tuple[str, str]]] = None,
) -> FileSystemSnapshot:
    """
    Capture a new snapshot of ``directories`` and save it to ``output``.

    :param name: The name of the new snapshot.
    :param directories: A dictionary mapping aliases to directory paths.
    :param output: The snapshot file to write.
    :param config: An optional snapshot configuration.
    :param skip_dirs: A list of ``(alias, path)`` directories to skip.
    :param skip_files: A list of ``(alias, path)`` files to skip.
    :returns: The captured snapshot.
    :rtype: ``FileSystemSnapshot``
    """
    # pylint: disable=too-many-arguments
    snapshot = FileSystemSnapshot(name, config)
    for alias, path in directories.items():
        snapshot.add_directory(alias, path)
    for alias, path in skip_dirs or []:
        snapshot.skip_directory(alias, path)
    for alias, path in skip_files or []:
        snapshot.skip_file(alias, path)
    snapshot.capture()
    snapshot.save_to_file(output)
    return snapshot


def compare_snapshots(first: str, second: str) -> FileSystemEqualityState:
    """
    Compare the snapshots saved in the files ``first`` and ``second``.

    :param first: The path of the first snapshot file.
    :param second: The path of the second snapshot file.
    :returns: The comparison report, empty if the snapshots are equal.
    :rtype: ``FileSystemEqualityState``
    """
    this_snap = FileSystemSnapshot.from_file(first)
    that_snap = FileSystemSnapshot.from_file(second)
    try:
        this_snap.compare(that_snap)
    except FileSystemSnapshotError as err:
        return err.equality_state
    return FileSystemEqualityState(this_snap.name, that_snap.name)


def show_snapshot(path: str, json: bool = False, pretty: bool = False):
    """
    Print the snapshot saved in ``path``.

    :param path: The snapshot file path.
    :param json: Display output in JSON notation.
    :param pretty: Indent JSON output.
    """
    snapshot = FileSystemSnapshot.from_file(path)
    if json:
        print(snapshot.json(pretty=pretty))
    else:
        print(snapshot)


def _capture_cmd(cmd_args):
    """
    Capture snapshot command handler.

    Capture the named directories and save the snapshot to a file.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    directories = {}
    for arg in cmd_args.directory:
        alias, path = _split_pair(arg, "=", "directory")
        directories[alias] = path
    skip_dirs = [_split_pair(arg, ":", "directory") for arg in cmd_args.skip_dir or []]
    skip_files = [_split_pair(arg, ":", "file") for arg in cmd_args.skip_file or []]

    # Progress is shown from the command line unless disabled
    base = SnapshotConfiguration.from_file(
        cmd_args.config, base=SnapshotConfiguration(quiet=False)
    )
    config = SnapshotConfiguration.from_cmd_args(cmd_args, base=base)

    snapshot = capture_snapshot(
        cmd_args.snapshot_name,
        directories,
        cmd_args.output,
        config=config,
        skip_dirs=skip_dirs,
        skip_files=skip_files,
    )
    _log_info("Saved snapshot [%s] to %s", snapshot.name, cmd_args.output)
    return 0


def _compare_cmd(cmd_args):
    """
    Compare snapshots command handler.

    Compare two saved snapshots and print the differences.

    :param cmd_args: Command line arguments for the command
    :returns: 0 if the snapshots are equal, 1 otherwise.
    """
    if cmd_args.pretty and not cmd_args.json:
        _log_error("Option --pretty only supported with --json")
        return 1

    state = compare_snapshots(cmd_args.first, cmd_args.second)
    if cmd_args.json:
        print(state.json(pretty=cmd_args.pretty))
    elif not state.equal:
        print(state)
    return 0 if state.equal else 1


def _show_cmd(cmd_args):
    """
    Show snapshot command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    show_snapshot(cmd_args.snapshot_file, json=cmd_args.json, pretty=cmd_args.pretty)
    return 0


def setup_logging(cmd_args):
    """
    Set up fssnap logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    fssnap_log = logging.getLogger("fssnap")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    fssnap_log.setLevel(level)
    if fssnap_log.hasHandlers():
        fssnap_log.handlers.clear()

    # Subsystem log filtering
    _fssnap_subsystem_filter = SubsystemFilter("fssnap")

    # Main console handler
    _CONSOLE_HANDLER = ProgressAwareHandler()

    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_fssnap_subsystem_filter)

    fssnap_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down fssnap logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "scan": FSSNAP_DEBUG_SCAN,
        "compare": FSSNAP_DEBUG_COMPARE,
        "persist": FSSNAP_DEBUG_PERSIST,
        "rules": FSSNAP_DEBUG_RULES,
        "command": FSSNAP_DEBUG_COMMAND,
        "all": FSSNAP_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _add_json_args(parser):
    parser.add_argument(
        "-j",
        "--json",
        action="store_true",
        help="Display output in JSON notation",
    )
    parser.add_argument(
        "-p",
        "--pretty",
        action="store_true",
        help="Indent JSON output",
    )


def _add_config_args(parser):
    parser.add_argument(
        "-c",
        "--config",
        metavar="CONFIG",
        type=str,
        default=FSSNAP_CFG_PATH,
        help=f"Configuration file to load (default: {FSSNAP_CFG_PATH})",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=None,
        help="Do not display progress",
    )
    parser.add_argument(
        "--no-size",
        dest="check_size",
        action="store_false",
        default=None,
        help="Do not capture file sizes",
    )
    parser.add_argument(
        "--no-mtime",
        dest="check_modification_time",
        action="store_false",
        default=None,
        help="Do not capture file modification times",
    )
    parser.add_argument(
        "--no-md5",
        dest="check_md5",
        action="store_false",
        default=None,
        help="Do not capture MD5 checksums",
    )
    parser.add_argument(
        "-P",
        "--permissions",
        dest="check_permissions",
        action="store_true",
        default=None,
        help="Capture file permissions",
    )
    parser.add_argument(
        "-H",
        "--hidden",
        dest="support_hidden",
        action="store_true",
        default=None,
        help="Include hidden files and directories",
    )
    for kind in ("properties", "xml", "ini", "text"):
        parser.add_argument(
            f"--{kind}-content",
            dest=f"check_{kind}_content",
            action="store_true",
            default=None,
            help=f"Parse and compare the content of {kind} files",
        )
    parser.add_argument(
        "-f",
        "--file-types",
        dest="use_magic_file_type",
        action="store_true",
        default=None,
        help="Detect content types using libmagic",
    )
    parser.add_argument(
        "-w",
        "--hash-workers",
        type=int,
        default=None,
        help="Number of threads used to compute checksums",
    )


CAPTURE_CMD = "capture"
COMPARE_CMD = "compare"
SHOW_CMD = "show"


def _add_subparsers(parser):
    """
    Add subparsers for fssnap commands.

    :param parser: The top-level argument parser
    """
    subparser = parser.add_subparsers(dest="command", help="Command")

    # capture subcommand
    capture_parser = subparser.add_parser(
        CAPTURE_CMD, help="Capture a file system snapshot"
    )
    capture_parser.set_defaults(func=_capture_cmd)
    capture_parser.add_argument(
        "snapshot_name",
        metavar="NAME",
        type=str,
        action="store",
        help="The name of the snapshot to capture",
    )
    capture_parser.add_argument(
        "-a",
        "--directory",
        metavar="ALIAS=PATH",
        type=str,
        action="append",
        required=True,
        help="A directory to capture and its alias",
    )
    capture_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        type=str,
        required=True,
        help="The snapshot file to write (.zst and .xz are compressed)",
    )
    capture_parser.add_argument(
        "--skip-dir",
        metavar="ALIAS:PATH",
        type=str,
        action="append",
        help="A directory to skip when comparing",
    )
    capture_parser.add_argument(
        "--skip-file",
        metavar="ALIAS:PATH",
        type=str,
        action="append",
        help="A file to skip when comparing",
    )
    _add_config_args(capture_parser)

    # compare subcommand
    compare_parser = subparser.add_parser(
        COMPARE_CMD, help="Compare two file system snapshots"
    )
    compare_parser.set_defaults(func=_compare_cmd)
    compare_parser.add_argument(
        "first",
        metavar="FILE1",
        type=str,
        help="The first snapshot file",
    )
    compare_parser.add_argument(
        "second",
        metavar="FILE2",
        type=str,
        help="The second snapshot file",
    )
    _add_json_args(compare_parser)

    # show subcommand
    show_parser = subparser.add_parser(SHOW_CMD, help="Show a file system snapshot")
    show_parser.set_defaults(func=_show_cmd)
    show_parser.add_argument(
        "snapshot_file",
        metavar="FILE",
        type=str,
        help="The snapshot file to show",
    )
    _add_json_args(show_parser)


def main(args):
    """
    Main entry point for fssnap.
    """
    parser = ArgumentParser(
        description="File System Snapshot", prog=basename(args[0])
    )

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of fssnap",
        version=__version__,
    )

    _add_subparsers(parser)

    cmd_args = parser.parse_args(args[1:])

    status = 1

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    setup_logging(cmd_args)

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    if "func" not in cmd_args:
        parser.print_help()
        return status

    if cmd_args.debug:
        status = cmd_args.func(cmd_args)
    else:
        try:
            status = cmd_args.func(cmd_args)
        # pylint: disable=broad-except
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except Exception as err:
            _log_error("Command failed: %s", err)

    shutdown_logging()
    return status


# vim: set et ts=4 sw=4 :
