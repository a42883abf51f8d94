# Copyright Red Hat
#
# fssnap/progress.py - File system snapshot progress indicator
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Progress indicators for long running capture operations.
"""
from typing import Optional, TextIO
from abc import ABC, abstractmethod
import shutil
import sys
import os

from fssnap import register_progress, unregister_progress

#: Default number of columns if not detected from terminal.
DEFAULT_COLUMNS = 80

#: Minimum width of a progress bar.
PROGRESS_MIN_WIDTH = 10

#: Default width of a progress bar as a fraction of the terminal size.
DEFAULT_WIDTH_FRAC = 0.5


def _flush_with_broken_pipe_guard(stream: TextIO) -> None:
    """
    Handle ``BrokenPipeError`` when attempting to flush output streams.

    :param stream: The stream to flush.
    :type stream: TextIO
    """
    if stream is None or not hasattr(stream, "flush"):
        return
    try:
        stream.flush()
    except BrokenPipeError as err:
        devnull = os.open(os.devnull, os.O_WRONLY)
        try:
            if hasattr(stream, "fileno"):
                os.dup2(devnull, stream.fileno())
        finally:
            os.close(devnull)
        raise SystemExit() from err


class ProgressBase(ABC):
    """
    An abstract progress reporting class.
    """

    FIXED = -1

    def __init__(self, register: bool = True):
        """
        Initialize base progress state.

        :param register: Register this ``ProgressBase`` for log callbacks.
        :type register: ``bool``
        """
        self.total: int = 0
        self.header: Optional[str] = None
        self.stream: Optional[TextIO] = None
        self.width: int = -1
        self.first_update: bool = True
        self.registered: bool = False
        self.register: bool = register

    def reset_position(self):
        """Mark progress bar as displaced by external output."""
        self.first_update = True

    def _calculate_width(
        self, width: Optional[int] = None, width_frac: Optional[float] = None
    ) -> int:
        """
        Calculate the width for the progress bar. The ``header`` member
        must be initialised before calling this method.

        :param width: An optional width value in characters. Cannot be used
                      with ``width_frac``.
        :type width: ``int``
        :param width_frac: An optional width fraction between [0..1] of the
                           terminal width. Cannot be used with ``width``.
        :type width_frac: ``Optional[float]``
        :returns: The calculated progress bar width in characters.
        :rtype: ``int``
        :raises ``ValueError``: If FIXED is negative, header is unset,
                                or both width and width_frac are specified.
        """
        if self.FIXED < 0:
            raise ValueError(
                f"{self.__class__.__name__}: self.FIXED must be initialised "
                "before calling self._calculate_width()"
            )

        if self.header is None:
            raise ValueError(
                f"{self.__class__.__name__}: self.header must be initialised "
                "before calling self._calculate_width()"
            )

        if width is not None and width_frac is not None:
            raise ValueError("width and width_frac are mutually exclusive")

        columns = shutil.get_terminal_size((DEFAULT_COLUMNS, 24)).columns

        if width is None:
            width_frac = width_frac or DEFAULT_WIDTH_FRAC
            fixed = self.FIXED + len(self.header)
            width = round((columns - fixed) * width_frac)
            width = max(PROGRESS_MIN_WIDTH, width)

        return width

    def start(self, total: int):
        """
        Begin a progress run with the specified ``total``.

        :param total: The total number of expected progress items.
        :type total: ``int``
        """
        if total <= 0:
            raise ValueError("total must be positive.")

        self.total = total

        if self.register:
            register_progress(self)

        self._do_start()

    @abstractmethod
    def _do_start(self):
        """
        Hook invoked when progress begins.
        """

    def _check_in_progress(self, done: int, step: str):
        """
        Validate that progress is active and ``done`` is in range.

        :param done: The number of completed progress items.
        :type done: ``int``
        :param step: The progress step (method name) that is active.
        :type step: ``str``
        :raises ``ValueError``: If progress has not started, if done is
                                negative, or if done exceeds total.
        """
        theclass = self.__class__.__name__
        if self.total == 0:
            raise ValueError(f"{theclass}.{step}() called before start()")

        if done < 0:
            raise ValueError(f"{theclass}.{step}() done cannot be negative.")

        if done > self.total:
            raise ValueError(f"{theclass}.{step}() done cannot be > total.")

    def progress(self, done: int, message: Optional[str] = None):
        """
        Advance the progress indicator to the specified ``done`` count.

        :param done: The number of completed progress items.
        :type done: ``int``
        :param message: An optional progress message.
        :type message: ``Optional[str]``
        """
        self._check_in_progress(done, "progress")
        self._do_progress(done, message)

    @abstractmethod
    def _do_progress(self, done: int, message: Optional[str] = None):
        """
        Hook for subclasses to update the progress display.
        """

    def end(self, message: Optional[str] = None):
        """
        End the progress run and finalize the display.

        :param message: An optional completion message.
        :type message: ``Optional[str]``
        """
        self._check_in_progress(self.total, "end")
        self.progress(self.total, "")
        self._do_end(message)
        self.total = 0
        if self.registered:
            unregister_progress(self)

    @abstractmethod
    def _do_end(self, message: Optional[str] = None):
        """
        Perform final end-of-progress handling, for both ``end()`` and
        ``cancel()``.
        """

    def cancel(self, message: Optional[str] = None):
        """
        End the progress run with error and finalize the display.

        :param message: An optional error message.
        :type message: ``Optional[str]``
        """
        self._check_in_progress(self.total, "cancel")
        self._do_end(message=message)
        self.total = 0
        if self.registered:
            unregister_progress(self)


class SimpleProgress(ProgressBase):
    """
    A simple progress bar that does not rely on terminal capabilities.
    """

    BAR = "%s: %3d%% [%s%s] (%s)"  #: Progress bar format string
    DID = "="  #: Bar character for completed work.
    TODO = "-"  #: Bar character for uncompleted work.
    FIXED = 12  #: Length of fixed characters in BAR.

    def __init__(
        self,
        header,
        register: bool = True,
        term_stream: Optional[TextIO] = None,
        width: Optional[int] = None,
        width_frac: Optional[float] = None,
    ):
        """
        Initialise a new ``SimpleProgress`` object.

        :param header: The progress header to display.
        :type header: ``str``
        :param register: Register this ``SimpleProgress`` for log callbacks.
        :type register: ``bool``
        :param term_stream: The terminal stream to write to.
        :type term_stream: ``Optional[TextIO]``
        :param width: An optional bar width in characters.
        :type width: ``int``
        :param width_frac: An optional bar width as a fraction of the
                           terminal width.
        :type width_frac: ``Optional[float]``
        """
        super().__init__(register=register)
        self.header: Optional[str] = header
        self.stream: Optional[TextIO] = term_stream or sys.stdout
        self.width: int = self._calculate_width(width=width, width_frac=width_frac)

    def _render(self, done: int, message: str) -> str:
        percent = float(done) / float(self.total)
        n = int(self.width * percent)
        return self.BAR % (
            self.header,
            percent * 100,
            self.DID * n,
            self.TODO * (self.width - n),
            message,
        )

    def _do_start(self):
        return

    def _do_progress(self, done: int, message: Optional[str] = None):
        print(self._render(done, message or ""), file=self.stream)
        _flush_with_broken_pipe_guard(self.stream)

    def _do_end(self, message: Optional[str] = None):
        if message:
            print(message, file=self.stream)

        _flush_with_broken_pipe_guard(self.stream)


class LineProgress(SimpleProgress):
    """
    A single line progress bar for interactive terminals that redraws
    itself in place using a carriage return.
    """

    def _do_progress(self, done: int, message: Optional[str] = None):
        line = self._render(done, message or "")
        if not self.first_update:
            self.stream.write("\r")
        self.stream.write(line.ljust(self.width + self.FIXED + len(self.header)))
        self.first_update = False
        _flush_with_broken_pipe_guard(self.stream)

    def _do_end(self, message: Optional[str] = None):
        self.stream.write("\n")
        self.first_update = True
        super()._do_end(message)


class NullProgress(ProgressBase):
    """
    A progress class that produces no output.
    """

    def _do_start(self):
        return  # pragma: no cover

    # pylint: disable=unused-argument
    def _do_progress(self, done: int, message: Optional[str] = None):
        return  # pragma: no cover

    # pylint: disable=unused-argument
    def _do_end(self, message: Optional[str] = None):
        return  # pragma: no cover


class ProgressFactory:
    """
    A factory for constructing progress objects.
    """

    @staticmethod
    def get_progress(
        header: str,
        quiet: bool = False,
        term_stream: Optional[TextIO] = None,
        width: Optional[int] = None,
        width_frac: Optional[float] = None,
        register: bool = True,
    ) -> ProgressBase:
        """
        Return an appropriate ProgressBase implementation.

        :param header: The progress report header.
        :type header: ``str``
        :param quiet: Suppress all output.
        :type quiet: ``bool``
        :param term_stream: An optional ``TextIO`` output object.
                            Defaults to ``sys.stdout`` if unspecified.
        :type term_stream: ``Optional[TextIO]``
        :param width: An optional bar width in characters.
        :type width: ``int``
        :param width_frac: An optional bar width as a fraction of the
                           terminal width.
        :type width_frac: ``Optional[float]``
        :param register: Register the new object with the log system for
                         notification callbacks.
        :type register: ``bool``
        :returns: An appropriate progress implementation.
        :rtype: ``ProgressBase``
        """
        term_stream = term_stream or sys.stdout
        if quiet:
            return NullProgress(register=register)
        if not hasattr(term_stream, "isatty") or not term_stream.isatty():
            return SimpleProgress(
                header,
                register=register,
                term_stream=term_stream,
                width=width,
                width_frac=width_frac,
            )
        return LineProgress(
            header,
            register=register,
            term_stream=term_stream,
            width=width,
            width_frac=width_frac,
        )
