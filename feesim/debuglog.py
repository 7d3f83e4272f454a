"""A logger whose debug-level messages can be switched on and off at run time."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import TextIO

DEBUG_TAG = "[DEBUG]"

_counter = itertools.count()


class _FilteringHandler(logging.Handler):
    def __init__(self, owner: DebugLog) -> None:
        super().__init__(level=logging.DEBUG)
        self._owner = owner

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._owner._write(record)
        except Exception:
            self.handleError(record)


class DebugLog:
    """Writes log lines to ``out``, dropping lines tagged ``[DEBUG]`` unless debug is on.

    Records logged at DEBUG level are tagged ``[DEBUG]`` automatically.  Each
    line starts with ``prefix`` and, if ``timestamps`` is set, the local date
    and time.
    """

    def __init__(self, out: TextIO, prefix: str = "", timestamps: bool = True) -> None:
        self._out = out
        self._prefix = prefix
        self._timestamps = timestamps
        self._debug = False
        self._lock = threading.Lock()
        self._closed = False
        self._formatter = logging.Formatter()
        self._handler = _FilteringHandler(self)
        self.logger = logging.getLogger(f"feesim.debuglog.{next(_counter)}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.logger.addHandler(self._handler)

    @property
    def debug(self) -> bool:
        """Whether debug lines are written."""
        with self._lock:
            return self._debug

    def set_debug(self, debug: bool) -> None:
        """Turn the writing of debug lines on or off."""
        with self._lock:
            self._debug = bool(debug)

    def close(self) -> None:
        """Stop logging and close ``out`` if it can be closed."""
        self.logger.removeHandler(self._handler)
        with self._lock:
            if self._closed:
                return
            self._closed = True
        close = getattr(self._out, "close", None)
        if callable(close):
            close()

    def _write(self, record: logging.LogRecord) -> None:
        header = self._prefix
        if self._timestamps:
            header += time.strftime("%Y/%m/%d %H:%M:%S ", time.localtime(record.created))
        message = record.getMessage()
        if record.levelno <= logging.DEBUG and DEBUG_TAG not in message:
            message = f"{DEBUG_TAG} {message}"
        if record.exc_info:
            message += "\n" + self._formatter.formatException(record.exc_info)
        show_debug = self.debug
        with self._lock:
            if self._closed:
                return
            for line in (header + message).split("\n"):
                if show_debug or DEBUG_TAG not in line:
                    self._out.write(line + "\n")
            flush = getattr(self._out, "flush", None)
            if callable(flush):
                flush()