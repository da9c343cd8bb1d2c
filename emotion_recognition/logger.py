from __future__ import annotations
import logging
import threading
import time
from typing import Callable, Optional


class EventLogger:
    """Structured pipeline logger that can also forward to a UI callback.

    Every line goes to the standard `logging` logger of the same name, to an
    optional append-mode file and to an optional UI callback. Sink failures are
    swallowed so logging never breaks a frame.
    """

    def __init__(self, name: str = "emotion_recognition", ui_logger: Optional[Callable[[str], None]] = None,
                 log_file_path: Optional[str] = None):
        self.name = name
        self.ui_logger = ui_logger
        self.log_file_path = log_file_path
        self._logger = logging.getLogger(name)
        self._lock = threading.Lock()
        self._file = None
        if log_file_path:
            try:
                self._file = open(log_file_path, "a", encoding="utf-8")
            except OSError:
                self._file = None

    def _emit(self, level: int, msg: str):
        self._logger.log(level, msg)
        if self.ui_logger is None and self._file is None:
            return
        ts = time.strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{ts}] {self.name} {logging.getLevelName(level)}: {msg}"
        # Called from the frame-source and detector threads
        with self._lock:
            if self.ui_logger:
                try:
                    self.ui_logger(line)
                except Exception:
                    pass
            if self._file:
                try:
                    self._file.write(line + "\n")
                    self._file.flush()
                except Exception:
                    pass

    def info(self, msg: str):
        self._emit(logging.INFO, msg)

    def debug(self, msg: str):
        self._emit(logging.DEBUG, msg)

    def warning(self, msg: str):
        self._emit(logging.WARNING, msg)

    def error(self, msg: str):
        self._emit(logging.ERROR, msg)

    def close(self):
        with self._lock:
            if self._file:
                try:
                    self._file.close()
                except Exception:
                    pass
                self._file = None
