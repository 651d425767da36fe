# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

"""Turning raw child output back into log records."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kubestrap.exceptions import LogParseError
from kubestrap.logging_config import get_process_logger


class LogConsumer(ABC):
    """Receives raw output chunks of one process."""

    @abstractmethod
    def handle_data(self, data: bytes, stream: str = "stdout") -> None:
        """Consume *data* read from *stream*.

        Raises:
            LogParseError: If the chunk cannot be interpreted.  The chunk
                is dropped; later chunks are still accepted.
        """

    def flush(self) -> None:
        """Called once the process has exited and its pipes are drained."""


class LineLogParser(LogConsumer):
    """Splits output into lines and hands each to :meth:`handle_line`.

    A trailing incomplete line is kept per stream until its newline
    arrives or :meth:`flush` is called.
    """

    def __init__(self, app: str):
        self.app = app
        self.log = get_process_logger(app)
        self._partial: dict[str, bytes] = {}

    def handle_data(self, data: bytes, stream: str = "stdout") -> None:
        *lines, rest = (self._partial.pop(stream, b"") + data).split(b"\n")
        if rest:
            self._partial[stream] = rest
        errors = []
        for raw in lines:
            try:
                line = raw.decode("utf-8").rstrip("\r")
            except UnicodeDecodeError as e:
                errors.append(e)
                continue
            if line.strip():
                self.handle_line(line)
        if errors:
            raise LogParseError(f"Undecodable output from {self.app}: {errors[0]}")

    def flush(self) -> None:
        """Emit trailing lines that never got their newline."""
        for stream in list(self._partial):
            self.handle_data(b"\n", stream)

    @abstractmethod
    def handle_line(self, line: str) -> None:
        """Emit one decoded, non-empty line."""

    def unformatted(self, line: str) -> None:
        self.log.warning(line, unparsed=True)
