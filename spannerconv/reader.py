"""Line reader over a (possibly gzipped) dump, restartable for the second pass."""

from __future__ import annotations

import gzip
import io
import os
from typing import BinaryIO


class Reader:
    """Reads a dump one line at a time, tracking position.

    `line_number` counts lines returned so far, `offset` the number of bytes
    consumed from the (decompressed) input. Lines are decoded as UTF-8 with
    invalid bytes replaced. `eof` is set once a read hits end of input.
    """

    def __init__(self, stream: BinaryIO, *, name: str = "<stream>") -> None:
        self._stream = stream
        self.name = name
        self.line_number = 0
        self.offset = 0
        self.eof = False

    @classmethod
    def open(cls, path: str) -> Reader:
        """Open a dump file, handling gzip compression."""
        if path.endswith(".gz"):
            f = gzip.open(path, "rb")
        else:
            f = open(path, "rb")
        return cls(f, name=path)

    @classmethod
    def from_string(cls, text: str, *, name: str = "<string>") -> Reader:
        return cls(io.BytesIO(text.encode("utf-8")), name=name)

    def read_line(self) -> str:
        """Return the next line including its newline, or "" at end of input."""
        if self.eof:
            return ""
        raw = self._stream.readline()
        if not raw:
            self.eof = True
            return ""
        self.line_number += 1
        self.offset += len(raw)
        return raw.decode("utf-8", errors="replace")

    def reset(self) -> None:
        """Rewind to the start of input."""
        self._stream.seek(0, os.SEEK_SET)
        self.line_number = 0
        self.offset = 0
        self.eof = False

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> Reader:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
