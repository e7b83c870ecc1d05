"""
Line reader that reports where every line starts in the underlying file.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from .errors import MzXMLIOError


@dataclass(frozen=True)
class Line:
    text: bytes
    offset: int  # absolute byte position of text[0]
    terminator: bytes  # b"\r\n", b"\n" or b"" for an unterminated last line

    @property
    def end(self) -> int:
        return self.offset + len(self.text) + len(self.terminator)


class BinaryTextReader:
    """
    Reads a file line by line in binary mode, tracking byte offsets.

    Usable as a context manager; iterating yields Line objects.
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        self._handle: Optional[BinaryIO] = None
        self._offset = 0

    def open(self) -> "BinaryTextReader":
        try:
            self._handle = open(self.file_path, "rb")
        except OSError as exc:
            raise MzXMLIOError(f"Unable to open {self.file_path}: {exc}") from exc
        self._offset = 0
        return self

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def read_line(self) -> Optional[Line]:
        if self._handle is None:
            raise ValueError(f"{self.file_path} is not open")

        raw = self._handle.readline()
        if not raw:
            return None

        if raw.endswith(b"\r\n"):
            line = Line(raw[:-2], self._offset, b"\r\n")
        elif raw.endswith(b"\n"):
            line = Line(raw[:-1], self._offset, b"\n")
        else:
            line = Line(raw, self._offset, b"")
        self._offset += len(raw)
        return line

    def __iter__(self) -> Iterator[Line]:
        while True:
            line = self.read_line()
            if line is None:
                return
            yield line

    def __enter__(self) -> "BinaryTextReader":
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
