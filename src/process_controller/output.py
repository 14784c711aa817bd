"""
Per-channel output records with cumulative and incremental read cursors.

Offsets are logical: they keep growing across runs and clears, even though
the underlying buffer is emptied (pipe mode) or the file is truncated
(file mode). `start_offset` marks the beginning of the cumulative view,
`last_read_offset` the end of the previous read.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from process_controller.models import Channel

logger = logging.getLogger(__name__)


class OutputRecord(ABC):
    def __init__(self, channel: Channel):
        self.channel = channel
        self.start_offset = 0
        self.last_read_offset = 0
        # Logical offset of the first byte held by the backing store
        self._base = 0

    @property
    @abstractmethod
    def end(self) -> int:
        """Logical offset just past the last recorded byte"""

    @abstractmethod
    def _slice(self, start: int, end: int) -> bytes:
        pass

    @abstractmethod
    def _discard(self) -> None:
        """Drop recorded bytes before start_offset, if the store holds them"""

    @abstractmethod
    def _rewind(self) -> None:
        """Reset the backing store for a new run"""

    def read(self, incremental: bool = False) -> bytes:
        end = self.end
        start = self.last_read_offset if incremental else self.start_offset
        data = self._slice(start, end) if end > start else b""
        self.last_read_offset = end
        return data

    def clear(self) -> None:
        self.start_offset = self.last_read_offset = self.end
        self._discard()

    def begin_run(self) -> None:
        self._rewind()
        self.start_offset = self.last_read_offset = self.end

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.channel.label} "
            f"start={self.start_offset} read={self.last_read_offset} end={self.end}>"
        )


class BufferRecord(OutputRecord):
    """In-memory record fed by pipe reads"""

    def __init__(self, channel: Channel, keep: bool = True):
        super().__init__(channel)
        self.keep = keep
        self._buffer = bytearray()

    @property
    def end(self) -> int:
        return self._base + len(self._buffer)

    def append(self, data: bytes) -> None:
        if self.keep:
            self._buffer += data
        else:
            self._base += len(data)

    def _slice(self, start: int, end: int) -> bytes:
        return bytes(self._buffer[start - self._base : end - self._base])

    def _discard(self) -> None:
        self._base = self.end
        self._buffer.clear()

    def _rewind(self) -> None:
        self._discard()


class TailRecord(OutputRecord):
    """
    Record backed by a file the child writes to.

    A read-only handle follows the file as it grows. The file itself is the
    store, so clearing only moves the cursors.
    """

    def __init__(self, channel: Channel, path: Path):
        super().__init__(channel)
        self.path = path
        self._handle = open(path, "rb")
        # Bytes of the current file consumed so far
        self._position = 0

    @property
    def end(self) -> int:
        return self._base + self._position

    @property
    def closed(self) -> bool:
        return self._handle.closed

    def consume(self) -> bytes:
        """Return bytes appended to the file since the previous call"""
        self._handle.seek(self._position)
        data = self._handle.read()
        self._position += len(data)
        return data

    def _slice(self, start: int, end: int) -> bytes:
        self._handle.seek(start - self._base)
        return self._handle.read(end - start)

    def _discard(self) -> None:
        pass

    def _rewind(self) -> None:
        # The writer has just truncated the file in place
        self._base = self.end
        self._position = 0

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()
