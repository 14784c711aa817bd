"""
Input source handling.

The child's stdin is always a real descriptor: in-memory input is spooled to
an anonymous temporary file, so the poll loop never has to feed a pipe.
"""

import subprocess
import tempfile
from typing import IO, Any, BinaryIO

from process_controller.exceptions import InvalidConfiguration

InputSource = bytes | str | BinaryIO | None


def _spool(data: bytes | str) -> BinaryIO:
    if isinstance(data, str):
        data = data.encode("utf-8")
    handle = tempfile.TemporaryFile()
    handle.write(data)
    handle.flush()
    handle.seek(0)
    return handle


def _has_fileno(stream: IO) -> bool:
    try:
        stream.fileno()
    except (AttributeError, OSError):
        return False
    return True


def prepare_input(
    source: InputSource, pipe_only: bool = False
) -> tuple[Any, BinaryIO | None]:
    """
    Resolve an input source to a stdin argument for the spawn call.

    Returns the stdin argument and, if one was created, a temporary file the
    caller must close once the child has been spawned.

    Args:
        source: None inherits the parent's stdin, empty bytes/str gives the
            child an empty stdin, bytes/str are fed as-is, streams are passed
            through (or spooled if they have no OS-level descriptor).
        pipe_only: Never rewind a stream source; it is consumed from its
            current position.
    """
    if source is None:
        return None, None

    if isinstance(source, (str, bytes, bytearray, memoryview)):
        if not source:
            return subprocess.DEVNULL, None
        spooled = _spool(bytes(source) if not isinstance(source, str) else source)
        return spooled, spooled

    if not pipe_only:
        try:
            source.seek(0)
        except (AttributeError, OSError) as e:
            raise InvalidConfiguration(
                "Input stream cannot be rewound, use pipe_only_input=True"
            ) from e

    if _has_fileno(source):
        return source, None

    spooled = _spool(source.read())
    return spooled, spooled
