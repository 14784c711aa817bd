import logging
import os
import selectors
import subprocess
from subprocess import Popen
from typing import Any, BinaryIO

from process_controller.channels.base import ChannelStrategy
from process_controller.config import ProcessControllerSettings
from process_controller.exceptions import ProcessIOError
from process_controller.models import OUTPUT_CHANNELS, Channel, ChannelMode
from process_controller.output import BufferRecord

logger = logging.getLogger(__name__)

# Full-sized reads from one descriptor per cycle before yielding to the caller,
# so a child that writes faster than we read can't starve timeout checks
MAX_READS_PER_CYCLE = 16


class PipeChannels(ChannelStrategy):
    """Anonymous non-blocking pipes, multiplexed with a selector"""

    mode = ChannelMode.PIPE

    def __init__(self, settings: ProcessControllerSettings, collect_output: bool = True):
        super().__init__(settings, collect_output)
        self.records: dict[Channel, BufferRecord] = {
            channel: BufferRecord(channel, keep=collect_output)
            for channel in OUTPUT_CHANNELS
        }
        self._selector: selectors.BaseSelector | None = None
        self._streams: dict[Channel, BinaryIO] = {}

    @property
    def has_open_channels(self) -> bool:
        return bool(self._streams)

    def open(self) -> dict[str, Any]:
        return {"stdout": subprocess.PIPE, "stderr": subprocess.PIPE}

    def attach(self, popen: Popen) -> None:
        for record in self.records.values():
            record.begin_run()
        self._selector = selectors.DefaultSelector()
        for channel, stream in (
            (Channel.STDOUT, popen.stdout),
            (Channel.STDERR, popen.stderr),
        ):
            os.set_blocking(stream.fileno(), False)
            self._selector.register(stream, selectors.EVENT_READ, data=channel)
            self._streams[channel] = stream

    def read(self, timeout: float) -> dict[Channel, bytes]:
        if not self._streams:
            return {}
        try:
            events = self._selector.select(timeout)
        except OSError as e:
            raise ProcessIOError(f"Error checking for process output: {e}") from e

        chunks = {}
        for key, _ in events:
            chunk = self._read_available(key.data)
            if chunk:
                chunks[key.data] = chunk
        return chunks

    def drain(self) -> dict[Channel, bytes]:
        chunks = {}
        for channel in list(self._streams):
            chunk = self._read_available(channel, to_eof=True)
            if chunk:
                chunks[channel] = chunk
        self.close()
        return chunks

    def _read_available(self, channel: Channel, to_eof: bool = False) -> bytes:
        stream = self._streams[channel]
        chunk_size = self.settings.read_chunk_size
        parts = []
        eof = False
        reads = 0
        while to_eof or reads < MAX_READS_PER_CYCLE:
            try:
                data = os.read(stream.fileno(), chunk_size)
            except BlockingIOError:
                break
            except OSError as e:
                raise ProcessIOError(
                    f"Error reading process {channel.label}: {e}"
                ) from e
            reads += 1
            if not data:
                eof = True
                break
            parts.append(data)
            if len(data) < chunk_size and not to_eof:
                break

        chunk = b"".join(parts)
        if chunk:
            self.records[channel].append(chunk)
        if eof or to_eof:
            self._close_stream(channel)
        return chunk

    def _close_stream(self, channel: Channel) -> None:
        stream = self._streams.pop(channel)
        if self._selector is not None:
            self._selector.unregister(stream)
        stream.close()

    def close(self) -> None:
        for channel in list(self._streams):
            self._close_stream(channel)
        if self._selector is not None:
            self._selector.close()
            self._selector = None
