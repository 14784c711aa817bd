import logging
import shutil
import tempfile
import time
from pathlib import Path
from subprocess import Popen
from typing import Any, BinaryIO

from process_controller.channels.base import ChannelStrategy
from process_controller.config import ProcessControllerSettings
from process_controller.constants import (
    STDERR_FILENAME,
    STDOUT_FILENAME,
    TEMP_DIR_PREFIX,
)
from process_controller.exceptions import ProcessIOError
from process_controller.models import Channel, ChannelMode
from process_controller.output import TailRecord

logger = logging.getLogger(__name__)

FILENAMES = {
    Channel.STDOUT: STDOUT_FILENAME,
    Channel.STDERR: STDERR_FILENAME,
}


class FileChannels(ChannelStrategy):
    """
    Output redirected to files in a private temporary directory.

    Layout:
    {output_dir}/
        stdout.log
        stderr.log

    The directory is created on the first run and re-used by later runs,
    which truncate the files in place so the tail handles stay valid. A run
    that fails to spawn puts the previous run's output back. The directory is
    removed by dispose().
    """

    mode = ChannelMode.FILE

    def __init__(self, settings: ProcessControllerSettings, collect_output: bool = True):
        super().__init__(settings, collect_output)
        self.records: dict[Channel, TailRecord] = {}
        self.output_dir: Path | None = None
        self._writers: dict[Channel, BinaryIO] = {}
        # Output of the previous run, while a new run is being spawned
        self._previous: dict[Channel, bytes] = {}
        self._open = False
        self._last_read: float | None = None

    @property
    def has_open_channels(self) -> bool:
        return self._open

    def _ensure_output_dir(self) -> Path:
        if self.output_dir is None:
            parent = self.settings.temp_dir
            if parent is not None:
                parent.mkdir(parents=True, exist_ok=True)
            self.output_dir = Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX, dir=parent))
            logger.debug(f"Created output directory {self.output_dir}")
        return self.output_dir

    def open(self) -> dict[str, Any]:
        try:
            output_dir = self._ensure_output_dir()
            for channel, filename in FILENAMES.items():
                path = output_dir / filename
                if channel in self.records:
                    # Put back by abort() if the spawn fails
                    self._previous[channel] = path.read_bytes()
                # "wb" truncates without replacing the inode
                self._writers[channel] = open(path, "wb")
                if channel not in self.records:
                    self.records[channel] = TailRecord(channel, path)
        except OSError as e:
            self.abort()
            raise ProcessIOError(f"Error preparing output files: {e}") from e

        return {
            "stdout": self._writers[Channel.STDOUT],
            "stderr": self._writers[Channel.STDERR],
        }

    def attach(self, popen: Popen) -> None:
        # The child has its own copies of the descriptors
        self._close_writers()
        self._previous.clear()
        for record in self.records.values():
            record.begin_run()
        self._open = True
        self._last_read = None

    def abort(self) -> None:
        self._close_writers()
        try:
            for channel, data in self._previous.items():
                with open(self.records[channel].path, "wb") as f:
                    f.write(data)
        except OSError as e:
            raise ProcessIOError(f"Error restoring output files: {e}") from e
        finally:
            self._previous.clear()
        self._open = False

    def read(self, timeout: float) -> dict[Channel, bytes]:
        if not self._open:
            return {}
        # Files never block, so waiting means pacing rereads
        now = time.monotonic()
        if timeout > 0 and self._last_read is not None:
            remaining = timeout - (now - self._last_read)
            if remaining > 0:
                time.sleep(remaining)
                now = time.monotonic()
        self._last_read = now
        return self._consume()

    def drain(self) -> dict[Channel, bytes]:
        chunks = self._consume() if self._open else {}
        self.close()
        return chunks

    def _consume(self) -> dict[Channel, bytes]:
        chunks = {}
        for channel, record in self.records.items():
            try:
                chunk = record.consume()
            except OSError as e:
                raise ProcessIOError(
                    f"Error reading process {channel.label} from {record.path}: {e}"
                ) from e
            if chunk:
                chunks[channel] = chunk
        return chunks

    def _close_writers(self) -> None:
        for writer in self._writers.values():
            writer.close()
        self._writers.clear()

    def close(self) -> None:
        self._close_writers()
        self._open = False

    def dispose(self) -> None:
        super().dispose()
        if self.output_dir is not None:
            shutil.rmtree(self.output_dir, ignore_errors=True)
            logger.debug(f"Removed output directory {self.output_dir}")
            self.output_dir = None
