from abc import ABC, abstractmethod
from subprocess import Popen
from typing import Any

from process_controller.config import ProcessControllerSettings
from process_controller.models import Channel, ChannelMode
from process_controller.output import OutputRecord


class ChannelStrategy(ABC):
    mode: ChannelMode

    def __init__(self, settings: ProcessControllerSettings, collect_output: bool = True):
        self.settings = settings
        self.collect_output = collect_output
        self.records: dict[Channel, OutputRecord] = {}

    @abstractmethod
    def open(self) -> dict[str, Any]:
        """Prepare output channels for a new run, returns stdout/stderr spawn arguments"""
        pass

    @abstractmethod
    def attach(self, popen: Popen) -> None:
        """Take over the parent's side of the channels once the child is spawned.

        Starts a new run in the records: output of the previous run stays
        readable until this point.
        """
        pass

    def abort(self) -> None:
        """Undo open() after the spawn failed, keeping the previous run's output"""
        self.close()

    @abstractmethod
    def read(self, timeout: float) -> dict[Channel, bytes]:
        """Collect output that became available, waiting up to `timeout` seconds for it"""
        pass

    @abstractmethod
    def drain(self) -> dict[Channel, bytes]:
        """Collect everything left after the child exited and close the run's channels"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the run's channels, keeping recorded output"""
        pass

    @property
    @abstractmethod
    def has_open_channels(self) -> bool:
        pass

    def dispose(self) -> None:
        """Release everything, including recorded output"""
        self.close()
        for record in self.records.values():
            record.close()
