import sys

from process_controller.channels.base import ChannelStrategy
from process_controller.channels.file import FileChannels
from process_controller.channels.pipe import PipeChannels
from process_controller.config import ProcessControllerSettings
from process_controller.models import ChannelMode


def select_mode(use_output_files: bool = False) -> ChannelMode:
    """Pick the channel mode, forcing files where pipes can't be multiplexed"""
    if sys.platform == "win32" or use_output_files:
        return ChannelMode.FILE
    return ChannelMode.PIPE


def get_strategy(
    mode: ChannelMode,
    settings: ProcessControllerSettings,
    collect_output: bool = True,
) -> ChannelStrategy:
    """Factory to get channel strategy by mode"""
    strategies = {
        ChannelMode.PIPE: PipeChannels,
        ChannelMode.FILE: FileChannels,
    }

    strategy_cls = strategies.get(mode)
    if strategy_cls is None:
        raise ValueError(
            f"Unknown channel mode: {mode}. Available: {[m.value for m in strategies]}"
        )

    return strategy_cls(settings, collect_output)


__all__ = [
    "ChannelStrategy",
    "FileChannels",
    "PipeChannels",
    "get_strategy",
    "select_mode",
]
