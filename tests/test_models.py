import os
import signal

import pytest
from process_controller import (
    InvalidConfiguration,
    ProcessConfig,
    ProcessController,
    ProcessStatus,
    SpawnStats,
)
from process_controller.models import Channel
from process_controller.utils import format_command, strip_line_terminator


@pytest.mark.parametrize("timeout", [0, -1, -0.5, float("nan"), float("inf")])
def test_invalid_timeout_is_rejected(timeout):
    with pytest.raises(InvalidConfiguration, match="Invalid timeout"):
        ProcessController(["true"], timeout=timeout)


@pytest.mark.parametrize("cmd", [[], ""])
def test_empty_command_is_rejected(cmd):
    with pytest.raises(InvalidConfiguration, match="Command cannot be empty"):
        ProcessController(cmd)


def test_invalid_configuration_is_a_value_error():
    with pytest.raises(ValueError):
        ProcessController(["true"], timeout=0)


def test_config_is_immutable():
    config = ProcessConfig(cmd=["echo", "hi"], timeout=1)
    with pytest.raises(Exception):
        config.timeout = 2


def test_shell_string_command():
    assert ProcessConfig(cmd="echo hi").shell
    assert not ProcessConfig(cmd=["echo", "hi"]).shell


def test_env_replaces_environment_unless_inherited(monkeypatch):
    monkeypatch.setenv("PROCESS_CONTROLLER_TEST_PARENT", "1")

    assert ProcessConfig(cmd=["env"]).build_env() is None
    assert ProcessConfig(cmd=["env"], env={"A": "b"}).build_env() == {"A": "b"}

    merged = ProcessConfig(cmd=["env"], env={"A": "b"}, inherit_env=True).build_env()
    assert merged["A"] == "b"
    assert merged["PROCESS_CONTROLLER_TEST_PARENT"] == "1"


def test_from_config_round_trips():
    config = ProcessConfig(cmd=["echo", "hi"], timeout=2.5, collect_output=False)
    controller = ProcessController.from_config(config)

    assert controller.config == config
    assert controller.command == ["echo", "hi"]


def test_status_from_returncode():
    running = ProcessStatus.from_returncode(42, None)
    assert running.running
    assert running.exit_code is None

    exited = ProcessStatus.from_returncode(42, 3)
    assert not exited.running
    assert exited.exit_code == 3
    assert not exited.signaled

    killed = ProcessStatus.from_returncode(42, -signal.SIGTERM)
    assert killed.signaled
    assert killed.term_signal == signal.SIGTERM


def test_spawn_stats_counters():
    stats = SpawnStats()
    stats.count("read_iterations")
    stats.count("read_iterations", 2)

    assert stats.get_counter("read_iterations") == 3
    assert stats.get_counter("wait_iterations") == 0

    stats.record_spawn(0.001)
    stats.record_exit(0.5)
    assert stats.spawned_at is not None
    assert stats.terminated_at >= stats.spawned_at
    assert stats.run_time == 0.5


def test_channel_labels():
    assert Channel.STDOUT.label == "stdout"
    assert Channel(2) is Channel.STDERR


def test_format_command():
    assert format_command(["echo", "hello world"]) == "echo 'hello world'"
    assert format_command("echo $HOME") == "echo $HOME"


def test_strip_line_terminator_removes_exactly_one():
    eol = os.linesep
    assert strip_line_terminator(f"a{eol}{eol}") == f"a{eol}"
    assert strip_line_terminator("a") == "a"
    assert strip_line_terminator("") == ""
