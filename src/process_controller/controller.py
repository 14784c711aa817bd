import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Callable, Self

import psutil
from pydantic import ValidationError

from process_controller.channels import get_strategy, select_mode
from process_controller.config import ProcessControllerSettings
from process_controller.exceptions import (
    InvalidConfiguration,
    OutputDisabled,
    ProcessError,
    ProcessIOError,
    ProcessStateError,
    ProcessTimedOut,
    SpawnError,
    TerminationFailed,
)
from process_controller.inputs import InputSource, prepare_input
from process_controller.models import (
    OUTPUT_CHANNELS,
    Channel,
    ChannelMode,
    ProcessConfig,
    ProcessState,
    ProcessStatus,
    SpawnStats,
)
from process_controller.output import OutputRecord
from process_controller.utils import format_command, strip_line_terminator

logger = logging.getLogger(__name__)

OutputCallback = Callable[[Channel, bytes], None]


class ProcessController:
    """
    Spawns a child process and supervises it until it exits.

    State: READY -> RUNNING -> TERMINATED, and TERMINATED -> RUNNING again on
    a later start(). Runs are repeatable but never concurrent, and one
    instance must not be used from several threads at once.

    Nothing happens in the background: output is collected, the exit is
    detected and the timeout is enforced only when the caller polls, waits,
    or queries the controller.
    """

    def __init__(
        self,
        cmd: list[str] | str,
        input: InputSource = b"",
        *,
        output_callback: OutputCallback | None = None,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        inherit_env: bool = False,
        timeout: float | None = None,
        use_output_files: bool | None = None,
        collect_output: bool = True,
        pipe_only_input: bool = False,
        settings: ProcessControllerSettings | None = None,
    ):
        try:
            self.config = ProcessConfig(
                cmd=cmd,
                cwd=cwd,
                env=env,
                inherit_env=inherit_env,
                timeout=timeout,
                use_output_files=use_output_files,
                collect_output=collect_output,
            )
        except ValidationError as e:
            raise InvalidConfiguration(str(e)) from e

        self.settings = settings or ProcessControllerSettings()
        self._input = input
        self._pipe_only_input = pipe_only_input
        self._output_callback = output_callback

        if use_output_files is None:
            use_output_files = self.settings.use_output_files
        self.mode = select_mode(use_output_files)

        self._state = ProcessState.READY
        self._popen: subprocess.Popen | None = None
        self._pid: int | None = None
        self._exit_status: int | None = None
        self._last_status: ProcessStatus | None = None
        self._start_time = 0.0
        self._stats = SpawnStats()
        self._disposed = False
        self._strategy = get_strategy(
            self.mode, self.settings, self.config.collect_output
        )

    @classmethod
    def from_config(
        cls,
        config: ProcessConfig,
        input: InputSource = b"",
        *,
        output_callback: OutputCallback | None = None,
        pipe_only_input: bool = False,
        settings: ProcessControllerSettings | None = None,
    ) -> Self:
        return cls(
            input=input,
            output_callback=output_callback,
            pipe_only_input=pipe_only_input,
            settings=settings,
            **config.model_dump(),
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    def __del__(self):
        # __init__ may have failed before the strategy existed
        if getattr(self, "_strategy", None) is None:
            return
        self._teardown(fatal=True)

    # Configuration

    @property
    def command(self) -> list[str] | str:
        return self.config.cmd

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def input(self) -> InputSource:
        return self._input

    @input.setter
    def input(self, value: InputSource) -> None:
        self._assert_not_running()
        self._input = value

    @property
    def pipe_only_input(self) -> bool:
        return self._pipe_only_input

    @pipe_only_input.setter
    def pipe_only_input(self, value: bool) -> None:
        self._assert_not_running()
        self._pipe_only_input = value

    @property
    def output_callback(self) -> OutputCallback | None:
        return self._output_callback

    @output_callback.setter
    def output_callback(self, value: OutputCallback | None) -> None:
        self._assert_not_running()
        self._output_callback = value

    @property
    def output_dir(self) -> Path | None:
        """Temporary directory holding output files, in file mode"""
        return getattr(self._strategy, "output_dir", None)

    # Lifecycle

    def start(self) -> Self:
        """
        Spawn the process. Allowed before the first run and after a run has terminated.

        If the spawn fails, the controller keeps the state, exit status and
        output of the previous run. Once spawned, one status query collects
        early output and notices a process that exited immediately.
        """
        self._assert_not_running()
        if self._disposed:
            raise ProcessStateError("Process controller has been disposed")

        stdin, spooled = prepare_input(self._input, self._pipe_only_input)
        try:
            stdio = self._strategy.open()
            started = time.monotonic()
            try:
                popen = subprocess.Popen(
                    self.config.cmd,
                    stdin=stdin,
                    cwd=self.config.cwd,
                    env=self.config.build_env(),
                    shell=self.config.shell,
                    bufsize=0,
                    **stdio,
                )
            except (OSError, subprocess.SubprocessError) as e:
                self._strategy.abort()
                raise SpawnError(
                    f"Error running process: {format_command(self.config.cmd)}: {e}"
                ) from e
            latency = time.monotonic() - started
        finally:
            if spooled is not None:
                spooled.close()

        self._strategy.attach(popen)
        self._popen = popen
        self._pid = popen.pid
        self._start_time = started
        self._exit_status = None
        self._last_status = None
        self._stats = SpawnStats()
        self._stats.record_spawn(latency)
        self._state = ProcessState.RUNNING
        logger.debug(
            f"Started process {popen.pid} in {latency:.4f}s ({self.mode.value} mode): "
            f"{format_command(self.config.cmd)}"
        )

        self._update_status()
        return self

    def run(self) -> int:
        """Start the process and wait for it to exit, returning its exit status"""
        self.start()
        return self.wait()

    def wait(self) -> int:
        """Block until the process terminates, returning its exit status"""
        self._assert_has_run()
        while self._state is ProcessState.RUNNING:
            self.poll()
        return self._exit_status

    def poll(self, force_now: bool = False) -> Self:
        """
        Check for timeout, collect available output and check whether the
        process has exited.

        Without `force_now`, waits up to one poll interval for output activity
        (pipe mode) or since the previous read (file mode), so calling this in
        a loop doesn't spin.
        """
        self._assert_has_run()
        self._check_timeout()
        if self._state is not ProcessState.RUNNING:
            return self

        if self._strategy.has_open_channels:
            self._stats.count("read_iterations")
            self._update_status(0 if force_now else self.settings.poll_interval)
        else:
            self._stats.count("wait_iterations")
            if not force_now:
                self._wait_for_exit(self.settings.wait_interval)
            self._update_status()
        return self

    def stop(self) -> Self:
        """Ask the process (and its children) to terminate. No-op if it isn't running."""
        if not self.is_running():
            return self

        logger.debug(f"Terminating process {self._pid}")
        self._signal_tree(kill=False)
        self._wait_for_exit(self.settings.poll_interval)
        self._update_status()
        return self

    def dispose(self) -> None:
        """Stop the process if it's still running and release every resource"""
        self._teardown(fatal=False)

    def is_running(self) -> bool:
        if self._state is not ProcessState.RUNNING:
            return False
        self._update_status()
        return self._state is ProcessState.RUNNING

    def is_terminated(self) -> bool:
        if self._state is ProcessState.RUNNING:
            self._update_status()
        return self._state is ProcessState.TERMINATED

    @property
    def pid(self) -> int:
        self._assert_has_run()
        return self._pid

    @property
    def exit_status(self) -> int:
        if self._state is not ProcessState.TERMINATED:
            raise ProcessStateError("Process is not terminated")
        return self._exit_status

    @property
    def stats(self) -> SpawnStats:
        return self._stats

    def get_status(self) -> ProcessStatus:
        """Query the OS for the current status of the process"""
        self._assert_has_run()
        status = self._update_status()
        if status is not None and status.running:
            return status.model_copy(update={"stopped": self._is_stopped()})
        return self._last_status

    # Output

    def get_output(self, channel: Channel = Channel.STDOUT) -> bytes:
        """All output recorded since the channel was opened or last cleared"""
        return self._get_record(channel).read()

    def get_new_output(self, channel: Channel = Channel.STDOUT) -> bytes:
        """Output recorded since the previous read of the channel"""
        return self._get_record(channel).read(incremental=True)

    def get_text(self, channel: Channel = Channel.STDOUT) -> str:
        return self._decode(self.get_output(channel))

    def get_new_text(self, channel: Channel = Channel.STDOUT) -> str:
        return self._decode(self.get_new_output(channel))

    def clear_output(self) -> Self:
        """Discard recorded output; later cumulative reads start from here"""
        self._assert_output_available()
        self._refresh_output()
        for record in self._strategy.records.values():
            record.clear()
        return self

    def _get_record(self, channel: Channel) -> OutputRecord:
        self._assert_output_available()
        channel = Channel(channel)
        if channel not in OUTPUT_CHANNELS:
            raise ValueError(f"No output is recorded for {channel.label}")
        self._refresh_output()
        return self._strategy.records[channel]

    def _refresh_output(self) -> None:
        if self._state is ProcessState.RUNNING:
            self._update_status()

    @staticmethod
    def _decode(data: bytes) -> str:
        return strip_line_terminator(data.decode("utf-8", errors="replace"))

    # Internals

    def _update_status(self, timeout: float = 0) -> ProcessStatus | None:
        if self._state is not ProcessState.RUNNING:
            return None

        status = self._query_status()
        if status.running:
            self._dispatch(self._strategy.read(timeout))
        else:
            self._dispatch(self._strategy.drain())
            self._close(status)
        return status

    def _query_status(self) -> ProcessStatus:
        try:
            returncode = self._popen.poll()
        except OSError as e:
            raise ProcessIOError(f"Error getting process status: {e}") from e
        return ProcessStatus.from_returncode(self._pid, returncode)

    def _is_stopped(self) -> bool:
        try:
            return psutil.Process(self._pid).status() == psutil.STATUS_STOPPED
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def _dispatch(self, chunks: dict[Channel, bytes]) -> None:
        for channel, chunk in chunks.items():
            self._stats.count(f"read_operations.{channel.label}")
            if self._output_callback is not None:
                self._output_callback(channel, chunk)

    def _wait_for_exit(self, timeout: float) -> None:
        try:
            self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            pass

    def _close(self, status: ProcessStatus) -> None:
        if self._state is not ProcessState.RUNNING:
            return

        self._strategy.close()
        # Already exited, this only reaps it
        self._popen.wait()
        self._popen = None

        run_time = time.monotonic() - self._start_time
        self._stats.record_exit(run_time)
        self._exit_status = status.exit_code
        self._last_status = status
        self._state = ProcessState.TERMINATED
        logger.debug(
            f"Process {self._pid} exited with status {status.exit_code} after {run_time:.3f}s"
        )

    def _check_timeout(self) -> None:
        timeout = self.config.timeout
        if (
            self._state is not ProcessState.RUNNING
            or timeout is None
            or time.monotonic() - self._start_time < timeout
        ):
            return

        timed_out = ProcessTimedOut(timeout, self.config.cmd)
        logger.warning(f"{timed_out}, terminating process {self._pid}")
        try:
            self.stop()
        except ProcessError as e:
            raise TerminationFailed(
                f"Error terminating process that timed out after {timeout:g}s: "
                f"{format_command(self.config.cmd)}: {e}",
                cause=timed_out,
            ) from timed_out
        raise timed_out

    def _signal_tree(self, kill: bool = False) -> None:
        """Signal the process and its descendants, children first"""
        action = "killing" if kill else "terminating"
        try:
            proc = psutil.Process(self._pid)
            children = proc.children(recursive=True)
        except psutil.NoSuchProcess:
            return
        except psutil.Error as e:
            raise TerminationFailed(f"Error {action} process {self._pid}: {e}") from e

        for target in [*children, proc]:
            try:
                if kill:
                    target.kill()
                else:
                    target.terminate()
            except psutil.NoSuchProcess:
                pass
            except psutil.Error as e:
                raise TerminationFailed(
                    f"Error {action} process {target.pid}: {e}"
                ) from e

    def _terminate_or_kill(self) -> None:
        self.stop()
        if self._state is ProcessState.RUNNING:
            logger.warning(
                f"Process {self._pid} still running after SIGTERM, sending SIGKILL"
            )
            self._signal_tree(kill=True)
            self._wait_for_exit(self.settings.kill_timeout)
            self._update_status()
        if self._state is ProcessState.RUNNING:
            raise TerminationFailed(
                f"Process {self._pid} could not be terminated: "
                f"{format_command(self.config.cmd)}"
            )

    def _teardown(self, fatal: bool) -> None:
        if self._disposed:
            return

        if self._state is ProcessState.RUNNING:
            try:
                self._terminate_or_kill()
            except ProcessError as e:
                if not fatal:
                    raise
                if self._state is ProcessState.RUNNING:
                    # Nobody is left to handle this, and the child would outlive us
                    logger.critical(f"Unable to terminate process {self._pid}: {e}")
                    os.abort()
                logger.error(f"Error cleaning up process {self._pid}: {e}")

        self._strategy.dispose()
        self._disposed = True

    def _assert_not_running(self) -> None:
        if self._state is ProcessState.RUNNING:
            raise ProcessStateError(f"Process is already running with PID {self._pid}")

    def _assert_has_run(self) -> None:
        if self._state is ProcessState.READY:
            raise ProcessStateError("Process has not run")

    def _assert_output_available(self) -> None:
        if not self.config.collect_output:
            raise OutputDisabled("Output collection is disabled for this process")
        self._assert_has_run()
        if self._disposed and self.mode is ChannelMode.FILE:
            raise ProcessStateError("Process output files have been removed")

    # Display

    def info(self) -> dict:
        """Return process information as a dictionary"""
        return {
            "cmd": format_command(self.config.cmd),
            "state": self._state.value,
            "mode": self.mode.value,
            "pid": self._pid,
            "exit_status": self._exit_status,
            "timeout": self.config.timeout,
        }

    def __repr__(self) -> str:
        info = self.info()
        lines = [f"ProcessController: {info['cmd']}"]

        for key, value in info.items():
            if key == "cmd":
                continue
            display_value = value if value is not None else "-"
            lines.append(f"  {key}: {display_value}")

        return "\n".join(lines)
