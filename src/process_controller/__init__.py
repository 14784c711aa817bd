from process_controller.config import ProcessControllerSettings  # noqa: F401
from process_controller.controller import ProcessController  # noqa: F401
from process_controller.exceptions import (  # noqa: F401
    InvalidConfiguration,
    OutputDisabled,
    ProcessError,
    ProcessIOError,
    ProcessStateError,
    ProcessTimedOut,
    SpawnError,
    TerminationFailed,
)
from process_controller.models import (  # noqa: F401
    Channel,
    ChannelMode,
    ProcessConfig,
    ProcessState,
    ProcessStatus,
    SpawnStats,
)


def run(
    cmd: list[str] | str,
    input: bytes | str | None = b"",
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    use_output_files: bool | None = None,
) -> ProcessController:
    """Run a command to completion and return its terminated controller"""
    controller = ProcessController(
        cmd,
        input,
        cwd=cwd,
        env=env,
        timeout=timeout,
        use_output_files=use_output_files,
    )
    controller.run()
    return controller
