"""
Errors raised by ProcessController.

Every error is raised synchronously at the call site that detected it.
"""

from typing import Sequence

from process_controller.utils import format_command


class ProcessError(Exception):
    """Base class for all process controller errors"""


class ProcessStateError(ProcessError):
    """Operation is not valid in the controller's current lifecycle state"""


class SpawnError(ProcessError):
    """The OS failed to create the process"""


class ProcessIOError(ProcessError):
    """Reading output, waiting for activity or querying status failed"""


class OutputDisabled(ProcessError):
    """Output was requested from a controller created with collect_output=False"""


class InvalidConfiguration(ProcessError, ValueError):
    pass


class ProcessTimedOut(ProcessError):
    def __init__(self, timeout: float, cmd: str | Sequence[str]):
        self.timeout = timeout
        self.cmd = cmd
        super().__init__(f"Process timed out after {timeout:g}s: {format_command(cmd)}")


class TerminationFailed(ProcessError):
    """Terminating the process failed; `cause` holds the error that triggered it"""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause
