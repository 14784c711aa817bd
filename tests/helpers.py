import sys
import time
from typing import Callable

from process_controller import ProcessController

PYTHON = sys.executable


def python_cmd(code: str) -> list[str]:
    """Command running `code` in an unbuffered Python child"""
    return [PYTHON, "-u", "-c", code]


def poll_until(
    controller: ProcessController,
    condition: Callable[[], bool],
    timeout: float = 10.0,
) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met before deadline")
        controller.poll()
