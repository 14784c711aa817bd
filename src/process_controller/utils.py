import os
import shlex
from datetime import datetime, timezone
from typing import Sequence


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_command(cmd: str | Sequence[str]) -> str:
    """Render a command for log and error messages"""
    if isinstance(cmd, str):
        return cmd
    return shlex.join(cmd)


def strip_line_terminator(text: str, terminator: str = os.linesep) -> str:
    """Remove exactly one trailing line terminator, if present"""
    if terminator and text.endswith(terminator):
        return text[: -len(terminator)]
    return text
