import math
import os
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator

from process_controller.utils import _utcnow


class Channel(IntEnum):
    STDIN = 0
    STDOUT = 1
    STDERR = 2

    @property
    def label(self) -> str:
        return self.name.lower()


OUTPUT_CHANNELS = (Channel.STDOUT, Channel.STDERR)


class ProcessState(Enum):
    READY = "ready"
    RUNNING = "running"
    TERMINATED = "terminated"


class ChannelMode(Enum):
    PIPE = "pipe"
    FILE = "file"


class ProcessConfig(BaseModel):
    """Static configuration of a controller, re-used across runs"""

    cmd: list[str] | str
    cwd: Path | None = None
    env: dict[str, str] | None = None
    inherit_env: bool = False
    timeout: float | None = None
    use_output_files: bool | None = None
    collect_output: bool = True

    model_config = {"frozen": True}

    @field_validator("cmd")
    @classmethod
    def validate_cmd(cls: type[Self], v: Any) -> list[str] | str:
        if not v:
            raise ValueError("Command cannot be empty")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls: type[Self], v: float | None) -> float | None:
        if v is not None and (not math.isfinite(v) or v <= 0):
            raise ValueError(f"Invalid timeout: {v:g}")
        return v

    @property
    def shell(self) -> bool:
        return isinstance(self.cmd, str)

    def build_env(self) -> dict[str, str] | None:
        """Environment passed to the spawn call; None inherits the parent's"""
        if self.env is None:
            return None
        if self.inherit_env:
            return {**os.environ, **self.env}
        return dict(self.env)


class ProcessStatus(BaseModel):
    """Point-in-time status of a spawned process"""

    pid: int
    running: bool
    exit_code: int | None = None
    signaled: bool = False
    term_signal: int | None = None
    stopped: bool = False

    @classmethod
    def from_returncode(cls: type[Self], pid: int, returncode: int | None) -> Self:
        # subprocess reports death by signal N as returncode -N
        if returncode is None:
            return cls(pid=pid, running=True)
        signaled = returncode < 0
        return cls(
            pid=pid,
            running=False,
            exit_code=returncode,
            signaled=signaled,
            term_signal=-returncode if signaled else None,
        )


class SpawnStats(BaseModel):
    spawned_at: datetime | None = None
    spawn_latency: float | None = None
    terminated_at: datetime | None = None
    run_time: float | None = None
    counters: dict[str, int] = Field(default_factory=dict)

    def count(self, name: str, n: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + n

    def get_counter(self, name: str) -> int:
        return self.counters.get(name, 0)

    def record_spawn(self, latency: float) -> None:
        self.spawned_at = _utcnow()
        self.spawn_latency = latency

    def record_exit(self, run_time: float) -> None:
        self.terminated_at = _utcnow()
        self.run_time = run_time
