from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from process_controller.constants import (
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_WAIT_INTERVAL,
    ENV_PREFIX,
    READ_CHUNK_SIZE,
)


class ProcessControllerSettings(BaseSettings):
    """Tunables shared by every controller, overridable via PROCESS_CONTROLLER_* env vars"""

    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    wait_interval: float = Field(default=DEFAULT_WAIT_INTERVAL, gt=0)
    kill_timeout: float = Field(default=DEFAULT_KILL_TIMEOUT, gt=0)
    use_output_files: bool = False
    temp_dir: Path | None = None
    read_chunk_size: int = Field(default=READ_CHUNK_SIZE, gt=0)

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")
