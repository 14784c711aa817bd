# Upper bound on a single wait for output activity. The selector returns as
# soon as any channel is readable, so this only matters when nothing happens.
DEFAULT_POLL_INTERVAL = 0.2

# Sleep between status checks once there is no output channel left to wait on
DEFAULT_WAIT_INTERVAL = 0.01

# How long dispose() waits after SIGKILL before treating the process as unkillable
DEFAULT_KILL_TIMEOUT = 5.0

READ_CHUNK_SIZE = 65536

TEMP_DIR_PREFIX = "process-controller-"
STDOUT_FILENAME = "stdout.log"
STDERR_FILENAME = "stderr.log"

# Exit status reported by the CLI when the child was stopped by its timeout
TIMEOUT_EXIT_STATUS = 124

ENV_PREFIX = "PROCESS_CONTROLLER_"
