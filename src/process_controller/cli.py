"""procctl: run a command under a ProcessController."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from process_controller.constants import TIMEOUT_EXIT_STATUS
from process_controller.controller import ProcessController
from process_controller.exceptions import ProcessTimedOut, SpawnError
from process_controller.models import Channel

# Exit status used when the command could not be spawned, as in POSIX shells
SPAWN_FAILED_EXIT_STATUS = 127


def setup_logging(log_level: str):
    """Setup basic logging to stderr"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def parse_env(values: tuple[str, ...]) -> dict[str, str] | None:
    if not values:
        return None
    env = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got '{value}'", param_hint="--env")
        env[key] = val
    return env


def echo_output(channel: Channel, chunk: bytes) -> None:
    stream = click.get_binary_stream("stderr" if channel is Channel.STDERR else "stdout")
    stream.write(chunk)
    stream.flush()


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level for controller messages (written to stderr).",
)
def main(log_level: str):
    """Run and supervise external processes."""
    setup_logging(log_level)


@main.command(context_settings={"ignore_unknown_options": True})
@click.option("--timeout", type=float, help="Stop the command after this many seconds.")
@click.option(
    "--use-output-files",
    is_flag=True,
    help="Redirect output to temporary files instead of pipes.",
)
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Working directory for the command.",
)
@click.option(
    "--env",
    "env_values",
    multiple=True,
    help="KEY=VALUE added to the inherited environment. Repeatable.",
)
@click.option("--shell", is_flag=True, help="Run CMD through the shell.")
@click.argument("cmd", nargs=-1, required=True, type=click.UNPROCESSED)
def run(
    timeout: Optional[float],
    use_output_files: bool,
    cwd: Optional[Path],
    env_values: tuple[str, ...],
    shell: bool,
    cmd: tuple[str, ...],
):
    """Run CMD, streaming its output, and exit with its exit status."""
    env = parse_env(env_values)
    controller = ProcessController(
        " ".join(cmd) if shell else list(cmd),
        None,
        output_callback=echo_output,
        cwd=cwd,
        env=env,
        inherit_env=True,
        timeout=timeout,
        use_output_files=use_output_files,
        collect_output=False,
    )

    with controller:
        try:
            status = controller.run()
        except SpawnError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(SPAWN_FAILED_EXIT_STATUS)
        except ProcessTimedOut as e:
            click.echo(f"⏰ {e}", err=True)
            sys.exit(TIMEOUT_EXIT_STATUS)

    # Death by signal N is reported as -N, shells report 128 + N
    sys.exit(status if status >= 0 else 128 - status)
