"""Click-based CLI interface for waitup."""

import json
import signal
import subprocess
import sys
from typing import Dict, List, Tuple

import click

from .config import CancellationToken, Strategy, WaitConfig, parse_duration
from .errors import InvalidConfigError, InvalidTargetError
from .logs import setup_logging
from .progress import ProgressListener
from .targets import parse_header, parse_target
from .waiter import wait

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_COMMAND_FAILED = 3

COMMAND_META_KEY = "waitup.command"


class DurationType(click.ParamType):
    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, float):
            return value
        try:
            return parse_duration(value)
        except InvalidConfigError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationType()


class SeparatedCommand(click.Command):
    """Stores the arguments after '--' as the command to run once ready."""

    def parse_args(self, ctx, args):
        if "--" in args:
            index = args.index("--")
            ctx.meta[COMMAND_META_KEY] = list(args[index + 1:])
            args = args[:index]
        return super().parse_args(ctx, args)


class EchoProgress(ProgressListener):
    """Streams attempt progress to stderr."""

    def on_attempt_started(self, target, attempt):
        click.echo(f"Attempt {attempt}: checking {target}", err=True)

    def on_attempt_result(self, target, attempt, outcome, elapsed):
        if not outcome.success:
            click.echo(f"Attempt {attempt}: {target} not ready ({outcome.describe()}, {elapsed:.2f}s)", err=True)


def _install_signal_handlers(token: CancellationToken) -> Dict[int, object]:
    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, lambda *_: token.cancel())
        except ValueError:
            # only the main thread may install handlers
            pass
    return previous


def _restore_signal_handlers(previous: Dict[int, object]) -> None:
    for signum, handler in previous.items():
        if handler is not None:
            signal.signal(signum, handler)


def run_command(command: List[str]) -> int:
    try:
        completed = subprocess.run(command)
    except OSError as e:
        click.echo(f"Command execution failed: {e}", err=True)
        return EXIT_COMMAND_FAILED
    if completed.returncode != 0:
        click.echo(f"Command exited with code {completed.returncode}", err=True)
        return EXIT_COMMAND_FAILED
    return EXIT_SUCCESS


@click.command(cls=SeparatedCommand)
@click.argument("targets", nargs=-1, required=True)
@click.option("--timeout", "-t", default="30s", envvar="WAITUP_TIMEOUT", type=DURATION,
              help="Maximum time to wait (e.g. 30s, 2m, 1m30s)")
@click.option("--interval", "-i", default="1s", envvar="WAITUP_INTERVAL", type=DURATION,
              help="Initial retry interval")
@click.option("--max-interval", default="30s", type=DURATION, help="Maximum retry interval")
@click.option("--connection-timeout", default="10s", type=DURATION, help="Timeout for each connection attempt")
@click.option("--expected-status", default=200, type=click.IntRange(100, 599), help="Expected HTTP status code")
@click.option("--header", "-H", multiple=True, help="HTTP header (format: 'Key: Value')")
@click.option("--any", "any_mode", is_flag=True, help="Succeed if ANY target is ready")
@click.option("--all", "all_mode", is_flag=True, help="Require ALL targets to be ready (default)")
@click.option("--retry-limit", default=None, type=click.IntRange(min=1), help="Maximum attempts per target")
@click.option("--verbose", "-v", is_flag=True, help="Show retry attempts and connection status")
@click.option("--quiet", "-q", is_flag=True, help="Only output on failure")
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
@click.version_option(package_name="waitup")
def main(targets: Tuple[str], timeout: float, interval: float, max_interval: float,
         connection_timeout: float, expected_status: int, header: Tuple[str], any_mode: bool,
         all_mode: bool, retry_limit: int, verbose: bool, quiet: bool, json_output: bool):
    """Wait for TCP ports or HTTP endpoints to become available.

    TARGETS can be:
    - TCP ports: host:port (e.g., localhost:5432, db:3306, [::1]:8080)
    - HTTP endpoints: http(s)://url (e.g., http://api:8080/health)

    Anything after -- is run once the targets are ready.

    Examples:
      waitup localhost:5432
      waitup http://api:8080/health --expected-status 200
      waitup db:5432 redis:6379 --any
      waitup db:5432 -- python manage.py migrate
    """
    if any_mode and all_mode:
        raise click.UsageError("--any and --all cannot be used together")
    if quiet and (verbose or json_output):
        raise click.UsageError("--quiet cannot be combined with --verbose or --json")

    command = click.get_current_context().meta.get(COMMAND_META_KEY, [])

    try:
        headers = [parse_header(h) for h in header]
    except InvalidTargetError as e:
        raise click.BadParameter(str(e), param_hint="'--header'")

    try:
        target_list = [parse_target(t, expected_status=expected_status, headers=headers) for t in targets]
    except InvalidTargetError as e:
        raise click.BadParameter(str(e), param_hint="TARGETS")

    token = CancellationToken()
    try:
        config = WaitConfig(
            timeout=timeout,
            initial_interval=interval,
            max_interval=max_interval,
            connection_timeout=connection_timeout,
            max_retries=retry_limit,
            strategy=Strategy.ANY if any_mode else Strategy.ALL,
            cancellation=token,
        )
    except InvalidConfigError as e:
        raise click.UsageError(str(e))

    setup_logging(verbose=verbose, quiet=quiet or json_output)
    listener = EchoProgress() if verbose and not json_output else None

    previous_handlers = _install_signal_handlers(token)
    try:
        result = wait(target_list, config, listener=listener)
    finally:
        _restore_signal_handlers(previous_handlers)

    if json_output:
        output = result.to_dict()
        output["mode"] = config.strategy.value
        click.echo(json.dumps(output, indent=2))
    elif not quiet or not result.success:
        for target_result in result.targets:
            status = "✓" if target_result.success else "✗"
            msg = f"{status} {target_result.target.display}"
            if verbose or not target_result.success:
                msg += f" (attempts: {target_result.attempts}, elapsed: {target_result.elapsed:.1f}s)"
            if target_result.error:
                msg += f" - {target_result.error}"
            click.echo(msg)

    if not result.success:
        sys.exit(EXIT_FAILURE)
    if command:
        sys.exit(run_command(command))
    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
