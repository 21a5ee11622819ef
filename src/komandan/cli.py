"""Command-line interface for komandan.

A thin front end over the engine: run one shell command on one or more
hosts concurrently and print each host's output and a summary.
"""

import logging
import re
import sys

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .defaults import DEFAULTS
from .exceptions import KomandanError
from .host_filter import filter_hosts, format_filter_summary
from .logging import configure_logging, get_level_from_name, get_level_from_verbosity
from .report import format_results_json, print_report
from .scheduler import run_over_hosts
from .types import ElevationMethod, Host, Task, UnitResult

logger = logging.getLogger(__name__)

_HOST_SPEC = re.compile(r"^(?:(?P<user>[^@]+)@)?(?:\[(?P<ipv6>[^\]]+)\]|(?P<address>[^:]+))(?::(?P<port>\d+))?$")


def parse_host_spec(spec: str, user: str | None = None, port: int | None = None, **fields) -> Host:
    """Parse ``[user@]address[:port]`` (IPv6 in brackets) into a Host.

    The spec itself becomes the host name, so --limit can match it. user
    and port apply when the spec does not name them.

    Raises:
        click.BadParameter: If the spec is malformed
    """
    match = _HOST_SPEC.match(spec.strip())
    if not match:
        raise click.BadParameter(f"expected [user@]address[:port], got {spec!r}", param_hint="--host")
    if match["port"]:
        port = int(match["port"])
    try:
        return Host(
            name=spec,
            address=match["ipv6"] or match["address"],
            user=match["user"] or user,
            port=port,
            **fields,
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--host") from e


def _print_outputs(units: list[UnitResult], console: Console) -> None:
    for unit in units:
        console.rule(f"[cyan]{escape(unit.host)}")
        if unit.error is not None:
            console.print(f"[red]{escape(str(unit.error))}[/]")
            continue
        if unit.result.stdout:
            console.out(unit.result.stdout.rstrip("\n"), highlight=False)
        if unit.result.stderr:
            console.print(unit.result.stderr.rstrip("\n"), style="yellow", markup=False, highlight=False)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("--verbose", "-v", count=True, help="Increase verbosity (-v, -vv, -vvv)")
@click.option("--log-level", type=click.Choice(["trace", "debug", "info", "warning", "error"]),
              help="Set the log level explicitly")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: int, log_level: str | None, log_file: str | None) -> None:
    """komandan - agentless remote execution over SSH."""
    if version:
        click.echo(f"komandan {__version__}")
        ctx.exit(0)

    level = get_level_from_name(log_level) if log_level else get_level_from_verbosity(verbose)
    configure_logging(level=level, log_file=log_file, file_level=level if log_file else None)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument("command")
@click.option("--host", "-H", "hosts", multiple=True, required=True,
              help="Target as [user@]address[:port]; repeat for several hosts")
@click.option("--user", "-u", help="Login user for hosts that do not name one")
@click.option("--port", "-p", type=click.IntRange(1, 65535), help="SSH port for hosts that do not name one")
@click.option("--private-key", "-i", "private_key_file", type=click.Path(dir_okay=False),
              help="Private key file")
@click.option("--password", "ask_password", is_flag=True, help="Prompt for the login password")
@click.option("--agent", is_flag=True, help="Authenticate with the SSH agent")
@click.option("--no-host-key-check", is_flag=True, help="Do not verify host keys (insecure)")
@click.option("--elevate", "-b", is_flag=True, help="Run the command under an elevated identity")
@click.option("--elevation-method", type=click.Choice([m.value for m in ElevationMethod]),
              help="How to elevate (default sudo)")
@click.option("--as-user", help="Identity to elevate to (default superuser)")
@click.option("--ask-elevation-password", "-K", is_flag=True, help="Prompt for the elevation password")
@click.option("--limit", "-l", help="Only run on hosts matching this name pattern (~regex allowed)")
@click.option("--parallel", type=click.IntRange(min=1), help="Maximum concurrent hosts")
@click.option("--timeout", "-t", type=click.FloatRange(min=0, min_open=True), help="Per-host deadline in seconds")
@click.option("--ignore-exit-code", is_flag=True, help="Count non-zero exit codes as success")
@click.option("--format", "-f", "output_format", type=click.Choice(["text", "json"]), default="text",
              help="Output format")
def run(
    command: str,
    hosts: tuple[str, ...],
    user: str | None,
    port: int | None,
    private_key_file: str | None,
    ask_password: bool,
    agent: bool,
    no_host_key_check: bool,
    elevate: bool,
    elevation_method: str | None,
    as_user: str | None,
    ask_elevation_password: bool,
    limit: str | None,
    parallel: int | None,
    timeout: float | None,
    ignore_exit_code: bool,
    output_format: str,
) -> None:
    """Run COMMAND on every --host concurrently.

    Connection settings not given here come from the KOMANDAN_* environment
    variables. Exits with status 1 when any host fails.

    Examples:
        komandan run -H deploy@10.0.0.5 uptime

        komandan run -H web1 -H web2 -u deploy -i ~/.ssh/id_ed25519 "df -h"

        komandan run -H 10.0.0.5 -u deploy --elevate -K "apt-get update"

        komandan run -H web1 -H db1 --limit "~^web" --format json hostname
    """
    password = click.prompt("SSH password", hide_input=True) if ask_password else None
    elevation_password = click.prompt("Elevation password", hide_input=True) if ask_elevation_password else None

    fields = {
        "private_key_file": private_key_file,
        "password": password,
        "agent": True if agent else None,
        "host_key_check": False if no_host_key_check else None,
        "elevation_password": elevation_password,
    }
    targets = [parse_host_spec(spec, user=user, port=port, **fields) for spec in hosts]

    if limit:
        try:
            selected = filter_hosts(targets, limit)
        except KomandanError as e:
            raise click.ClickException(str(e)) from e
        logger.info(format_filter_summary(len(targets), len(selected), limit))
        targets = selected
        if not targets:
            raise click.ClickException(f"No hosts match: {limit}")

    task = Task(
        command,
        elevate=True if elevate else None,
        elevation_method=elevation_method,
        as_user=as_user,
        ignore_exit_code=True if ignore_exit_code else None,
    )

    try:
        units = run_over_hosts(targets, task, DEFAULTS.snapshot(), timeout=timeout, parallelism=parallel)
    except KomandanError as e:
        raise click.ClickException(str(e)) from e

    if output_format == "json":
        click.echo(format_results_json(units))
    else:
        console = Console()
        _print_outputs(units, console)
        print_report(units, console)

    if any(not unit.ok for unit in units):
        sys.exit(1)


def main() -> None:
    """Package entry point for the komandan command-line interface."""
    cli()


if __name__ == "__main__":
    main()
